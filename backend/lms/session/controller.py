"""Client-side controller for one timed test attempt.

``TestSession`` owns the clock, ledger, navigation, auto-save and the
submission path. A UI only calls its methods and renders what it reports;
it never holds attempt state itself.
"""

from __future__ import annotations

import enum
import logging
import time
from typing import Callable, Protocol

from lms.config import settings
from lms.core.exceptions import AttemptError, AttemptTerminalError
from lms.schemas.attempt import AttemptResult, AttemptSession, AttemptStatus, SubmitType
from lms.schemas.test import TestRead
from lms.session.autosave import AutoSaveScheduler
from lms.session.clock import SessionClock
from lms.session.ledger import AnswerLedger, LedgerSnapshot, QuestionStatus
from lms.session.navigation import NavigationController
from lms.session.submission import assemble

logger = logging.getLogger(__name__)


class AttemptPersistence(Protocol):
    """What the session needs from the attempt service."""

    def save_attempt_snapshot(
        self, attempt_id: str, snapshot: dict, current_index: int = 0
    ) -> object: ...

    def submit_attempt(self, attempt_id: str, payload) -> AttemptResult: ...


class SessionState(str, enum.Enum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    EXPIRED = "expired"  # time is up, final submit not yet accepted
    SUBMITTED = "submitted"  # terminal on the server


class TestSession:
    __test__ = False

    def __init__(
        self,
        attempt_id: str,
        test: TestRead,
        persistence: AttemptPersistence,
        *,
        duration_seconds: int | None = None,
        elapsed_offset: int = 0,
        start_index: int = 0,
        auto_save_interval: int | None = None,
        now: Callable[[], float] = time.monotonic,
    ) -> None:
        self.attempt_id = str(attempt_id)
        self.test = test
        self._persistence = persistence
        self._duration = (
            test.duration_minutes * 60 if duration_seconds is None else duration_seconds
        )
        self._elapsed_offset = elapsed_offset
        self._auto_save_interval = auto_save_interval or settings.AUTO_SAVE_INTERVAL_SECONDS

        self.ledger = AnswerLedger(test.questions)
        self.clock = SessionClock(now)
        self.navigation = NavigationController(self.ledger, now, start_index=start_index)
        self.autosave = AutoSaveScheduler(now)

        self._state = SessionState.NOT_STARTED
        self._status: AttemptStatus | None = None
        self._result: AttemptResult | None = None

    @classmethod
    def resume(
        cls,
        attempt: AttemptSession,
        persistence: AttemptPersistence,
        **kwargs,
    ) -> "TestSession":
        """Build a session from the start/resume response of the attempts API.

        The clock runs for the server's ``remaining_seconds`` and the ledger
        is restored from the last auto-save. Works for fresh attempts too.
        """
        if attempt.status is not AttemptStatus.IN_PROGRESS:
            raise AttemptTerminalError(str(attempt.id), attempt.status.value)
        total = attempt.test.duration_minutes * 60
        session = cls(
            str(attempt.id),
            attempt.test,
            persistence,
            duration_seconds=attempt.remaining_seconds,
            elapsed_offset=max(0, total - attempt.remaining_seconds),
            start_index=attempt.current_index,
            **kwargs,
        )
        if attempt.auto_save_data:
            session.ledger.restore(attempt.auto_save_data)
        return session

    # ── lifecycle ─────────────────────────────────────────────────────────

    def start(self) -> None:
        if self._state is not SessionState.NOT_STARTED:
            raise RuntimeError("session already started")
        self._state = SessionState.IN_PROGRESS
        self.clock.on_expire(self.expire)
        self.clock.start(self._duration)
        self.navigation.begin()
        self.autosave.start(self._auto_save_interval, self.ledger, self._persist_snapshot)
        logger.info(
            "Session %s started: %d questions, %ds left",
            self.attempt_id, len(self.ledger), self._duration,
        )
        # zero remaining time (resumed right at the deadline) expires at once
        self.clock.tick()

    def tick(self) -> int:
        """Host polling hook, roughly once a second. Returns seconds left."""
        if self._state is SessionState.IN_PROGRESS:
            remaining = self.clock.tick()
            if self._state is SessionState.IN_PROGRESS:
                try:
                    self.autosave.tick()
                except AttemptTerminalError as exc:
                    logger.warning("Auto-save rejected, attempt closed on server: %s", exc)
                    self._close(None)
            return remaining
        return self.clock.remaining()

    def expire(self) -> None:
        """Timer expiry: submit through the same path as a manual submit.

        A late or duplicate expiry after the attempt is terminal is ignored;
        a failed auto-submit is logged and left for ``submit()`` to retry.
        """
        if self._state is SessionState.SUBMITTED:
            logger.info("Ignoring expiry for already submitted session %s", self.attempt_id)
            return
        self._state = SessionState.EXPIRED
        try:
            self.submit(SubmitType.AUTO)
        except AttemptTerminalError:
            logger.info("Expiry submit for %s rejected as terminal", self.attempt_id)
        except AttemptError as exc:
            logger.warning("Auto-submit for %s failed, awaiting retry: %s", self.attempt_id, exc)

    def submit(self, submit_type: SubmitType | None = None) -> AttemptResult:
        """Assemble and send the final submission.

        Raises ``AttemptTerminalError`` without contacting the server once
        the session is terminal. On ``PersistenceError`` the session stays
        open so the caller can retry.
        """
        if self._state is SessionState.SUBMITTED:
            raise AttemptTerminalError(
                self.attempt_id, self._status.value if self._status else None
            )
        if self._state is SessionState.NOT_STARTED:
            raise RuntimeError("session not started")
        if submit_type is None:
            submit_type = (
                SubmitType.AUTO if self._state is SessionState.EXPIRED else SubmitType.MANUAL
            )

        self.navigation.finalize()
        try:
            payload = assemble(self.ledger, self.elapsed(), submit_type)
            result = self._persistence.submit_attempt(self.attempt_id, payload)
        except AttemptTerminalError:
            self._close(None)
            raise
        except Exception:
            if self._state is SessionState.IN_PROGRESS:
                self.navigation.begin()
            raise

        self._result = result
        self._close(result.attempt.status)
        logger.info(
            "Session %s submitted (%s): %s",
            self.attempt_id, submit_type.value, result.attempt.status.value,
        )
        return result

    def _close(self, status: AttemptStatus | None) -> None:
        self.navigation.finalize()
        self.clock.stop()
        self.autosave.stop()
        self._state = SessionState.SUBMITTED
        self._status = status

    def _persist_snapshot(self, snapshot: LedgerSnapshot) -> object:
        return self._persistence.save_attempt_snapshot(
            self.attempt_id, snapshot.to_dict(), self.navigation.current()
        )

    def _ensure_open(self) -> None:
        if self._state is SessionState.SUBMITTED:
            raise AttemptTerminalError(
                self.attempt_id, self._status.value if self._status else None
            )
        if self._state is SessionState.EXPIRED:
            raise AttemptTerminalError(self.attempt_id, "time expired")
        if self._state is SessionState.NOT_STARTED:
            raise RuntimeError("session not started")

    # ── student actions ───────────────────────────────────────────────────

    def answer(self, question_id: str, value: int | str) -> None:
        self._ensure_open()
        self.ledger.set_answer(question_id, value)

    def clear_answer(self, question_id: str) -> None:
        self._ensure_open()
        self.ledger.clear_answer(question_id)

    def toggle_flag(self, question_id: str) -> bool:
        self._ensure_open()
        return self.ledger.toggle_flag(question_id)

    def go_to(self, index: int) -> int:
        return self.navigation.go_to(index)

    def next(self) -> int:
        return self.navigation.next()

    def previous(self) -> int:
        return self.navigation.previous()

    # ── observation ───────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status(self) -> AttemptStatus | None:
        return self._status

    @property
    def result(self) -> AttemptResult | None:
        return self._result

    @property
    def current_index(self) -> int:
        return self.navigation.current()

    def remaining(self) -> int:
        return self.clock.remaining()

    def elapsed(self) -> int:
        return self._elapsed_offset + self.clock.elapsed()

    def counts(self) -> dict[QuestionStatus, int]:
        return self.ledger.counts()
