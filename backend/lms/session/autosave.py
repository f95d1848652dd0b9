"""Periodic auto-save of the answer ledger."""

from __future__ import annotations

import logging
import time
from typing import Callable

from lms.core.exceptions import AttemptAccessError, AttemptError, AttemptTerminalError
from lms.session.ledger import AnswerLedger, LedgerSnapshot

logger = logging.getLogger(__name__)

PersistFn = Callable[[LedgerSnapshot], object]


class AutoSaveScheduler:
    """Sends a full ledger snapshot every ``interval_seconds``.

    Driven by the host's ``tick()`` calls. An ``AttemptError`` from
    *persist_fn* is logged and counted, and the next due tick simply sends
    a fresh snapshot: every save is a full overwrite, so nothing entered
    after a failed save is lost. Two errors are not retried:
    ``AttemptTerminalError`` propagates so the owner can close the session,
    and ``AttemptAccessError`` stops the scheduler.
    """

    def __init__(self, now: Callable[[], float] = time.monotonic) -> None:
        self._now = now
        self._interval = 0.0
        self._next_due: float | None = None
        self._ledger: AnswerLedger | None = None
        self._persist: PersistFn | None = None
        self._running = False
        self._stopped = False
        self.last_success: float | None = None
        self.last_error: Exception | None = None
        self.consecutive_failures = 0
        self.saves = 0

    def start(self, interval_seconds: float, ledger: AnswerLedger, persist_fn: PersistFn) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if self._stopped:
            raise RuntimeError("auto-save scheduler was stopped")
        self._interval = float(interval_seconds)
        self._ledger = ledger
        self._persist = persist_fn
        self._next_due = self._now() + self._interval
        self._running = True

    def stop(self) -> None:
        """Stop for good; later ticks do nothing."""
        self._running = False
        self._stopped = True

    @property
    def running(self) -> bool:
        return self._running

    def tick(self) -> bool:
        """Save if a save is due. Returns ``True`` when a save succeeded."""
        if not self._running or self._next_due is None:
            return False
        now = self._now()
        if now < self._next_due:
            return False
        # skip slots missed while the host was suspended
        while self._next_due <= now:
            self._next_due += self._interval
        return self._save(now)

    def _save(self, now: float) -> bool:
        snapshot = self._ledger.snapshot()
        try:
            self._persist(snapshot)
        except AttemptTerminalError:
            raise
        except AttemptAccessError as exc:
            self.last_error = exc
            self.stop()
            logger.error("Auto-save stopped, attempt no longer reachable: %s", exc)
            return False
        except AttemptError as exc:
            self.consecutive_failures += 1
            self.last_error = exc
            logger.warning(
                "Auto-save failed (%d in a row), retrying in %.0fs: %s",
                self.consecutive_failures, self._interval, exc,
            )
            return False
        self.saves += 1
        self.consecutive_failures = 0
        self.last_error = None
        self.last_success = now
        logger.debug("Auto-saved %d ledger entries", len(snapshot))
        return True
