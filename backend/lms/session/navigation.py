"""Question navigation with navigation-triggered time attribution."""

from __future__ import annotations

import time
from typing import Callable

from lms.session.ledger import AnswerLedger


class NavigationController:
    """Tracks the current question index.

    Time is attributed to a question when the student leaves it (or when
    ``finalize()`` is called at submit), never per tick, so rapid switching
    cannot double count. Out-of-range moves are silently ignored.
    """

    def __init__(
        self,
        ledger: AnswerLedger,
        now: Callable[[], float] = time.monotonic,
        start_index: int = 0,
    ) -> None:
        self._ledger = ledger
        self._now = now
        self._ids = ledger.question_ids
        self._index = start_index if 0 <= start_index < len(self._ids) else 0
        self._arrived_at: float | None = None
        self._active = False

    def begin(self) -> None:
        """Arrive on the starting question and start its stopwatch."""
        if not self._ids:
            return
        self._active = True
        self._arrive()

    def _arrive(self) -> None:
        self._arrived_at = self._now()
        self._ledger.mark_visited(self._ids[self._index])

    def _leave(self) -> None:
        if self._arrived_at is None:
            return
        spent = max(0.0, self._now() - self._arrived_at)
        self._ledger.add_time_spent(self._ids[self._index], spent)
        self._arrived_at = None

    # ── moves ─────────────────────────────────────────────────────────────

    def go_to(self, index: int) -> int:
        if not self._active or not 0 <= index < len(self._ids) or index == self._index:
            return self._index
        self._leave()
        self._index = index
        self._arrive()
        return self._index

    def next(self) -> int:
        return self.go_to(self._index + 1)

    def previous(self) -> int:
        return self.go_to(self._index - 1)

    def finalize(self) -> None:
        """Attribute time on the current question and stop tracking."""
        self._leave()
        self._active = False

    # ── queries ───────────────────────────────────────────────────────────

    def current(self) -> int:
        return self._index

    @property
    def current_question_id(self) -> str | None:
        return self._ids[self._index] if self._ids else None

    @property
    def question_count(self) -> int:
        return len(self._ids)

    @property
    def active(self) -> bool:
        return self._active
