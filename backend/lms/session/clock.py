"""Deadline-anchored countdown for a running test session.

The clock stores ``deadline = now() + duration`` and derives the remaining
time on demand, so a suspended host loop (backgrounded tab, sleeping
laptop) cannot make it drift. ``tick()`` is only a polling hook: the host
calls it about once a second and it fires the expiry callbacks.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Callable

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class SessionClock:
    def __init__(self, now: Clock = time.monotonic) -> None:
        self._now = now
        self._started_at: float | None = None
        self._deadline: float | None = None
        self._frozen_at = 0.0
        self._callbacks: list[Callable[[], None]] = []
        self._fired = False
        self._stopped = False

    # ── lifecycle ─────────────────────────────────────────────────────────

    def start(self, duration_seconds: float) -> None:
        if duration_seconds < 0:
            raise ValueError("duration_seconds must be non-negative")
        now = self._now()
        self._started_at = now
        self._deadline = now + duration_seconds
        self._fired = False
        self._stopped = False

    def stop(self) -> None:
        """Freeze the clock; a stopped clock never fires."""
        if self._deadline is not None and not self._stopped:
            # pin remaining/elapsed at the moment of stopping
            self._frozen_at = min(self._now(), self._deadline)
        self._stopped = True

    def on_expire(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    # ── queries ───────────────────────────────────────────────────────────

    @property
    def started(self) -> bool:
        return self._deadline is not None

    @property
    def expired(self) -> bool:
        return self._fired

    @property
    def stopped(self) -> bool:
        return self._stopped

    def _current(self) -> float:
        if self._stopped:
            return self._frozen_at
        return self._now()

    def remaining(self) -> int:
        """Whole seconds left, rounded up; never negative."""
        if self._deadline is None:
            return 0
        return max(0, math.ceil(self._deadline - self._current()))

    def elapsed(self) -> int:
        """Whole seconds since start, capped at the duration."""
        if self._started_at is None or self._deadline is None:
            return 0
        return int(min(self._current(), self._deadline) - self._started_at)

    # ── polling ───────────────────────────────────────────────────────────

    def tick(self) -> int:
        """Poll the clock; fire expiry callbacks once when time runs out."""
        remaining = self.remaining()
        if self._fired or self._stopped or self._deadline is None:
            return remaining
        if remaining == 0:
            self._fired = True
            logger.info("Session clock expired")
            for callback in list(self._callbacks):
                callback()
        return remaining
