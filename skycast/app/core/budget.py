"""
Daily budget for metered upstream API calls.

═══════════════════════════════════════════════════════════════════════════
SEMANTICS
═══════════════════════════════════════════════════════════════════════════

    record_call()  → bool    increments, returns previous_used < limit
    remaining()    → int     max(limit - used, 0)
    used_today()   → int     attempted calls today, overflow included

The counter resets when the UTC day changes (day = epoch_seconds // 86400).
Every access first reconciles the day marker; when several callers notice
the rollover at once, exactly one wins the compare-and-swap and zeroes the
counter, the others observe the already-reset value.

The limiter is soft: two callers racing at ``limit - 1`` may both be told
"within budget". Overshoot is bounded by the number of concurrent callers.

One instance is created at startup and handed to every consumer (the
history service and the backfill engine); nothing should build its own.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400


def utc_day(epoch_seconds: float) -> int:
    """Day number since the epoch for a UTC timestamp."""
    return int(epoch_seconds // SECONDS_PER_DAY)


class RateBudget:
    """
    Process-wide counter of metered calls, reset at UTC midnight.

    Parameters
    ----------
    daily_limit : int
        Calls allowed per UTC day.
    clock : callable
        Returns the current time as epoch seconds. Injected for tests.
    """

    def __init__(
        self,
        daily_limit: int,
        clock: Callable[[], float] = time.time,
    ):
        if daily_limit < 0:
            raise ValueError("daily_limit must be >= 0")
        self._limit = daily_limit
        self._clock = clock
        self._used = 0
        self._day = utc_day(clock())
        # guards every read-modify-write of the counter and the day marker
        self._lock = threading.Lock()
        self._resets = 0

    @property
    def limit(self) -> int:
        return self._limit

    def _compare_and_swap_day(self, expected: int, new: int) -> bool:
        with self._lock:
            if self._day != expected:
                return False
            self._day = new
            self._used = 0
            self._resets += 1
            return True

    def _reconcile_day(self) -> None:
        today = utc_day(self._clock())
        stored = self._day
        if stored != today and self._compare_and_swap_day(stored, today):
            logger.info("API budget reset for new UTC day %d", today)

    def record_call(self) -> bool:
        """Count one upstream call; True if it was within the daily limit."""
        self._reconcile_day()
        with self._lock:
            previous = self._used
            self._used += 1
        within = previous < self._limit
        if not within:
            logger.debug(
                "API budget exceeded (%d/%d)", previous + 1, self._limit,
            )
        return within

    def remaining(self) -> int:
        self._reconcile_day()
        return max(self._limit - self._used, 0)

    def used_today(self) -> int:
        self._reconcile_day()
        return self._used

    def is_exhausted(self) -> bool:
        return self.remaining() == 0

    @property
    def reset_count(self) -> int:
        """Number of day rollovers observed since construction."""
        return self._resets

    def to_dict(self) -> Dict[str, Any]:
        used = self.used_today()
        return {
            "daily_limit": self._limit,
            "used_today": used,
            "remaining": max(self._limit - used, 0),
        }
