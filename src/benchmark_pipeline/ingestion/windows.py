"""
Fetch window planning.

Each (pool, provider) pair owns a planner. A planner walks backwards from
its anchor in contiguous windows; the cursor only moves when the adapter
reports how far back it actually consumed, so an unfinished window is
re-offered instead of skipped. When the cursor passes the lookback floor
the sweep restarts from "now" to pick up newly finished games.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from .models import TimeWindow

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class WindowPlanner:
    """Backward-walking planner with a fixed window span."""

    def __init__(
        self,
        span: timedelta,
        max_lookback: timedelta = timedelta(days=365),
        anchor_offset: timedelta = timedelta(0),
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        if span <= timedelta(0):
            raise ValueError("Window span must be positive")
        self.span = span
        self.max_lookback = max_lookback
        self.anchor_offset = anchor_offset
        self._clock = clock
        self._cursor = self._fresh_anchor()
        self.sweeps = 0

    def _fresh_anchor(self) -> datetime:
        return self._clock() - self.anchor_offset

    @property
    def cursor(self) -> datetime:
        return self._cursor

    @property
    def floor(self) -> datetime:
        return self._clock() - self.max_lookback

    def _window_ending_at(self, until: datetime) -> TimeWindow:
        return TimeWindow(since=until - self.span, until=until)

    def current_window(self) -> TimeWindow:
        """Window ending at the cursor. Does not move the cursor."""
        if self._cursor - self.span < self.floor:
            self.restart()
        return self._window_ending_at(self._cursor)

    def advance(self, consumed_since: datetime) -> None:
        """
        Record that everything from consumed_since up to the cursor was scanned.

        The cursor never moves forward here, so windows handed out after
        this call cannot overlap ones already consumed in this sweep.
        """
        if consumed_since < self._cursor:
            self._cursor = consumed_since

    def restart(self) -> None:
        self.sweeps += 1
        self._cursor = self._fresh_anchor()
        logger.info(f"Window planner reached lookback floor, starting sweep {self.sweeps}")

    def to_dict(self) -> dict:
        return {
            "cursor": self._cursor.isoformat(),
            "span_seconds": self.span.total_seconds(),
            "sweeps": self.sweeps,
        }


class MonthlyWindowPlanner(WindowPlanner):
    """Planner whose windows are whole calendar months, for archive-style APIs."""

    def __init__(
        self,
        max_lookback: timedelta = timedelta(days=365),
        anchor_offset: timedelta = timedelta(0),
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        super().__init__(
            span=timedelta(days=31),
            max_lookback=max_lookback,
            anchor_offset=anchor_offset,
            clock=clock,
        )

    @staticmethod
    def month_start(moment: datetime) -> datetime:
        return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    def _window_ending_at(self, until: datetime) -> TimeWindow:
        # The month containing the instant just before the cursor
        start = self.month_start(until - timedelta(microseconds=1))
        return TimeWindow(since=start, until=until)

    def current_window(self) -> TimeWindow:
        if self.month_start(self._cursor - timedelta(microseconds=1)) < self.month_start(self.floor):
            self.restart()
        return self._window_ending_at(self._cursor)
