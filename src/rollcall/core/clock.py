# src/rollcall/core/clock.py

"""
Timezone-aware time helpers.

All scheduling math happens on aware datetimes in the configured zone;
timestamps crossing component boundaries are epoch milliseconds (int).

Day-of-week numbering: 0 = Sunday ... 6 = Saturday.
"""

from __future__ import annotations

import re
import time as _time
from collections.abc import Callable, Iterable
from datetime import date, datetime, time, timedelta, tzinfo
from typing import NamedTuple
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Asia/Bangkok"

DATE_TIME_FORMAT = "%H:%M %d/%m/%Y"
DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"

_TOD_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")

# Enough to cover any day set; a valid weekday always appears within 7 days.
_MAX_DAY_SEARCH = 8


class TimeOfDay(NamedTuple):
    hour: int
    minute: int

    def as_time(self) -> time:
        return time(self.hour, self.minute)

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


def parse_time_of_day(raw: str) -> TimeOfDay:
    """Parse "HH:MM" (24h). Raises ValueError on malformed input."""
    m = _TOD_RE.match(raw or "")
    if not m:
        raise ValueError(f"Invalid time of day: {raw!r} (expected HH:MM)")
    hour, minute = int(m.group(1)), int(m.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time of day: {raw!r} (out of range)")
    return TimeOfDay(hour, minute)


def normalize_days(days: Iterable[int] | None) -> tuple[int, ...] | None:
    """Validate a weekday set (0 = Sunday). Empty/None means "every day"."""
    if days is None:
        return None
    out = sorted({int(d) for d in days})
    if not out:
        return None
    for d in out:
        if not 0 <= d <= 6:
            raise ValueError(f"Invalid day of week: {d} (expected 0..6, 0 = Sunday)")
    return tuple(out)


def day_of_week(dt: datetime | date) -> int:
    """Weekday with Sunday = 0."""
    return (dt.weekday() + 1) % 7


def at_time(day: date, tod: TimeOfDay, tz: tzinfo) -> datetime:
    return datetime.combine(day, tod.as_time(), tzinfo=tz)


def next_occurrence(
    tod: TimeOfDay | str,
    now: datetime,
    days: Iterable[int] | None = None,
) -> datetime:
    """
    Next wall-clock occurrence of `tod` at or after `now`.

    - If today's occurrence has not passed yet (equal counts as not passed),
      it is returned; otherwise tomorrow's.
    - With `days`, the candidate is advanced day by day until it lands on an
      allowed weekday.
    """
    if isinstance(tod, str):
        tod = parse_time_of_day(tod)
    tz = now.tzinfo
    if tz is None:
        raise ValueError("next_occurrence requires an aware datetime")

    day_set = normalize_days(days)

    candidate_day = now.date()
    if at_time(candidate_day, tod, tz) < now:
        candidate_day += timedelta(days=1)

    if day_set is not None:
        for _ in range(_MAX_DAY_SEARCH):
            if day_of_week(candidate_day) in day_set:
                break
            candidate_day += timedelta(days=1)

    return at_time(candidate_day, tod, tz)


def window_bounds(
    start: TimeOfDay | str,
    end: TimeOfDay | str,
    reference_day: date,
    tz: tzinfo,
) -> tuple[datetime, datetime]:
    """
    Start/end of a daily window that opens on `reference_day`.

    An end earlier than (or equal to) the start means the window ends on the
    next calendar day.
    """
    if isinstance(start, str):
        start = parse_time_of_day(start)
    if isinstance(end, str):
        end = parse_time_of_day(end)

    start_dt = at_time(reference_day, start, tz)
    end_day = reference_day if end > start else reference_day + timedelta(days=1)
    return start_dt, at_time(end_day, end, tz)


def current_window_bounds(
    start: TimeOfDay | str,
    end: TimeOfDay | str,
    now: datetime,
) -> tuple[datetime, datetime]:
    """
    Bounds of the most recent window occurrence whose start is <= now.

    For a cross-midnight window evaluated shortly after midnight this returns
    the window that opened yesterday.
    """
    if isinstance(start, str):
        start = parse_time_of_day(start)
    tz = now.tzinfo
    if tz is None:
        raise ValueError("current_window_bounds requires an aware datetime")

    day = now.date()
    if at_time(day, start, tz) > now:
        day -= timedelta(days=1)
    return window_bounds(start, end, day, tz)


def is_within(now: datetime, start: datetime, end: datetime) -> bool:
    return start <= now < end


def to_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


class Clock:
    """
    Source of "now" in the configured timezone.

    `now_fn` returns epoch seconds and is injectable for tests.
    """

    def __init__(
        self,
        timezone: str | tzinfo = DEFAULT_TIMEZONE,
        *,
        now_fn: Callable[[], float] | None = None,
    ) -> None:
        self._tz: tzinfo = ZoneInfo(timezone) if isinstance(timezone, str) else timezone
        self._now_fn = now_fn or _time.time

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        return datetime.fromtimestamp(self._now_fn(), tz=self._tz)

    def now_ms(self) -> int:
        return int(self._now_fn() * 1000)

    def from_ms(self, ms: int) -> datetime:
        return datetime.fromtimestamp(ms / 1000.0, tz=self._tz)

    def next_occurrence(self, tod: TimeOfDay | str, days: Iterable[int] | None = None) -> datetime:
        return next_occurrence(tod, self.now(), days)

    def format_ms(self, ms: int, fmt: str = DATE_TIME_FORMAT) -> str:
        return self.from_ms(ms).strftime(fmt)
