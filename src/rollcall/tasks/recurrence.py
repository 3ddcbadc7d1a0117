# src/rollcall/tasks/recurrence.py

"""
Recurrence helpers.

The scheduler only understands "time of day + optional weekday set". Cron
expressions are accepted at the edges and compiled into that shape; anything
that does not fit (several times per day, day-of-month or month filters) is
rejected instead of being approximated.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from croniter import croniter

from ..core.clock import TimeOfDay, next_occurrence, normalize_days, parse_time_of_day
from .task_models import Recurrence


def make_recurrence(time_of_day: str, days: Iterable[int] | None = None) -> Recurrence:
    """Validate and normalize a recurrence rule. Raises ValueError."""
    tod = parse_time_of_day(time_of_day)
    return Recurrence(time_of_day=str(tod), days=normalize_days(days))


def _single_value(field: list, name: str) -> int:
    if len(field) != 1 or field[0] == "*" or not isinstance(field[0], int):
        raise ValueError(f"cron {name} must be a single value")
    return int(field[0])


def compile_cron(expression: str) -> Recurrence:
    """
    Compile a five-field cron expression into a Recurrence.

    "30 6 * * *"     -> 06:30 every day
    "0 18 * * 1-5"   -> 18:00 Monday..Friday
    """
    expr = (expression or "").strip()
    if len(expr.split()) != 5 or not croniter.is_valid(expr):
        raise ValueError(f"Invalid cron expression: {expression!r}")

    minutes, hours, dom, month, dow = croniter(expr).expanded[:5]

    minute = _single_value(minutes, "minute")
    hour = _single_value(hours, "hour")
    if dom != ["*"] or month != ["*"]:
        raise ValueError(f"cron day-of-month/month filters are not supported: {expression!r}")

    days: tuple[int, ...] | None = None
    if dow != ["*"]:
        if not all(isinstance(d, int) for d in dow):
            raise ValueError(f"Unsupported cron day-of-week field: {expression!r}")
        days = normalize_days(d % 7 for d in dow)
        if days is not None and len(days) == 7:
            days = None

    return Recurrence(time_of_day=str(TimeOfDay(hour, minute)), days=days)


def parse_schedule_entry(entry: str) -> Recurrence:
    """Accept either "HH:MM" or a cron expression."""
    raw = (entry or "").strip()
    if len(raw.split()) == 5:
        return compile_cron(raw)
    return make_recurrence(raw)


def next_fire(rule: Recurrence, now: datetime) -> datetime:
    return next_occurrence(rule.time_of_day, now, rule.days)
