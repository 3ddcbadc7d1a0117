# tests/test_recurrence.py

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from rollcall.tasks.recurrence import compile_cron, make_recurrence, next_fire, parse_schedule_entry
from rollcall.tasks.task_models import Recurrence


def test_make_recurrence_normalizes() -> None:
    assert make_recurrence("6:30", [5, 1, 1]) == Recurrence("06:30", (1, 5))
    assert make_recurrence("06:30", []) == Recurrence("06:30", None)


def test_compile_cron_daily() -> None:
    assert compile_cron("30 6 * * *") == Recurrence("06:30", None)


def test_compile_cron_weekdays() -> None:
    assert compile_cron("0 18 * * 1-5") == Recurrence("18:00", (1, 2, 3, 4, 5))


def test_compile_cron_sunday_as_seven() -> None:
    assert compile_cron("0 9 * * 7").days == (0,)


@pytest.mark.parametrize(
    "expr",
    [
        "",
        "not a cron",
        "*/5 * * * *",
        "0 6,18 * * *",
        "0 6 1 * *",
        "0 6 * 3 *",
        "0 6 * *",
    ],
)
def test_compile_cron_rejects_unsupported(expr: str) -> None:
    with pytest.raises(ValueError):
        compile_cron(expr)


def test_parse_schedule_entry_accepts_both_forms() -> None:
    assert parse_schedule_entry("12:00") == Recurrence("12:00", None)
    assert parse_schedule_entry("0 12 * * 0") == Recurrence("12:00", (0,))
    with pytest.raises(ValueError):
        parse_schedule_entry("noon")


def test_next_fire_uses_rule() -> None:
    now = datetime(2025, 3, 10, 19, 0, tzinfo=timezone.utc)  # Monday
    assert next_fire(Recurrence("18:00", (1, 2, 3, 4, 5)), now) == datetime(
        2025, 3, 11, 18, 0, tzinfo=timezone.utc
    )
