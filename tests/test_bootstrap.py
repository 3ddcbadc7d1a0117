# tests/test_bootstrap.py

from __future__ import annotations

import sqlite3
from dataclasses import replace

import pytest

from rollcall.cli.bootstrap import boot, build_window_specs, create_app_state, shutdown
from rollcall.config import Settings
from rollcall.connectors.console_gateway import ConsoleGateway
from rollcall.core.clock import Clock
from rollcall.core.errors import InitializationError
from rollcall.core.state import AppState
from rollcall.registration.models import ReactionKind, WindowKind

from .conftest import utc_ms
from .fakes import FakeTime, wait_until

REGULAR_ID = "regular_2025-03-10"


@pytest.mark.asyncio
async def test_boot_schedules_and_opens_current_window(state: AppState) -> None:
    try:
        await boot(state)

        assert state.booted
        assert state.last_recovery.total == 0
        assert state.scheduler.running
        assert state.scheduler.has_task("open_regular")
        assert state.scheduler.has_task(f"close_{REGULAR_ID}")
        [window] = state.registrations.list_windows()
        assert window.identifier == REGULAR_ID

        assert await state.gateway.react("U1", window.id, "🌞") is True
        assert state.ledger.active_participants(window.id, ReactionKind.BREAKFAST) == {"U1"}
    finally:
        await shutdown(state)

    assert not state.scheduler.running
    assert await state.gateway.react("U2", "m1", "🌞") is False


@pytest.mark.asyncio
async def test_restart_recovers_from_the_same_database(state: AppState, settings: Settings) -> None:
    try:
        await boot(state)
    finally:
        await shutdown(state)

    # Console messages do not survive a restart: recovery must discard the window
    restarted = create_app_state(
        settings,
        ConsoleGateway(roster=settings.console_roster, emit=lambda _: None, now_ms=state.clock.now_ms),
        clock=state.clock,
    )
    try:
        await boot(restarted)
        assert restarted.last_recovery.discarded == [REGULAR_ID]
        # Still inside the window: it is opened again on the new gateway
        assert [w.identifier for w in restarted.registrations.list_windows()] == [REGULAR_ID]
    finally:
        await shutdown(restarted)


@pytest.mark.asyncio
async def test_overdue_reminder_fires_after_restart(settings: Settings, fake_time: FakeTime) -> None:
    settings = replace(settings, reminder_channel_id="!meals")
    clock = Clock(settings.timezone, now_fn=fake_time)

    first = create_app_state(settings, ConsoleGateway(emit=lambda _: None, now_ms=clock.now_ms), clock=clock)
    try:
        await boot(first)
        assert first.scheduler.get_task("reminder_0600").execute_at == utc_ms(2025, 3, 11, 6, 0)
    finally:
        await shutdown(first)

    # Down through Tuesday 06:00; back up an hour later
    fake_time.advance(23 * 3600)
    out: list[str] = []
    restarted = create_app_state(
        settings,
        ConsoleGateway(roster=settings.console_roster, emit=out.append, now_ms=clock.now_ms),
        clock=clock,
    )
    try:
        await boot(restarted)
        await wait_until(lambda: any("Reminder:" in line for line in out))
        await wait_until(
            lambda: restarted.scheduler.get_task("reminder_0600").execute_at == utc_ms(2025, 3, 12, 6, 0)
        )
    finally:
        await shutdown(restarted)


@pytest.mark.asyncio
async def test_boot_skips_windows_on_excluded_days(settings: Settings, fake_time: FakeTime) -> None:
    # Monday boot; windows only open on Sundays
    settings = replace(settings, window_days=(0,))
    clock = Clock(settings.timezone, now_fn=fake_time)
    state = create_app_state(settings, ConsoleGateway(emit=lambda _: None, now_ms=clock.now_ms), clock=clock)
    try:
        await boot(state)
        assert state.registrations.list_windows() == []
        assert state.scheduler.get_task("open_regular").execute_at == utc_ms(2025, 3, 16, 5, 0)
    finally:
        await shutdown(state)


@pytest.mark.asyncio
async def test_development_mode_schedules_short_window(state: AppState) -> None:
    state.settings = replace(state.settings, development_mode=True, dev_window_seconds=30.0)
    try:
        await boot(state)
        task = state.scheduler.get_task("open_dev_regular")
        assert task.payload["duration_seconds"] == 30.0
        assert not state.scheduler.has_task("open_regular")
        assert state.registrations.list_windows() == []
    finally:
        await shutdown(state)


@pytest.mark.asyncio
async def test_boot_aborts_when_windows_cannot_be_listed(state: AppState, settings: Settings) -> None:
    conn = sqlite3.connect(settings.db_path)
    conn.execute("DROP TABLE registration_windows")
    conn.commit()
    conn.close()

    try:
        with pytest.raises(InitializationError):
            await boot(state)
        assert not state.booted
    finally:
        await shutdown(state)


def test_build_window_specs_from_settings(settings: Settings) -> None:
    specs = build_window_specs(replace(settings, late_windows_enabled=True))

    assert [s.kind for s in specs] == [WindowKind.REGULAR, WindowKind.LATE_MORNING, WindowKind.LATE_EVENING]
    regular, morning, _ = specs
    assert regular.reactions == {"🌞": ReactionKind.BREAKFAST, "🌙": ReactionKind.DINNER}
    assert (regular.start, regular.end) == ("05:00", "03:00")
    # Late channel falls back to the registration channel
    assert morning.channel_id == "!meals"
    assert morning.reactions == {"⏰": ReactionKind.LATE}


def test_no_channel_means_no_windows(settings: Settings) -> None:
    assert build_window_specs(replace(settings, registration_channel_id=None, late_registration_channel_id=None)) == []
