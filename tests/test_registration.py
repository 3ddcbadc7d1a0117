# tests/test_registration.py

from __future__ import annotations

from dataclasses import replace

import pytest

from rollcall.core.clock import Clock
from rollcall.core.errors import ErrorReporter
from rollcall.registration.ledger import ReactionLedger
from rollcall.registration.manager import TASK_WINDOW_CLOSE, TASK_WINDOW_OPEN, RegistrationManager
from rollcall.registration.models import ReactionKind, WindowKind, WindowStatus
from rollcall.registration.window_store import WindowStore
from rollcall.tasks.scheduler import Scheduler

from .conftest import BREAKFAST_KEY, DINNER_KEY, LATE_KEY, build_manager, utc_ms
from .fakes import FakeGateway, FakeTime, wait_until

REGULAR_ID = "regular_2025-03-10"
CLOSE_ID = f"close_{REGULAR_ID}"


def _errors(reporter: ErrorReporter, name: str) -> int:
    return reporter.statistics()["by_type"][name]


@pytest.mark.asyncio
async def test_open_window_sends_stores_and_arms_close(
    manager: RegistrationManager, gateway: FakeGateway, windows: WindowStore, scheduler: Scheduler
) -> None:
    window = await manager.open_window(WindowKind.REGULAR)

    assert window is not None
    assert window.identifier == REGULAR_ID
    assert window.id == "$m1"
    assert window.end_timestamp == utc_ms(2025, 3, 11, 3, 0)

    [msg] = gateway.sent
    assert msg.channel_id == "!meals"
    assert "Meals 2025-03-10" in msg.body
    assert f"{BREAKFAST_KEY} Breakfast" in msg.body
    assert "Closes 03:00 11/03/2025" in msg.body
    assert gateway.reactions_added == [("!meals", "$m1", BREAKFAST_KEY), ("!meals", "$m1", DINNER_KEY)]

    stored = windows.get("$m1")
    assert stored.status == WindowStatus.OPEN
    close = scheduler.get_task(CLOSE_ID)
    assert close.execute_at == window.end_timestamp
    assert close.payload == {"type": TASK_WINDOW_CLOSE, "identifier": REGULAR_ID, "window_id": "$m1"}


@pytest.mark.asyncio
async def test_open_window_twice_does_not_resend(manager: RegistrationManager, gateway: FakeGateway) -> None:
    first = await manager.open_window(WindowKind.REGULAR)
    second = await manager.open_window(WindowKind.REGULAR)

    assert second.id == first.id
    assert len(gateway.sent) == 1


@pytest.mark.asyncio
async def test_existing_window_gets_close_rearmed(
    manager: RegistrationManager, scheduler: Scheduler
) -> None:
    await manager.open_window(WindowKind.REGULAR)
    scheduler.cancel_task(CLOSE_ID)

    await manager.open_window(WindowKind.REGULAR)
    assert scheduler.has_task(CLOSE_ID)


@pytest.mark.asyncio
async def test_open_window_outside_hours_is_skipped(manager: RegistrationManager, gateway: FakeGateway) -> None:
    # 08:00 is outside 11:30-18:15
    assert await manager.open_window(WindowKind.LATE_EVENING) is None
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_send_failure_is_reported_and_nothing_stored(
    manager: RegistrationManager,
    gateway: FakeGateway,
    windows: WindowStore,
    scheduler: Scheduler,
    reporter: ErrorReporter,
) -> None:
    gateway.fail_send = 1

    assert await manager.open_window(WindowKind.REGULAR) is None
    assert _errors(reporter, "message_sending") == 1
    assert windows.list_open_or_closed() == []
    assert not scheduler.has_task(CLOSE_ID)


@pytest.mark.asyncio
async def test_reactions_are_filtered(
    manager: RegistrationManager, ledger: ReactionLedger, windows: WindowStore, clock: Clock
) -> None:
    window = await manager.open_window(WindowKind.REGULAR)
    now = clock.now_ms()

    await manager.on_reaction_added("@bot:test", window.id, BREAKFAST_KEY, now)
    await manager.on_reaction_added("U1", "$unknown", BREAKFAST_KEY, now)
    await manager.on_reaction_added("U1", window.id, "👍", now)
    await manager.on_reaction_added("U1", window.id, LATE_KEY, now)
    await manager.on_reaction_added("U1", window.id, BREAKFAST_KEY, window.end_timestamp + 1)
    assert ledger.records_for_window(window.id) == []

    await manager.on_reaction_added("U1", window.id, BREAKFAST_KEY, now)
    assert ledger.active_participants(window.id, ReactionKind.BREAKFAST) == {"U1"}

    windows.update_status(window.id, WindowStatus.CLOSED)
    await manager.on_reaction_added("U2", window.id, BREAKFAST_KEY, now + 1)
    await manager.on_reaction_removed("U1", window.id, BREAKFAST_KEY, now + 1)
    assert ledger.active_participants(window.id, ReactionKind.BREAKFAST) == {"U1"}


@pytest.mark.asyncio
async def test_close_window_edits_summary_and_processes(
    manager: RegistrationManager,
    gateway: FakeGateway,
    windows: WindowStore,
    ledger: ReactionLedger,
    scheduler: Scheduler,
    clock: Clock,
) -> None:
    window = await manager.open_window(WindowKind.REGULAR)
    now = clock.now_ms()
    await manager.on_reaction_added("U1", window.id, BREAKFAST_KEY, now)
    await manager.on_reaction_added("U2", window.id, BREAKFAST_KEY, now)
    await manager.on_reaction_added("U2", window.id, DINNER_KEY, now)

    summary = await manager.close_window(REGULAR_ID)

    assert summary is not None
    assert summary.registered(ReactionKind.BREAKFAST) == {"U1", "U2"}
    assert summary.registered(ReactionKind.DINNER) == {"U2"}
    assert summary.not_registered == {"U3"}
    dinner = next(k for k in summary.kinds if k.kind == ReactionKind.DINNER)
    assert dinner.missing == {"U1", "U3"}

    [edit] = gateway.edits
    assert edit.message_id == window.id
    assert edit.body.startswith("Meals 2025-03-10 (closed")
    assert "Breakfast: 2 registered" in edit.body
    assert "  registered: U1, U2" in edit.body
    assert "Not registered at all: U3" in edit.body
    assert gateway.cleared == [window.id]

    assert windows.get(window.id) is None
    assert ledger.records_for_window(window.id) == []
    assert not scheduler.has_task(CLOSE_ID)

    # Already processed
    assert await manager.close_window(REGULAR_ID) is None
    assert len(gateway.edits) == 1


@pytest.mark.asyncio
async def test_short_window_end_to_end_via_sweep(
    manager: RegistrationManager,
    gateway: FakeGateway,
    windows: WindowStore,
    scheduler: Scheduler,
    clock: Clock,
    fake_time: FakeTime,
) -> None:
    manager.install()
    window = await manager.open_window(WindowKind.REGULAR, duration_seconds=10)
    assert window.identifier == f"{REGULAR_ID}_080000"

    t0 = clock.now_ms()
    await manager.on_reaction_added("U1", window.id, BREAKFAST_KEY, t0 + 1000)
    await manager.on_reaction_added("U2", window.id, BREAKFAST_KEY, t0 + 2000)
    await manager.on_reaction_removed("U1", window.id, BREAKFAST_KEY, t0 + 3000)

    fake_time.advance(11)
    fired = await scheduler.sweep_once()

    assert fired == [f"close_{window.identifier}"]
    [edit] = gateway.edits
    assert "Breakfast: 1 registered" in edit.body
    assert "  registered: U2" in edit.body
    assert windows.list_open_or_closed() == []
    assert scheduler.list_tasks() == []


@pytest.mark.asyncio
async def test_edit_failure_keeps_window_and_retries(
    manager: RegistrationManager,
    gateway: FakeGateway,
    windows: WindowStore,
    scheduler: Scheduler,
    reporter: ErrorReporter,
    clock: Clock,
) -> None:
    window = await manager.open_window(WindowKind.REGULAR)
    gateway.fail_edit = 1

    assert await manager.close_window(REGULAR_ID) is None
    assert windows.get(window.id).status == WindowStatus.CLOSED
    assert scheduler.get_task(CLOSE_ID).execute_at == clock.now_ms() + 60_000
    assert _errors(reporter, "message_sending") == 1

    summary = await manager.close_window(REGULAR_ID)
    assert summary is not None
    assert windows.get(window.id) is None
    assert len(gateway.sent) == 1


@pytest.mark.asyncio
async def test_roster_failure_defers_close(
    manager: RegistrationManager, gateway: FakeGateway, windows: WindowStore, scheduler: Scheduler
) -> None:
    window = await manager.open_window(WindowKind.REGULAR)
    gateway.fail_roster = 1

    assert await manager.close_window(REGULAR_ID) is None
    assert gateway.edits == []
    assert windows.get(window.id) is not None
    assert scheduler.has_task(CLOSE_ID)


@pytest.mark.asyncio
async def test_missing_message_discards_window(
    manager: RegistrationManager, gateway: FakeGateway, windows: WindowStore, scheduler: Scheduler
) -> None:
    window = await manager.open_window(WindowKind.REGULAR)
    del gateway.messages[window.id]

    assert await manager.close_window(REGULAR_ID) is None
    assert gateway.edits == []
    assert windows.get(window.id) is None
    assert not scheduler.has_task(CLOSE_ID)


def test_schedule_daily_creates_open_tasks(manager: RegistrationManager, scheduler: Scheduler) -> None:
    tasks = manager.schedule_daily()

    assert sorted(t.id for t in tasks) == ["open_late_evening", "open_late_morning", "open_regular"]
    regular = scheduler.get_task("open_regular")
    assert regular.payload == {"type": TASK_WINDOW_OPEN, "kind": "regular"}
    assert regular.execute_at == utc_ms(2025, 3, 11, 5, 0)
    assert scheduler.get_task("open_late_evening").execute_at == utc_ms(2025, 3, 10, 11, 30)


@pytest.mark.asyncio
async def test_open_current_windows_catches_up(manager: RegistrationManager, gateway: FakeGateway) -> None:
    opened = await manager.open_current_windows()

    assert sorted(w.kind for w in opened) == [WindowKind.LATE_MORNING, WindowKind.REGULAR]
    assert sorted(m.channel_id for m in gateway.sent) == ["!late", "!meals"]
    assert len(manager.list_windows()) == 2


def _only_on(days, *, scheduler, windows, ledger, gateway, clock, reporter, specs) -> RegistrationManager:
    return build_manager(
        scheduler=scheduler,
        windows=windows,
        ledger=ledger,
        gateway=gateway,
        clock=clock,
        reporter=reporter,
        specs=[replace(s, days=days) for s in specs],
    )


@pytest.mark.asyncio
async def test_catch_up_skips_excluded_days(scheduler, windows, ledger, gateway, clock, reporter, specs) -> None:
    # Monday; Sundays only
    manager = _only_on(
        (0,), scheduler=scheduler, windows=windows, ledger=ledger, gateway=gateway, clock=clock, reporter=reporter, specs=specs
    )

    assert await manager.open_current_windows() == []
    assert await manager.open_window(WindowKind.REGULAR) is None
    assert gateway.sent == []
    assert manager.list_windows() == []


@pytest.mark.asyncio
async def test_overnight_window_counts_for_its_start_day(
    scheduler, windows, ledger, gateway, clock, reporter, specs, fake_time: FakeTime
) -> None:
    # Tuesday 02:00 is still inside Monday's 05:00-03:00 window
    fake_time.advance(18 * 3600)
    manager = _only_on(
        (1,), scheduler=scheduler, windows=windows, ledger=ledger, gateway=gateway, clock=clock, reporter=reporter, specs=specs
    )

    [window] = await manager.open_current_windows()
    assert window.identifier == REGULAR_ID


@pytest.mark.asyncio
async def test_development_window_task_opens_short_window(
    manager: RegistrationManager, scheduler: Scheduler, clock: Clock
) -> None:
    task = manager.schedule_development_window(duration_seconds=30)
    assert task.id == "open_dev_regular"
    assert task.execute_at == clock.now_ms() + 10_000

    await manager.handle_task(task)

    [window] = manager.list_windows()
    assert window.identifier == f"{REGULAR_ID}_080000"
    assert window.end_timestamp == clock.now_ms() + 30_000


@pytest.mark.asyncio
async def test_close_fires_from_scheduler_timer(
    manager: RegistrationManager, windows: WindowStore, scheduler: Scheduler, clock: Clock
) -> None:
    manager.install()
    await scheduler.start()
    try:
        window = await manager.open_window(WindowKind.REGULAR)
        manager.arm_close(window, at=clock.now_ms())

        await wait_until(lambda: windows.get(window.id) is None)
        await wait_until(lambda: not scheduler.has_task(CLOSE_ID))
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_reaction_log_channel_receives_changes(
    scheduler, windows, ledger, gateway, clock, reporter, specs
) -> None:
    manager = RegistrationManager(
        scheduler=scheduler,
        windows=windows,
        ledger=ledger,
        gateway=gateway,
        clock=clock,
        reporter=reporter,
        specs=specs,
        reaction_log_channel_id="!log",
        bot_user_id=gateway.user_id,
    )
    window = await manager.open_window(WindowKind.REGULAR)
    await manager.on_reaction_added("U1", window.id, BREAKFAST_KEY, clock.now_ms())
    await manager.on_reaction_removed("U1", window.id, BREAKFAST_KEY, clock.now_ms() + 1)

    logs = [m.body for m in gateway.sent if m.channel_id == "!log"]
    assert logs == [
        f"[08:00 10/03/2025] U1 registered {BREAKFAST_KEY} in {REGULAR_ID}",
        f"[08:00 10/03/2025] U1 unregistered {BREAKFAST_KEY} in {REGULAR_ID}",
    ]

    # No tracked role: summary lists registrations only
    summary = await manager.close_window(REGULAR_ID)
    assert summary.roster == frozenset()
    assert "missing" not in gateway.edits[0].body
