# tests/conftest.py

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path

import pytest

from rollcall.cli.bootstrap import create_app_state
from rollcall.config import Settings
from rollcall.connectors.console_gateway import ConsoleGateway
from rollcall.core.clock import Clock
from rollcall.core.errors import ErrorReporter
from rollcall.core.state import AppState
from rollcall.registration.ledger import ReactionLedger
from rollcall.registration.manager import RegistrationManager
from rollcall.registration.models import ReactionKind, WindowKind, WindowSpec
from rollcall.registration.recovery import RecoveryManager
from rollcall.registration.window_store import WindowStore
from rollcall.tasks.scheduler import Scheduler
from rollcall.tasks.task_store import TaskStore

from .fakes import FakeGateway, FakeSink, FakeTime

# Monday 2025-03-10 08:00 UTC
START = datetime(2025, 3, 10, 8, 0, tzinfo=timezone.utc)

BREAKFAST_KEY = "🌞"
DINNER_KEY = "🌙"
LATE_KEY = "⏰"


def utc_ms(*args: int) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "rollcall.sqlite3"


@pytest.fixture()
def fake_time() -> FakeTime:
    return FakeTime(START.timestamp())


@pytest.fixture()
def clock(fake_time: FakeTime) -> Clock:
    return Clock(timezone.utc, now_fn=fake_time)


@pytest.fixture()
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture()
def reporter() -> ErrorReporter:
    return ErrorReporter()


@pytest.fixture()
def task_store(db_path: Path) -> TaskStore:
    return TaskStore(db_path)


@pytest.fixture()
def scheduler(task_store: TaskStore, clock: Clock, reporter: ErrorReporter) -> Scheduler:
    """Not started: timers are only armed after `await scheduler.start()`."""
    return Scheduler(task_store, clock, reporter=reporter, sweep_interval_seconds=60.0)


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway(roster={"U1", "U2", "U3"})


@pytest.fixture()
def windows(db_path: Path) -> WindowStore:
    return WindowStore(db_path)


@pytest.fixture()
def ledger(db_path: Path) -> ReactionLedger:
    return ReactionLedger(db_path)


@pytest.fixture()
def specs() -> list[WindowSpec]:
    return [
        WindowSpec(
            kind=WindowKind.REGULAR,
            channel_id="!meals",
            start="05:00",
            end="03:00",
            reactions={BREAKFAST_KEY: ReactionKind.BREAKFAST, DINNER_KEY: ReactionKind.DINNER},
            title="Meals {date}",
            body="React to register",
            footer="Closes {endTime}",
        ),
        WindowSpec(
            kind=WindowKind.LATE_MORNING,
            channel_id="!late",
            start="05:00",
            end="11:00",
            reactions={LATE_KEY: ReactionKind.LATE},
            title="Late breakfast {date}",
        ),
        WindowSpec(
            kind=WindowKind.LATE_EVENING,
            channel_id="!late",
            start="11:30",
            end="18:15",
            reactions={LATE_KEY: ReactionKind.LATE},
            title="Late dinner {date}",
        ),
    ]


def build_manager(
    *,
    scheduler: Scheduler,
    windows: WindowStore,
    ledger: ReactionLedger,
    gateway: FakeGateway,
    clock: Clock,
    reporter: ErrorReporter,
    specs: list[WindowSpec],
) -> RegistrationManager:
    return RegistrationManager(
        scheduler=scheduler,
        windows=windows,
        ledger=ledger,
        gateway=gateway,
        clock=clock,
        reporter=reporter,
        specs=specs,
        tracked_role_id="!everyone",
        retry_delay_seconds=60.0,
        bot_user_id=gateway.user_id,
    )


@pytest.fixture()
def manager(scheduler, windows, ledger, gateway, clock, reporter, specs) -> RegistrationManager:
    return build_manager(
        scheduler=scheduler,
        windows=windows,
        ledger=ledger,
        gateway=gateway,
        clock=clock,
        reporter=reporter,
        specs=specs,
    )


@pytest.fixture()
def recovery(windows, manager, gateway, clock, reporter) -> RecoveryManager:
    return RecoveryManager(
        windows=windows,
        registrations=manager,
        gateway=gateway,
        clock=clock,
        reporter=reporter,
    )


@pytest.fixture()
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    """
    Real Settings built from a controlled environment.

    Host ROLLCALL_* variables are cleared so a developer's .env never leaks in.
    """
    for name in list(os.environ):
        if name.startswith("ROLLCALL_"):
            monkeypatch.delenv(name)

    env = {
        "ROLLCALL_DATA_DIR": str(tmp_path / "data"),
        "ROLLCALL_TIMEZONE": "UTC",
        "ROLLCALL_REGISTRATION_CHANNEL_ID": "!meals",
        "ROLLCALL_TRACKED_ROLE_ID": "!meals",
        "ROLLCALL_LATE_WINDOWS_ENABLED": "0",
        "ROLLCALL_CONSOLE_ROSTER": "U1,U2,U3",
        "ROLLCALL_REMINDER_SCHEDULE": "06:00",
    }
    for k, v in env.items():
        monkeypatch.setenv(k, v)
    return Settings.from_env(load_env_file=False)


@pytest.fixture()
def console_out() -> list[str]:
    return []


@pytest.fixture()
def state(settings: Settings, fake_time: FakeTime, console_out: list[str]) -> AppState:
    """AppState wired by the real composition root over a console gateway and a fake clock."""
    clock = Clock(settings.timezone, now_fn=fake_time)
    gateway = ConsoleGateway(roster=settings.console_roster, emit=console_out.append, now_ms=clock.now_ms)
    return create_app_state(settings, gateway, clock=clock)
