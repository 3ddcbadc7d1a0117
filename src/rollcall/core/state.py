# src/rollcall/core/state.py

from __future__ import annotations

from dataclasses import dataclass

from ..config import Settings
from ..registration.ledger import ReactionLedger
from ..registration.manager import RegistrationManager
from ..registration.recovery import RecoveryManager, RecoveryReport
from ..registration.window_store import WindowStore
from ..reminders.reminder_service import ReminderService
from ..tasks.scheduler import Scheduler
from ..tasks.task_store import TaskStore
from .clock import Clock
from .errors import ErrorReporter
from .ports import Gateway


@dataclass
class AppState:
    """
    Everything the running app needs, wired once by cli.bootstrap.

    Components reference each other directly; AppState only exists so
    connectors and commands can reach them without globals.
    """

    settings: Settings
    clock: Clock
    reporter: ErrorReporter
    gateway: Gateway

    task_store: TaskStore
    windows: WindowStore
    ledger: ReactionLedger

    scheduler: Scheduler
    registrations: RegistrationManager
    recovery: RecoveryManager
    reminders: ReminderService

    last_recovery: RecoveryReport | None = None
    booted: bool = False
