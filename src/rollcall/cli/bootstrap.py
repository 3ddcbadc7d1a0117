# src/rollcall/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState,
- runs the boot sequence in the only safe order.
"""

from __future__ import annotations

import logging

from ..config import Settings
from ..core.clock import Clock
from ..core.errors import ErrorReporter
from ..core.notify import ChannelNotificationSink
from ..core.ports import Gateway
from ..core.state import AppState
from ..registration.ledger import ReactionLedger
from ..registration.manager import RegistrationManager
from ..registration.models import ReactionKind, WindowKind, WindowSpec
from ..registration.recovery import RecoveryManager
from ..registration.window_store import WindowStore
from ..reminders.reminder_service import ReminderService
from ..tasks.scheduler import Scheduler
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings: Settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def build_window_specs(settings: Settings) -> list[WindowSpec]:
    """Window kinds that have a channel configured."""
    specs: list[WindowSpec] = []

    if settings.registration_channel_id:
        specs.append(
            WindowSpec(
                kind=WindowKind.REGULAR,
                channel_id=settings.registration_channel_id,
                start=settings.regular_start,
                end=settings.regular_end,
                reactions={
                    settings.emoji_breakfast: ReactionKind.BREAKFAST,
                    settings.emoji_dinner: ReactionKind.DINNER,
                },
                title=settings.template_regular_title,
                body=settings.template_regular_body,
                footer=settings.template_footer,
                days=settings.window_days,
            )
        )

    late_channel = settings.late_registration_channel_id
    if late_channel and settings.late_windows_enabled:
        for kind, start, end, title in (
            (
                WindowKind.LATE_MORNING,
                settings.late_morning_start,
                settings.late_morning_end,
                settings.template_late_morning_title,
            ),
            (
                WindowKind.LATE_EVENING,
                settings.late_evening_start,
                settings.late_evening_end,
                settings.template_late_evening_title,
            ),
        ):
            specs.append(
                WindowSpec(
                    kind=kind,
                    channel_id=late_channel,
                    start=start,
                    end=end,
                    reactions={settings.emoji_late: ReactionKind.LATE},
                    title=title,
                    body=settings.template_late_body,
                    footer=settings.template_footer,
                    days=settings.window_days,
                )
            )

    if not specs:
        logger.warning("No registration channel configured; no windows will be opened.")
    return specs


def create_app_state(settings: Settings, gateway: Gateway, *, clock: Clock | None = None) -> AppState:
    """
    Wire every component explicitly. Settings and gateway are injected so the
    same wiring serves Matrix, the console and tests.
    """
    _ensure_local_dirs(settings)

    clock = clock or Clock(settings.timezone)
    reporter = ErrorReporter()
    if settings.error_channel_id:
        reporter.set_sink(ChannelNotificationSink(gateway, settings.error_channel_id))

    task_store = TaskStore(settings.db_path)
    windows = WindowStore(settings.db_path)
    ledger = ReactionLedger(settings.db_path)

    scheduler = Scheduler(
        task_store,
        clock,
        reporter=reporter,
        sweep_interval_seconds=settings.sweep_interval_seconds,
    )
    registrations = RegistrationManager(
        scheduler=scheduler,
        windows=windows,
        ledger=ledger,
        gateway=gateway,
        clock=clock,
        reporter=reporter,
        specs=build_window_specs(settings),
        tracked_role_id=settings.tracked_role_id,
        reaction_log_channel_id=settings.reaction_log_channel_id,
        retry_delay_seconds=settings.retry_delay_seconds,
        bot_user_id=getattr(gateway, "user_id", None),
    )
    recovery = RecoveryManager(
        windows=windows,
        registrations=registrations,
        gateway=gateway,
        clock=clock,
        reporter=reporter,
    )
    reminders = ReminderService(
        scheduler=scheduler,
        gateway=gateway,
        clock=clock,
        reporter=reporter,
        channel_id=settings.reminder_channel_id,
        schedule=settings.reminder_schedule,
        template=settings.template_reminder,
    )

    return AppState(
        settings=settings,
        clock=clock,
        reporter=reporter,
        gateway=gateway,
        task_store=task_store,
        windows=windows,
        ledger=ledger,
        scheduler=scheduler,
        registrations=registrations,
        recovery=recovery,
        reminders=reminders,
    )


async def boot(state: AppState) -> None:
    """
    Boot sequence. InitializationError propagates and aborts startup.

    1. load persisted tasks (nothing armed yet)
    2. subscribe task handlers
    3. recovery of unprocessed windows
    4. start timers + sweep
    5. (re)schedule daily work, open windows that should already be open
    6. tell the gateway it may deliver reactions
    """
    settings = state.settings

    state.scheduler.load()
    state.registrations.install()
    state.reminders.install()

    state.last_recovery = await state.recovery.run()

    await state.scheduler.start()

    if settings.development_mode:
        logger.warning("Development mode: opening a short test window instead of the daily schedule.")
        state.registrations.schedule_development_window(duration_seconds=settings.dev_window_seconds)
    else:
        state.registrations.schedule_daily()
        await state.registrations.open_current_windows()
    state.reminders.schedule_daily()

    state.gateway.set_reaction_listener(state.registrations)
    state.booted = True
    logger.info("Boot complete: %d task(s) scheduled", len(state.scheduler.list_tasks()))


async def shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    state.gateway.set_reaction_listener(None)
    try:
        await state.scheduler.stop()
    except Exception:
        logger.exception("Scheduler stop failed.")
    try:
        await state.reporter.drain()
    except Exception:
        logger.debug("Error notification drain failed.", exc_info=True)
    state.task_store.close()
