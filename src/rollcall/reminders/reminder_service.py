# src/rollcall/reminders/reminder_service.py

from __future__ import annotations

import logging
from collections.abc import Iterable

from ..core.clock import DATE_FORMAT, TIME_FORMAT, Clock
from ..core.errors import ErrorReporter, ErrorType
from ..core.ports import Gateway
from ..registration.render import render_template
from ..tasks.recurrence import parse_schedule_entry
from ..tasks.scheduler import Scheduler
from ..tasks.task_models import ScheduledTask

logger = logging.getLogger(__name__)

TASK_REMINDER = "reminder"

DEFAULT_REMINDER_TEMPLATE = "Reminder: meal registration is open. React on today's message to register ({time})."


class ReminderService:
    """Recurring reminder messages ("HH:MM" or cron entries) posted to one channel."""

    def __init__(
        self,
        *,
        scheduler: Scheduler,
        gateway: Gateway,
        clock: Clock,
        reporter: ErrorReporter,
        channel_id: str | None,
        schedule: Iterable[str] = (),
        template: str = DEFAULT_REMINDER_TEMPLATE,
    ) -> None:
        self._scheduler = scheduler
        self._gateway = gateway
        self._clock = clock
        self._reporter = reporter
        self._channel_id = channel_id or None
        self._schedule = [s for s in schedule if s and s.strip()]
        self._template = template

    @property
    def enabled(self) -> bool:
        return bool(self._channel_id and self._schedule)

    def install(self) -> None:
        self._scheduler.subscribe(self.handle_task)

    def schedule_daily(self) -> list[ScheduledTask]:
        if not self.enabled:
            logger.info("Reminders disabled (no channel or schedule configured).")
            return []

        out: list[ScheduledTask] = []
        used: set[str] = set()
        for entry in self._schedule:
            try:
                rule = parse_schedule_entry(entry)
            except ValueError as e:
                self._reporter.report(ErrorType.TASK_SCHEDULING, f"Invalid reminder schedule entry {entry!r}", error=e)
                continue

            task_id = f"reminder_{rule.time_of_day.replace(':', '')}"
            if task_id in used:
                task_id = f"{task_id}_{len(used)}"
            used.add(task_id)

            out.append(
                self._scheduler.schedule_recurring(
                    task_id,
                    rule.time_of_day,
                    {"type": TASK_REMINDER},
                    rule.days,
                )
            )
        logger.info("Reminders scheduled: %d", len(out))
        return out

    async def handle_task(self, task: ScheduledTask) -> None:
        if task.payload_type != TASK_REMINDER:
            return
        await self.send_reminder()

    async def send_reminder(self) -> str | None:
        if not self._channel_id:
            return None
        now = self._clock.now()
        text = render_template(
            self._template,
            date=now.strftime(DATE_FORMAT),
            time=now.strftime(TIME_FORMAT),
        )
        try:
            message_id = await self._gateway.send_message(self._channel_id, text)
        except Exception as e:
            self._reporter.report(ErrorType.MESSAGE_SENDING, "Failed to send reminder", error=e)
            return None
        logger.info("Reminder sent channel=%s", self._channel_id)
        return message_id
