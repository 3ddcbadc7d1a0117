# src/rollcall/registration/manager.py

from __future__ import annotations

"""
Registration window lifecycle.

scheduled -> open -> closed -> processed (row deleted)

- "open" tasks (recurring, one per window kind) send the opening message,
  store the window row and arm a one-time "close" task at end_timestamp.
- Reactions on an open window go to the ledger.
- The "close" task builds the summary from the ledger and the roster, edits
  the original message, strips reactions and only then deletes the row.
  Any failure before the delete leaves the row in place and re-arms the
  close task, so the close is retried until it succeeds.
"""

import logging
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from ..core.clock import DATE_FORMAT, DATE_TIME_FORMAT, TIME_FORMAT, Clock, current_window_bounds, day_of_week, is_within, to_ms
from ..core.errors import ErrorReporter, ErrorType, PersistenceError, classify
from ..core.ports import Gateway
from ..tasks.scheduler import Scheduler
from ..tasks.task_models import ScheduledTask
from .ledger import ReactionLedger
from .models import (
    KindSummary,
    ReactionKind,
    RegistrationWindow,
    WindowKind,
    WindowSpec,
    WindowStatus,
    WindowSummary,
    close_task_id,
    open_task_id,
    window_identifier,
)
from .render import render_opening, render_reaction_log, render_summary, render_template
from .window_store import WindowStore

logger = logging.getLogger(__name__)

TASK_WINDOW_OPEN = "window_open"
TASK_WINDOW_CLOSE = "window_close"

DEFAULT_RETRY_DELAY_SECONDS = 60.0


class RegistrationManager:
    def __init__(
        self,
        *,
        scheduler: Scheduler,
        windows: WindowStore,
        ledger: ReactionLedger,
        gateway: Gateway,
        clock: Clock,
        reporter: ErrorReporter,
        specs: Iterable[WindowSpec],
        tracked_role_id: str | None = None,
        reaction_log_channel_id: str | None = None,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        bot_user_id: str | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._windows = windows
        self._ledger = ledger
        self._gateway = gateway
        self._clock = clock
        self._reporter = reporter
        self._specs: dict[WindowKind, WindowSpec] = {s.kind: s for s in specs}
        self._tracked_role_id = tracked_role_id or None
        self._reaction_log_channel_id = reaction_log_channel_id or None
        self._retry_delay_ms = int(max(1.0, float(retry_delay_seconds)) * 1000)
        self._bot_user_id = bot_user_id

        # Per-identifier in-flight guards (sweep, recovery and timers may race).
        self._opening: set[str] = set()
        self._closing: set[str] = set()

    @property
    def specs(self) -> dict[WindowKind, WindowSpec]:
        return dict(self._specs)

    # ---- scheduling ----

    def install(self) -> None:
        self._scheduler.subscribe(self.handle_task)

    def schedule_daily(self) -> list[ScheduledTask]:
        out = []
        for spec in self._specs.values():
            out.append(
                self._scheduler.schedule_recurring(
                    open_task_id(spec.kind),
                    spec.start,
                    {"type": TASK_WINDOW_OPEN, "kind": spec.kind.value},
                    spec.days,
                )
            )
        logger.info("Daily registration windows scheduled: %s", ", ".join(k.value for k in self._specs))
        return out

    def schedule_development_window(
        self,
        kind: WindowKind = WindowKind.REGULAR,
        *,
        delay_seconds: float = 10.0,
        duration_seconds: float = 120.0,
    ) -> ScheduledTask:
        """Open a short window shortly after boot (local testing)."""
        at = self._clock.now_ms() + int(delay_seconds * 1000)
        return self._scheduler.schedule_once(
            f"open_dev_{kind.value}",
            at,
            {"type": TASK_WINDOW_OPEN, "kind": kind.value, "duration_seconds": float(duration_seconds)},
        )

    def arm_close(self, window: RegistrationWindow, *, at: int | None = None) -> ScheduledTask:
        return self._scheduler.schedule_once(
            close_task_id(window.identifier),
            window.end_timestamp if at is None else at,
            {"type": TASK_WINDOW_CLOSE, "identifier": window.identifier, "window_id": window.id},
        )

    async def handle_task(self, task: ScheduledTask) -> None:
        payload: dict[str, Any] = task.payload
        ptype = task.payload_type

        if ptype == TASK_WINDOW_OPEN:
            kind = WindowKind(payload["kind"])
            duration = payload.get("duration_seconds")
            await self.open_window(kind, duration_seconds=float(duration) if duration else None)
        elif ptype == TASK_WINDOW_CLOSE:
            await self.close_window(str(payload["identifier"]))

    # ---- open ----

    async def open_current_windows(self) -> list[RegistrationWindow]:
        """Open every configured window whose bounds contain now (boot catch-up)."""
        opened = []
        now = self._clock.now()
        for spec in self._specs.values():
            start, end = current_window_bounds(spec.start, spec.end, now)
            if not is_within(now, start, end):
                continue
            window = await self.open_window(spec.kind)
            if window is not None:
                opened.append(window)
        return opened

    async def open_window(
        self,
        kind: WindowKind,
        *,
        duration_seconds: float | None = None,
    ) -> RegistrationWindow | None:
        spec = self._specs.get(kind)
        if spec is None:
            logger.warning("No window configured for kind=%s", kind.value)
            return None

        now = self._clock.now()
        if duration_seconds:
            start, end = now, now + timedelta(seconds=duration_seconds)
            identifier = f"{window_identifier(kind, start)}_{start:%H%M%S}"
        else:
            start, end = current_window_bounds(spec.start, spec.end, now)
            if not is_within(now, start, end):
                logger.info(
                    "Not opening %s: outside window %s-%s", kind.value, spec.start, spec.end
                )
                return None
            if spec.days is not None and day_of_week(start) not in spec.days:
                logger.info("Not opening %s: %s is not a configured day", kind.value, start.strftime(DATE_FORMAT))
                return None
            identifier = window_identifier(kind, start)

        if identifier in self._opening:
            logger.info("Window %s is already being opened", identifier)
            return None

        existing = self._windows.get_by_identifier(identifier)
        if existing is not None:
            logger.info("Window %s already exists (status=%s); not reopening", identifier, existing.status.value)
            if existing.status == WindowStatus.OPEN and not self._scheduler.has_task(close_task_id(identifier)):
                self.arm_close(existing)
            return existing

        self._opening.add(identifier)
        try:
            return await self._open(spec, identifier, start, end)
        finally:
            self._opening.discard(identifier)

    async def _open(
        self,
        spec: WindowSpec,
        identifier: str,
        start: datetime,
        end: datetime,
    ) -> RegistrationWindow | None:
        body = render_opening(
            spec,
            date=start.strftime(DATE_FORMAT),
            start_time=start.strftime(TIME_FORMAT),
            end_time=end.strftime(DATE_TIME_FORMAT),
        )
        try:
            message_id = await self._gateway.send_message(spec.channel_id, body)
        except Exception as e:
            self._reporter.report(
                ErrorType.MESSAGE_SENDING,
                f"Failed to send opening message for {identifier}",
                error=e,
            )
            return None

        try:
            window = self._windows.add(
                RegistrationWindow(
                    id=message_id,
                    channel_id=spec.channel_id,
                    kind=spec.kind,
                    end_timestamp=to_ms(end),
                    identifier=identifier,
                    status=WindowStatus.OPEN,
                    created_at=self._clock.now_ms(),
                )
            )
        except PersistenceError as e:
            self._reporter.report(
                ErrorType.PERSISTENCE,
                f"Opening message for {identifier} was sent but the window could not be stored",
                error=e,
            )
            return None

        for key in spec.reactions:
            try:
                await self._gateway.add_reaction(spec.channel_id, message_id, key)
            except Exception:
                logger.warning("Failed to add reaction %s to %s", key, message_id, exc_info=True)

        self.arm_close(window)
        logger.info(
            "Window opened identifier=%s message=%s ends=%s",
            identifier,
            message_id,
            end.strftime(DATE_TIME_FORMAT),
        )
        return window

    # ---- reactions ----

    def _accept_reaction(
        self,
        user_id: str,
        message_id: str,
        key: str,
        ts: int,
    ) -> tuple[RegistrationWindow, ReactionKind] | None:
        if self._bot_user_id and user_id == self._bot_user_id:
            return None

        try:
            window = self._windows.get(message_id)
        except PersistenceError as e:
            self._reporter.report(ErrorType.PERSISTENCE, "Failed to look up window for reaction", error=e)
            return None

        if window is None:
            return None
        if window.status != WindowStatus.OPEN:
            logger.debug("Reaction on %s ignored: window is %s", window.identifier, window.status.value)
            return None
        if ts > window.end_timestamp:
            logger.debug("Reaction on %s ignored: after end", window.identifier)
            return None

        spec = self._specs.get(window.kind)
        kind = spec.reactions.get(key) if spec is not None else None
        if kind is None:
            logger.debug("Reaction %r is not valid for %s", key, window.identifier)
            return None
        return window, kind

    async def on_reaction_added(self, user_id: str, message_id: str, key: str, ts: int) -> None:
        accepted = self._accept_reaction(user_id, message_id, key, ts)
        if accepted is None:
            return
        window, kind = accepted
        try:
            applied = self._ledger.record_opt_in(user_id, window.id, kind, ts)
        except PersistenceError as e:
            self._reporter.report(ErrorType.PERSISTENCE, f"Failed to record opt-in for {window.identifier}", error=e)
            return
        if applied:
            logger.info("Opt-in user=%s window=%s kind=%s", user_id, window.identifier, kind.value)
            await self._log_reaction(user_id, key, window, ts, added=True)

    async def on_reaction_removed(self, user_id: str, message_id: str, key: str, ts: int) -> None:
        accepted = self._accept_reaction(user_id, message_id, key, ts)
        if accepted is None:
            return
        window, kind = accepted
        try:
            applied = self._ledger.record_opt_out(user_id, window.id, kind, ts)
        except PersistenceError as e:
            self._reporter.report(ErrorType.PERSISTENCE, f"Failed to record opt-out for {window.identifier}", error=e)
            return
        if applied:
            logger.info("Opt-out user=%s window=%s kind=%s", user_id, window.identifier, kind.value)
            await self._log_reaction(user_id, key, window, ts, added=False)

    async def _log_reaction(
        self,
        user_id: str,
        key: str,
        window: RegistrationWindow,
        ts: int,
        *,
        added: bool,
    ) -> None:
        if not self._reaction_log_channel_id:
            return
        text = render_reaction_log(
            user_id=user_id,
            added=added,
            key=key,
            identifier=window.identifier,
            at=self._clock.format_ms(ts),
        )
        try:
            await self._gateway.send_message(self._reaction_log_channel_id, text)
        except Exception:
            logger.warning("Failed to post reaction log for %s", window.identifier, exc_info=True)

    # ---- close ----

    async def summarize(self, window: RegistrationWindow) -> WindowSummary:
        spec = self._specs.get(window.kind)
        kinds = spec.reaction_kinds if spec is not None else ()

        roster: set[str] = set()
        if self._tracked_role_id:
            roster = set(await self._gateway.roster_with_role(self._tracked_role_id))

        summaries = []
        anyone: set[str] = set()
        for kind in kinds:
            registered = self._ledger.active_participants(window.id, kind)
            anyone |= registered
            summaries.append(
                KindSummary(
                    kind=kind,
                    registered=frozenset(registered),
                    missing=frozenset(roster - registered),
                )
            )

        return WindowSummary(
            window=window,
            kinds=tuple(summaries),
            roster=frozenset(roster),
            not_registered=frozenset(roster - anyone),
        )

    async def close_window(self, identifier: str) -> WindowSummary | None:
        """
        Close and process a window. Returns the summary, or None if there was
        nothing to do (already processed, in flight elsewhere, abandoned or
        failed and re-armed).
        """
        if identifier in self._closing:
            logger.info("Close of %s already in progress", identifier)
            return None
        self._closing.add(identifier)
        try:
            return await self._close(identifier)
        finally:
            self._closing.discard(identifier)

    async def _close(self, identifier: str) -> WindowSummary | None:
        try:
            window = self._windows.get_by_identifier(identifier)
        except PersistenceError as e:
            self._retry_close(identifier, None, ErrorType.PERSISTENCE, e)
            return None

        if window is None:
            logger.info("Window %s already processed", identifier)
            return None

        spec = self._specs.get(window.kind)

        try:
            if window.status == WindowStatus.OPEN:
                self._windows.update_status(window.id, WindowStatus.CLOSED)
                window = replace(window, status=WindowStatus.CLOSED)

            message = await self._gateway.fetch_message(window.channel_id, window.id)
            if message is None:
                logger.warning(
                    "Registration message for %s no longer exists; abandoning window without summary",
                    identifier,
                )
                self.discard_window(window)
                return None

            summary = await self.summarize(window)
            opened = self._clock.from_ms(window.created_at or window.end_timestamp)
            title = render_template(spec.title, date=opened.strftime(DATE_FORMAT)) if spec else ""
            body = render_summary(summary, title=title, closed_at=self._clock.now().strftime(DATE_TIME_FORMAT))

            await self._gateway.edit_message(window.channel_id, window.id, body)
            await self._gateway.remove_all_reactions(window.channel_id, window.id)
        except Exception as e:
            self._retry_close(identifier, window, classify(e), e)
            return None

        # Re-read after the awaits: recovery or a sweep may have finished it.
        try:
            if self._windows.get(window.id) is None:
                logger.info("Window %s was processed concurrently", identifier)
                return None
            self._windows.delete(window.id)
        except PersistenceError as e:
            self._retry_close(identifier, window, ErrorType.PERSISTENCE, e)
            return None

        self._retire_ledger(window)
        self._scheduler.cancel_task(close_task_id(identifier))
        logger.info(
            "Window processed identifier=%s %s",
            identifier,
            " ".join(f"{k.kind.value}={len(k.registered)}" for k in summary.kinds),
        )
        return summary

    def _retry_close(
        self,
        identifier: str,
        window: RegistrationWindow | None,
        error_type: ErrorType,
        error: BaseException,
    ) -> None:
        retry_at = self._clock.now_ms() + self._retry_delay_ms
        self._reporter.report(
            error_type,
            f"Failed to close window {identifier}; retrying at {self._clock.format_ms(retry_at)}",
            error=error,
            task_id=close_task_id(identifier),
        )
        if window is not None:
            self.arm_close(window, at=retry_at)
        else:
            self._scheduler.schedule_once(
                close_task_id(identifier),
                retry_at,
                {"type": TASK_WINDOW_CLOSE, "identifier": identifier},
            )

    def _retire_ledger(self, window: RegistrationWindow) -> None:
        try:
            self._ledger.retire_window(window.id)
        except PersistenceError as e:
            self._reporter.report(
                ErrorType.PERSISTENCE,
                f"Failed to retire ledger rows for {window.identifier}",
                error=e,
            )

    def discard_window(self, window: RegistrationWindow) -> None:
        """Forget a window that can never be completed (its message is gone)."""
        try:
            self._windows.delete(window.id)
        except PersistenceError as e:
            self._reporter.report(ErrorType.PERSISTENCE, f"Failed to delete window {window.identifier}", error=e)
            return
        self._retire_ledger(window)
        self._scheduler.cancel_task(close_task_id(window.identifier))
        logger.warning("Window discarded identifier=%s message=%s", window.identifier, window.id)

    def list_windows(self) -> list[RegistrationWindow]:
        return self._windows.list_open_or_closed()
