# src/rollcall/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import cast

from ..core.state import AppState
from ..registration.models import WindowKind
from ..registration.render import KIND_LABELS, render_summary

CommandEmitter = Callable[[str], None]
CommandResult = str | Awaitable[str]
CommandHandler4 = Callable[[AppState, list[str], str | None, str | None], CommandResult]
CommandHandler5 = Callable[
    [AppState, list[str], str | None, str | None, CommandEmitter | None], CommandResult
]
CommandHandler = CommandHandler4 | CommandHandler5

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /tasks, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        user_id: str | None = None,
        room_id: str | None = None,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        Handlers may be plain functions or coroutines.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 5

        if nparams >= 5:
            result = cast(CommandHandler5, handler)(state, args, user_id, room_id, emit)
        else:
            result = cast(CommandHandler4, handler)(state, args, user_id, room_id)

        if inspect.isawaitable(result):
            result = await result
        return cast(str, result)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def cmd_help(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    s = state.settings
    stats = state.reporter.statistics()
    return (
        "Status:\n"
        f"  Booted: {'yes' if state.booted else 'no'}\n"
        f"  Now: {state.clock.now():%Y-%m-%d %H:%M %Z}\n"
        f"  Scheduler: {'running' if state.scheduler.running else 'stopped'}, "
        f"{len(state.scheduler.list_tasks())} task(s)\n"
        f"  Open windows: {len(state.registrations.list_windows())}\n"
        f"  Errors: {stats['total']}\n"
        f"  Development mode: {'ON' if getattr(s, 'development_mode', False) else 'OFF'}"
    )


def cmd_tasks(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    tasks = state.scheduler.list_tasks()
    if not tasks:
        return "No scheduled tasks."
    lines = ["Scheduled tasks:"]
    for t in tasks:
        st = state.scheduler.task_state(t.id)
        rule = ""
        if t.recurrence is not None:
            days = ",".join(str(d) for d in t.recurrence.days) if t.recurrence.days else "daily"
            rule = f" [{t.recurrence.time_of_day} {days}]"
        lines.append(
            f"  {t.id} {t.kind.value} at {state.clock.format_ms(t.execute_at)}"
            f" ({st.value if st else '?'}){rule}"
        )
    return "\n".join(lines)


def cmd_windows(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    windows = state.registrations.list_windows()
    if not windows:
        return "No open registration windows."
    lines = ["Registration windows:"]
    for w in windows:
        counts = []
        spec = state.registrations.specs.get(w.kind)
        for kind in spec.reaction_kinds if spec else ():
            n = len(state.ledger.active_participants(w.id, kind))
            counts.append(f"{KIND_LABELS.get(kind, kind.value)}={n}")
        lines.append(
            f"  {w.identifier} [{w.status.value}] message={w.id} ends {state.clock.format_ms(w.end_timestamp)}"
            + (f" ({', '.join(counts)})" if counts else "")
        )
    return "\n".join(lines)


def cmd_errors(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    if args and args[0].lower() == "clear":
        state.reporter.clear()
        return "Error history cleared."

    stats = state.reporter.statistics()
    lines = [f"Errors: {stats['total']} total"]
    for name, n in stats["by_type"].items():
        if n:
            lines.append(f"  {name}: {n}")
    for rec in state.reporter.recent(10):
        lines.append(f"  - [{rec.error_type.value}] {rec.message}")
    return "\n".join(lines)


async def cmd_open(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    """
    /open <kind> [seconds]  -> open a window now (seconds: short test window)
    """
    if not args:
        return "Usage: /open regular|late_morning|late_evening [seconds]"
    try:
        kind = WindowKind.parse(args[0])
    except ValueError:
        return f"Unknown window kind: {args[0]}"

    duration = None
    if len(args) > 1:
        try:
            duration = float(args[1])
        except ValueError:
            return "Duration must be a number of seconds."

    window = await state.registrations.open_window(kind, duration_seconds=duration)
    if window is None:
        return f"Window {kind.value} was not opened (outside its hours or send failed)."
    return f"Window {window.identifier} open (message {window.id})."


async def cmd_close(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    if not args:
        return "Usage: /close <identifier>"
    summary = await state.registrations.close_window(args[0])
    if summary is None:
        return f"Window {args[0]} was not closed (unknown, already processed or retry scheduled)."
    return render_summary(summary, title=summary.window.identifier, closed_at=f"{state.clock.now():%H:%M}")


async def _cmd_reaction(state: AppState, args: list[str], *, added: bool) -> str:
    react = getattr(state.gateway, "react", None)
    if react is None:
        return "Simulated reactions are only available with the console gateway."
    if len(args) != 3:
        return f"Usage: /{'react' if added else 'unreact'} <user> <message_id> <emoji>"
    user, message_id, key = args
    ok = await react(user, message_id, key, added=added)
    return "ok" if ok else f"Reaction not delivered (unknown message {message_id} or gateway not ready)."


async def cmd_react(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    return await _cmd_reaction(state, args, added=True)


async def cmd_unreact(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    return await _cmd_reaction(state, args, added=False)


async def cmd_sweep(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    fired = await state.scheduler.sweep_once()
    return f"Sweep fired {len(fired)} task(s)." + (f" ({', '.join(fired)})" if fired else "")


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show scheduler/window status.")
registry.register("tasks", cmd_tasks, help_text="List scheduled tasks.")
registry.register("windows", cmd_windows, help_text="List unprocessed registration windows.")
registry.register("errors", cmd_errors, help_text="Show recent errors: /errors [clear].")
registry.register("open", cmd_open, help_text="Open a window now: /open <kind> [seconds].")
registry.register("close", cmd_close, help_text="Close and summarize a window: /close <identifier>.")
registry.register("react", cmd_react, help_text="Simulate a reaction: /react <user> <message> <emoji>.")
registry.register("unreact", cmd_unreact, help_text="Simulate removing a reaction.")
registry.register("sweep", cmd_sweep, help_text="Fire overdue tasks now.")
