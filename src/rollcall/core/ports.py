# src/rollcall/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the chat transport and storage swappable and makes testing easier.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..tasks.task_models import ScheduledTask


@dataclass(frozen=True, slots=True)
class GatewayMessage:
    """Snapshot of a message as seen by the transport."""

    channel_id: str
    message_id: str
    body: str = ""
    author_id: str | None = None


class ReactionListener(Protocol):
    """Inbound side: the only entry points for ledger mutation."""

    async def on_reaction_added(self, user_id: str, message_id: str, key: str, ts: int) -> None: ...

    async def on_reaction_removed(self, user_id: str, message_id: str, key: str, ts: int) -> None: ...


class Gateway(Protocol):
    """
    Chat transport used by the core.

    Implementations raise GatewayError (or any exception) on transport failure;
    fetch_message returns None when the channel or message no longer exists.
    """

    async def send_message(self, channel_id: str, body: str) -> str: ...

    async def edit_message(self, channel_id: str, message_id: str, body: str) -> None: ...

    async def add_reaction(self, channel_id: str, message_id: str, key: str) -> None: ...

    async def remove_all_reactions(self, channel_id: str, message_id: str) -> None: ...

    async def fetch_message(self, channel_id: str, message_id: str) -> GatewayMessage | None: ...

    async def roster_with_role(self, role_id: str) -> set[str]: ...

    def set_reaction_listener(self, listener: ReactionListener | None) -> None: ...


class NotificationSink(Protocol):
    """Operator notification target (error channel, console, ...)."""

    def notify(self, text: str) -> Awaitable[None]: ...


class TaskRepo(Protocol):
    """Durable task storage used by the Scheduler."""

    def put(self, task: ScheduledTask) -> None: ...

    def get(self, task_id: str) -> ScheduledTask | None: ...

    def delete(self, task_id: str) -> bool: ...

    def list_all(self) -> list[ScheduledTask]: ...


TaskHandler = Callable[["ScheduledTask"], Awaitable[None]]
