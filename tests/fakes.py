# tests/fakes.py

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from rollcall.core.errors import GatewayError, PersistenceError
from rollcall.core.ports import GatewayMessage, ReactionListener
from rollcall.tasks.task_models import ScheduledTask


class FakeTime:
    """Settable epoch-seconds source for Clock(now_fn=...)."""

    def __init__(self, start: float) -> None:
        self.t = float(start)

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


@dataclass(slots=True)
class SentMessage:
    channel_id: str
    message_id: str
    body: str


@dataclass
class FakeGateway:
    """
    In-memory Gateway used by registration/recovery tests.

    - Captures every call for assertions
    - fail_* counters make the next N calls of that kind raise GatewayError
    """

    roster: set[str] = field(default_factory=set)
    user_id: str = "@bot:test"

    sent: list[SentMessage] = field(default_factory=list)
    edits: list[SentMessage] = field(default_factory=list)
    reactions_added: list[tuple[str, str, str]] = field(default_factory=list)
    cleared: list[str] = field(default_factory=list)
    messages: dict[str, SentMessage] = field(default_factory=dict)
    listener: ReactionListener | None = None

    fail_send: int = 0
    fail_edit: int = 0
    fail_fetch: int = 0
    fail_remove: int = 0
    fail_roster: int = 0

    _next_id: int = 0

    def _maybe_fail(self, name: str) -> None:
        left = getattr(self, name)
        if left > 0:
            setattr(self, name, left - 1)
            raise GatewayError(f"injected failure: {name}")

    async def send_message(self, channel_id: str, body: str) -> str:
        self._maybe_fail("fail_send")
        self._next_id += 1
        msg = SentMessage(channel_id=channel_id, message_id=f"$m{self._next_id}", body=body)
        self.sent.append(msg)
        self.messages[msg.message_id] = msg
        return msg.message_id

    async def edit_message(self, channel_id: str, message_id: str, body: str) -> None:
        self._maybe_fail("fail_edit")
        self.edits.append(SentMessage(channel_id=channel_id, message_id=message_id, body=body))
        if message_id in self.messages:
            self.messages[message_id].body = body

    async def add_reaction(self, channel_id: str, message_id: str, key: str) -> None:
        self.reactions_added.append((channel_id, message_id, key))

    async def remove_all_reactions(self, channel_id: str, message_id: str) -> None:
        self._maybe_fail("fail_remove")
        self.cleared.append(message_id)

    async def fetch_message(self, channel_id: str, message_id: str) -> GatewayMessage | None:
        self._maybe_fail("fail_fetch")
        msg = self.messages.get(message_id)
        if msg is None or msg.channel_id != channel_id:
            return None
        return GatewayMessage(channel_id=channel_id, message_id=message_id, body=msg.body)

    async def roster_with_role(self, role_id: str) -> set[str]:
        self._maybe_fail("fail_roster")
        return set(self.roster)

    def set_reaction_listener(self, listener: ReactionListener | None) -> None:
        self.listener = listener


@dataclass
class FakeSink:
    notes: list[str] = field(default_factory=list)
    fail: bool = False

    async def notify(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("sink down")
        self.notes.append(text)


class FakeTaskRepo:
    """
    In-memory TaskRepo for scheduler unit tests.

    fail_put / fail_delete simulate a broken disk.
    """

    def __init__(self, *, fail_put: bool = False, fail_delete: bool = False) -> None:
        self.tasks: dict[str, ScheduledTask] = {}
        self.fail_put = fail_put
        self.fail_delete = fail_delete
        self.puts: list[str] = []

    def put(self, task: ScheduledTask) -> None:
        if self.fail_put:
            raise PersistenceError("disk full")
        self.puts.append(task.id)
        self.tasks[task.id] = task

    def get(self, task_id: str) -> ScheduledTask | None:
        return self.tasks.get(task_id)

    def delete(self, task_id: str) -> bool:
        if self.fail_delete:
            raise PersistenceError("disk gone")
        return self.tasks.pop(task_id, None) is not None

    def list_all(self) -> list[ScheduledTask]:
        return sorted(self.tasks.values(), key=lambda t: (t.execute_at, t.id))


class Recorder:
    """Async task handler that records what it was called with."""

    def __init__(self, *, fail: bool = False) -> None:
        self.calls: list[ScheduledTask] = []
        self.fail = fail

    async def __call__(self, task: ScheduledTask) -> Any:
        self.calls.append(task)
        if self.fail:
            raise RuntimeError(f"handler failed for {task.id}")

    @property
    def ids(self) -> list[str]:
        return [t.id for t in self.calls]


async def wait_until(predicate, *, timeout: float = 2.0) -> None:
    """Poll the loop until predicate() is true (timers fire on the real loop)."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)
