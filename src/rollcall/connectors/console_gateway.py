# src/rollcall/connectors/console_gateway.py

from __future__ import annotations

import itertools
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime

from ..core.errors import GatewayError
from ..core.ports import GatewayMessage, ReactionListener

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


@dataclass(slots=True)
class _ConsoleMessage:
    channel_id: str
    body: str
    reactions: dict[str, set[str]] = field(default_factory=dict)  # key -> user ids


class ConsoleGateway:
    """
    In-process gateway for dry runs: messages are printed, reactions are
    injected with /react and /unreact.

    Nothing survives a restart, so recovery will discard windows opened in
    a previous console session.
    """

    def __init__(
        self,
        *,
        roster: Iterable[str] = (),
        bot_user_id: str = "@rollcall:console",
        emit: Callable[[str], None] | None = None,
        now_ms: Callable[[], int] | None = None,
    ) -> None:
        self._messages: dict[str, _ConsoleMessage] = {}
        self._roster = set(roster)
        self._ids = itertools.count(1)
        self._listener: ReactionListener | None = None
        self._emit = emit or (lambda text: print(text, flush=True))
        self._now_ms = now_ms or (lambda: int(time.time() * 1000))
        self.user_id = bot_user_id

    def set_reaction_listener(self, listener: ReactionListener | None) -> None:
        self._listener = listener

    def _print(self, channel_id: str, text: str) -> None:
        self._emit(f"[{_ts_local()}] #{channel_id}\n{text}\n")

    # ---- Gateway port ----

    async def send_message(self, channel_id: str, body: str) -> str:
        message_id = f"m{next(self._ids)}"
        self._messages[message_id] = _ConsoleMessage(channel_id=channel_id, body=body)
        self._print(channel_id, f"({message_id}) {body}")
        return message_id

    async def edit_message(self, channel_id: str, message_id: str, body: str) -> None:
        msg = self._messages.get(message_id)
        if msg is None:
            raise GatewayError(f"unknown message {message_id}")
        msg.body = body
        self._print(channel_id, f"({message_id}, edited) {body}")

    async def add_reaction(self, channel_id: str, message_id: str, key: str) -> None:
        msg = self._messages.get(message_id)
        if msg is not None:
            msg.reactions.setdefault(key, set()).add(self.user_id)

    async def remove_all_reactions(self, channel_id: str, message_id: str) -> None:
        msg = self._messages.get(message_id)
        if msg is not None:
            msg.reactions.clear()

    async def fetch_message(self, channel_id: str, message_id: str) -> GatewayMessage | None:
        msg = self._messages.get(message_id)
        if msg is None or msg.channel_id != channel_id:
            return None
        return GatewayMessage(channel_id=channel_id, message_id=message_id, body=msg.body, author_id=self.user_id)

    async def roster_with_role(self, role_id: str) -> set[str]:
        return set(self._roster)

    # ---- simulated inbound events ----

    async def react(self, user_id: str, message_id: str, key: str, *, added: bool = True) -> bool:
        msg = self._messages.get(message_id)
        if msg is None:
            return False

        users = msg.reactions.setdefault(key, set())
        if added:
            users.add(user_id)
        else:
            users.discard(user_id)

        listener = self._listener
        if listener is None:
            logger.info("Reaction dropped (gateway not ready) user=%s message=%s", user_id, message_id)
            return False

        ts = self._now_ms()
        if added:
            await listener.on_reaction_added(user_id, message_id, key, ts)
        else:
            await listener.on_reaction_removed(user_id, message_id, key, ts)
        return True
