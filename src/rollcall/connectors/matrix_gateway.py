# src/rollcall/connectors/matrix_gateway.py

from __future__ import annotations

"""
Matrix implementation of the Gateway port (matrix-nio).

Mapping:
- channel            -> room id
- message            -> m.room.message event id
- reaction           -> m.reaction annotation (rel_type m.annotation, key = emoji)
- reaction removed   -> redaction of that annotation event
- edit               -> m.replace relation
- "members with role"-> joined members of the room named by the role id

Reaction removals only carry the redacted event id, so the gateway keeps an
in-memory map of annotation events seen since startup. Only registration
messages (ones the bot reacted to or fetched) are followed, and a message is
dropped from the map once its reactions are cleared.
"""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass

from nio import (
    AsyncClient,
    JoinedMembersResponse,
    MatrixRoom,
    ReactionEvent,
    RedactionEvent,
    RoomGetEventResponse,
    RoomRedactResponse,
    RoomSendResponse,
)

from ..core.errors import GatewayError
from ..core.ports import GatewayMessage, ReactionListener

logger = logging.getLogger(__name__)

# Errors meaning "this room/message will never be reachable again".
_GONE_CODES = {"M_NOT_FOUND", "M_FORBIDDEN"}


def _ms_now() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class _Annotation:
    room_id: str
    user_id: str
    message_id: str
    key: str


class MatrixGateway:
    def __init__(self, client: AsyncClient) -> None:
        self._client = client
        self._listener: ReactionListener | None = None
        self._annotations: dict[str, _Annotation] = {}
        self._followed: set[str] = set()
        self._startup_ts = _ms_now()

    @property
    def user_id(self) -> str:
        return str(self._client.user_id)

    def set_reaction_listener(self, listener: ReactionListener | None) -> None:
        self._listener = listener
        if listener is not None:
            logger.info("Matrix gateway ready: reaction delivery enabled")

    # ---- outbound ----

    async def _send(self, room_id: str, message_type: str, content: dict) -> str:
        resp = await self._client.room_send(
            room_id=room_id,
            message_type=message_type,
            content=content,
            ignore_unverified_devices=True,
        )
        if not isinstance(resp, RoomSendResponse):
            raise GatewayError(f"room_send {message_type} to {room_id} failed: {resp!r}")
        return str(resp.event_id)

    async def send_message(self, channel_id: str, body: str) -> str:
        return await self._send(channel_id, "m.room.message", {"msgtype": "m.text", "body": body})

    async def edit_message(self, channel_id: str, message_id: str, body: str) -> None:
        await self._send(
            channel_id,
            "m.room.message",
            {
                "msgtype": "m.text",
                "body": f"* {body}",
                "m.new_content": {"msgtype": "m.text", "body": body},
                "m.relates_to": {"rel_type": "m.replace", "event_id": message_id},
            },
        )

    async def add_reaction(self, channel_id: str, message_id: str, key: str) -> None:
        self._followed.add(message_id)
        event_id = await self._send(
            channel_id,
            "m.reaction",
            {"m.relates_to": {"rel_type": "m.annotation", "event_id": message_id, "key": key}},
        )
        self._annotations[event_id] = _Annotation(channel_id, self.user_id, message_id, key)

    async def remove_all_reactions(self, channel_id: str, message_id: str) -> None:
        """Redact every annotation on the message known to this process."""
        targets = [eid for eid, a in self._annotations.items() if a.message_id == message_id]
        failed = 0
        for event_id in targets:
            resp = await self._client.room_redact(channel_id, event_id, reason="registration closed")
            if isinstance(resp, RoomRedactResponse):
                self._annotations.pop(event_id, None)
            else:
                failed += 1
                logger.debug("Redaction of %s failed: %r", event_id, resp)
        if failed:
            logger.warning("Could not redact %d/%d reaction(s) on %s", failed, len(targets), message_id)
        self._unfollow(message_id)

    def _unfollow(self, message_id: str) -> None:
        self._followed.discard(message_id)
        for event_id in [eid for eid, a in self._annotations.items() if a.message_id == message_id]:
            del self._annotations[event_id]

    async def fetch_message(self, channel_id: str, message_id: str) -> GatewayMessage | None:
        resp = await self._client.room_get_event(channel_id, message_id)
        if isinstance(resp, RoomGetEventResponse):
            event = resp.event
            self._followed.add(message_id)
            return GatewayMessage(
                channel_id=channel_id,
                message_id=message_id,
                body=str(getattr(event, "body", "") or ""),
                author_id=getattr(event, "sender", None),
            )
        code = getattr(resp, "status_code", None)
        if code in _GONE_CODES:
            return None
        raise GatewayError(f"room_get_event {message_id} in {channel_id} failed: {resp!r}")

    async def roster_with_role(self, role_id: str) -> set[str]:
        resp = await self._client.joined_members(role_id)
        if not isinstance(resp, JoinedMembersResponse):
            raise GatewayError(f"joined_members {role_id} failed: {resp!r}")
        return {m.user_id for m in resp.members if m.user_id != self.user_id}

    # ---- inbound ----

    async def _on_reaction(self, room: MatrixRoom, event: ReactionEvent) -> None:
        if event.reacts_to in self._followed:
            self._annotations[event.event_id] = _Annotation(room.room_id, event.sender, event.reacts_to, event.key)

        listener = self._listener
        if listener is None or event.sender == self.user_id:
            return
        if event.server_timestamp <= self._startup_ts:
            return
        await listener.on_reaction_added(event.sender, event.reacts_to, event.key, int(event.server_timestamp))

    async def _on_redaction(self, room: MatrixRoom, event: RedactionEvent) -> None:
        ann = self._annotations.pop(event.redacts, None)
        if ann is None:
            return

        listener = self._listener
        if listener is None or ann.user_id == self.user_id:
            return
        if event.server_timestamp <= self._startup_ts:
            return
        await listener.on_reaction_removed(ann.user_id, ann.message_id, ann.key, int(event.server_timestamp))

    def _guard(self, handler):
        async def wrapped(room: MatrixRoom, event) -> None:
            try:
                await handler(room, event)
            except Exception:
                logger.exception("Matrix event handler failed event=%s", getattr(event, "event_id", "?"))

        return wrapped

    # ---- sync loop ----

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        Manual sync loop so shutdown is prompt.

        Callbacks are attached after the initial sync: history replayed by the
        first sync must not be treated as live reactions.
        """
        client = self._client
        try:
            logger.info("Matrix initial sync...")
            await client.sync(timeout=30000, full_state=True)
            logger.info("Matrix initial sync done. Joined rooms: %d", len(client.rooms))

            client.add_event_callback(self._guard(self._on_reaction), ReactionEvent)
            client.add_event_callback(self._guard(self._on_redaction), RedactionEvent)

            while not stop_event.is_set():
                await client.sync(timeout=30000, full_state=False)
        except asyncio.CancelledError:
            logger.info("Matrix sync loop cancelled.")
            raise
        finally:
            logger.info("Matrix sync loop stopped.")

    async def close(self) -> None:
        with contextlib.suppress(Exception):
            await self._client.close()
