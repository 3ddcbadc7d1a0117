# src/rollcall/core/notify.py

from __future__ import annotations

import logging

from .ports import Gateway

logger = logging.getLogger(__name__)

# Chat transports reject very long bodies; stack traces get truncated here.
MAX_NOTIFICATION_CHARS = 3500


class ChannelNotificationSink:
    """Posts operator notifications into a chat channel via the gateway."""

    def __init__(self, gateway: Gateway, channel_id: str) -> None:
        self._gateway = gateway
        self._channel_id = channel_id

    async def notify(self, text: str) -> None:
        body = text if len(text) <= MAX_NOTIFICATION_CHARS else text[: MAX_NOTIFICATION_CHARS - 3] + "..."
        await self._gateway.send_message(self._channel_id, body)
        logger.debug("Error notification sent to %s", self._channel_id)
