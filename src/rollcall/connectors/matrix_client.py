# src/rollcall/connectors/matrix_client.py

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from nio import AsyncClient, AsyncClientConfig, JoinResponse, LoginResponse

from ..config import Settings

logger = logging.getLogger(__name__)

try:
    import olm  # type: ignore  # noqa: F401

    OLM_AVAILABLE = True
except ImportError:
    OLM_AVAILABLE = False


def _session_path(store_dir: Path) -> Path:
    return store_dir / "session.json"


def _load_json(path: Path) -> dict[str, Any]:
    val = json.loads(path.read_text("utf-8"))
    if isinstance(val, dict):
        return val
    raise ValueError("Expected JSON object")


def _atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False), "utf-8")
    os.replace(tmp, path)
    try:
        os.chmod(path, 0o600)
    except OSError:
        logger.debug("chmod 600 failed for %s", path)


async def create_matrix_client(settings: Settings) -> AsyncClient | None:
    """
    Create a logged-in Matrix AsyncClient.

    session.json (access token + device id) is reused across restarts so the
    bot keeps one device. The file is sensitive and lives under the local
    data dir.
    """
    homeserver = settings.matrix_homeserver.strip()
    user_id = settings.matrix_user_id.strip()
    password = settings.matrix_password.strip()
    store_dir = Path(settings.matrix_store_path)

    if not homeserver or not user_id:
        logger.error("Matrix is not configured: set ROLLCALL_MATRIX_HOMESERVER and ROLLCALL_MATRIX_USER_ID")
        return None

    store_dir.mkdir(parents=True, exist_ok=True)
    session_file = _session_path(store_dir)

    encryption_enabled = bool(OLM_AVAILABLE)
    if encryption_enabled:
        logger.info("python-olm detected: E2EE enabled")
    else:
        logger.warning("python-olm not installed: E2EE disabled (use unencrypted rooms)")

    client = AsyncClient(
        homeserver,
        user_id,
        store_path=str(store_dir) if encryption_enabled else None,
        config=AsyncClientConfig(encryption_enabled=encryption_enabled, store_sync_tokens=True),
    )

    # ---- Session restore ----
    if session_file.exists():
        try:
            data = _load_json(session_file)
            access_token = data.get("access_token")
            sess_user_id = data.get("user_id")
            device_id = data.get("device_id")
            if not access_token or not sess_user_id or not device_id:
                raise ValueError("session.json is missing required fields")

            client.access_token = str(access_token)
            client.user_id = str(sess_user_id)
            client.device_id = str(device_id)
            if encryption_enabled:
                client.load_store()
            logger.info("Matrix session restored for %s", client.user_id)
            return client
        except (OSError, ValueError) as e:
            logger.warning("Failed to restore Matrix session.json, will try password login: %r", e)

    # ---- Password login bootstrap ----
    if not password:
        logger.error(
            "Matrix session.json not found and password is not set. "
            "Set ROLLCALL_MATRIX_PASSWORD once to bootstrap a session."
        )
        await client.close()
        return None

    device_name = f"{settings.app_name} (Python)"
    logger.info("Logging in to Matrix to bootstrap a new session (device_name=%r)...", device_name)
    resp = await client.login(password=password, device_name=device_name)
    if not isinstance(resp, LoginResponse):
        logger.error("Matrix login failed: %r", resp)
        await client.close()
        return None

    try:
        _atomic_write_json(
            session_file,
            {"access_token": resp.access_token, "user_id": resp.user_id, "device_id": resp.device_id},
        )
        logger.info("Matrix session saved to %s (user=%s)", session_file, resp.user_id)
    except OSError as e:
        logger.warning("Failed to write Matrix session.json (%s): %r", session_file, e)

    return client


def configured_room_ids(settings: Settings) -> list[str]:
    """Every room the bot posts to or reads a roster from, deduplicated in config order."""
    rooms: list[str] = []
    for room_id in (
        settings.registration_channel_id,
        settings.late_registration_channel_id,
        settings.reaction_log_channel_id,
        settings.reminder_channel_id,
        settings.error_channel_id,
        settings.tracked_role_id,
    ):
        if room_id and room_id not in rooms:
            rooms.append(room_id)
    return rooms


async def join_configured_rooms(client: AsyncClient, settings: Settings) -> list[str]:
    """
    Join every configured room (no-op for rooms already joined).

    A failed join is logged, not fatal: the affected sends fail later and go
    through the normal error reporting. Returns the rooms that could not be joined.
    """
    failed: list[str] = []
    for room_id in configured_room_ids(settings):
        resp = await client.join(room_id)
        if isinstance(resp, JoinResponse):
            logger.info("Matrix room ready: %s", room_id)
        else:
            logger.warning("Failed to join Matrix room %s: %r", room_id, resp)
            failed.append(room_id)
    return failed
