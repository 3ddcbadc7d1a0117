# src/rollcall/registration/window_store.py

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import replace
from pathlib import Path

from ..core.sqlite import connect, ensure_columns, translate_errors
from .models import RegistrationWindow, WindowKind, WindowStatus

logger = logging.getLogger(__name__)


class WindowStore:
    """
    SQLite table of registration windows that have not been processed yet.

    Deleting a row is the commit point of a window close. The identifier
    column is UNIQUE so a restart can never open the same day's window twice.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("WindowStore ready db=%s", self._db_path)

    def _get_conn(self) -> sqlite3.Connection:
        return connect(self._db_path)

    def _ensure_schema(self) -> None:
        with translate_errors("WindowStore schema"):
            conn = self._get_conn()
            try:
                cur = conn.cursor()
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS registration_windows (
                        message_id TEXT PRIMARY KEY,
                        channel_id TEXT NOT NULL,
                        registration_type TEXT NOT NULL,
                        end_timestamp INTEGER NOT NULL,
                        identifier TEXT NOT NULL UNIQUE,
                        status TEXT NOT NULL DEFAULT 'open'
                    )
                    """
                )
                ensure_columns(
                    cur,
                    "registration_windows",
                    {
                        "status": "TEXT NOT NULL DEFAULT 'open'",
                        "created_at": "INTEGER NOT NULL DEFAULT 0",
                    },
                )
                conn.commit()
            finally:
                conn.close()

    @staticmethod
    def _row_to_window(row: sqlite3.Row) -> RegistrationWindow:
        return RegistrationWindow(
            id=str(row["message_id"]),
            channel_id=str(row["channel_id"]),
            kind=WindowKind(row["registration_type"]),
            end_timestamp=int(row["end_timestamp"]),
            identifier=str(row["identifier"]),
            status=WindowStatus.from_db(row["status"]),
            created_at=int(row["created_at"] or 0),
        )

    def add(self, window: RegistrationWindow) -> RegistrationWindow:
        """Insert a new window. Raises PersistenceError if the identifier already exists."""
        created_at = window.created_at or int(time.time() * 1000)
        with translate_errors(f"WindowStore.add({window.identifier})"):
            conn = self._get_conn()
            try:
                conn.execute(
                    """
                    INSERT INTO registration_windows(
                        message_id, channel_id, registration_type, end_timestamp,
                        identifier, status, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        window.id,
                        window.channel_id,
                        window.kind.value,
                        int(window.end_timestamp),
                        window.identifier,
                        window.status.value,
                        created_at,
                    ),
                )
                conn.commit()
            finally:
                conn.close()
        logger.debug("Window stored id=%s identifier=%s", window.id, window.identifier)
        return replace(window, created_at=created_at)

    def get(self, window_id: str) -> RegistrationWindow | None:
        with translate_errors(f"WindowStore.get({window_id})"):
            conn = self._get_conn()
            try:
                row = conn.execute(
                    "SELECT * FROM registration_windows WHERE message_id = ?", (window_id,)
                ).fetchone()
                return self._row_to_window(row) if row else None
            finally:
                conn.close()

    def get_by_identifier(self, identifier: str) -> RegistrationWindow | None:
        with translate_errors(f"WindowStore.get_by_identifier({identifier})"):
            conn = self._get_conn()
            try:
                row = conn.execute(
                    "SELECT * FROM registration_windows WHERE identifier = ?", (identifier,)
                ).fetchone()
                return self._row_to_window(row) if row else None
            finally:
                conn.close()

    def list_open_or_closed(self) -> list[RegistrationWindow]:
        with translate_errors("WindowStore.list_open_or_closed"):
            conn = self._get_conn()
            try:
                rows = conn.execute(
                    """
                    SELECT * FROM registration_windows
                    WHERE status IN ('open', 'closed')
                    ORDER BY end_timestamp ASC
                    """
                ).fetchall()
                return [self._row_to_window(r) for r in rows]
            finally:
                conn.close()

    def update_status(self, window_id: str, status: WindowStatus) -> bool:
        with translate_errors(f"WindowStore.update_status({window_id})"):
            conn = self._get_conn()
            try:
                cur = conn.execute(
                    "UPDATE registration_windows SET status = ? WHERE message_id = ?",
                    (status.value, window_id),
                )
                conn.commit()
                return cur.rowcount > 0
            finally:
                conn.close()

    def delete(self, window_id: str) -> bool:
        with translate_errors(f"WindowStore.delete({window_id})"):
            conn = self._get_conn()
            try:
                cur = conn.execute("DELETE FROM registration_windows WHERE message_id = ?", (window_id,))
                conn.commit()
                return cur.rowcount > 0
            finally:
                conn.close()
