# src/rollcall/registration/ledger.py

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from ..core.sqlite import connect, translate_errors
from .models import ReactionKind, ReactionRecord

logger = logging.getLogger(__name__)


class ReactionLedger:
    """
    Idempotent opt-in/opt-out ledger keyed by (user_id, window_id, kind).

    The gateway delivers at least once and possibly out of order, so every
    write is guarded by its event timestamp: a write only lands if it is not
    older than the stored row (last writer wins, ties go to the newer call).
    Replaying any prefix of the event stream therefore converges to the
    same state.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("ReactionLedger ready db=%s", self._db_path)

    def _get_conn(self) -> sqlite3.Connection:
        return connect(self._db_path)

    def _ensure_schema(self) -> None:
        with translate_errors("ReactionLedger schema"):
            conn = self._get_conn()
            try:
                cur = conn.cursor()
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS reactions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        window_id TEXT NOT NULL,
                        kind TEXT NOT NULL,
                        timestamp INTEGER NOT NULL,
                        removed INTEGER NOT NULL DEFAULT 0,
                        UNIQUE(user_id, window_id, kind)
                    )
                    """
                )
                cur.execute("CREATE INDEX IF NOT EXISTS idx_reactions_window ON reactions(window_id, kind)")
                conn.commit()
            finally:
                conn.close()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ReactionRecord:
        return ReactionRecord(
            user_id=str(row["user_id"]),
            window_id=str(row["window_id"]),
            kind=ReactionKind(row["kind"]),
            timestamp=int(row["timestamp"]),
            removed=bool(row["removed"]),
        )

    # ---- writes ----

    def record_opt_in(self, user_id: str, window_id: str, kind: ReactionKind, ts: int) -> bool:
        """
        Upsert an active record.

        Refreshes the timestamp of an active row, reactivates a removed one.
        Returns False if the event was older than the stored state.
        """
        with translate_errors("ReactionLedger.record_opt_in"):
            conn = self._get_conn()
            try:
                cur = conn.execute(
                    """
                    INSERT INTO reactions(user_id, window_id, kind, timestamp, removed)
                    VALUES (?, ?, ?, ?, 0)
                    ON CONFLICT(user_id, window_id, kind) DO UPDATE SET
                        removed = 0,
                        timestamp = excluded.timestamp
                    WHERE excluded.timestamp >= reactions.timestamp
                    """,
                    (user_id, window_id, ReactionKind(kind).value, int(ts)),
                )
                conn.commit()
                applied = cur.rowcount > 0
            finally:
                conn.close()

        if not applied:
            logger.debug("Stale opt-in ignored user=%s window=%s kind=%s ts=%s", user_id, window_id, kind, ts)
        return applied

    def record_opt_out(self, user_id: str, window_id: str, kind: ReactionKind, ts: int) -> bool:
        """Mark a record removed. No-op (returns False) when no newer-or-equal row exists."""
        with translate_errors("ReactionLedger.record_opt_out"):
            conn = self._get_conn()
            try:
                cur = conn.execute(
                    """
                    UPDATE reactions
                    SET removed = 1, timestamp = ?
                    WHERE user_id = ? AND window_id = ? AND kind = ? AND timestamp <= ?
                    """,
                    (int(ts), user_id, window_id, ReactionKind(kind).value, int(ts)),
                )
                conn.commit()
                return cur.rowcount > 0
            finally:
                conn.close()

    def retire_window(self, window_id: str) -> int:
        """Physically delete every record of a processed window."""
        with translate_errors("ReactionLedger.retire_window"):
            conn = self._get_conn()
            try:
                cur = conn.execute("DELETE FROM reactions WHERE window_id = ?", (window_id,))
                conn.commit()
                n = cur.rowcount
            finally:
                conn.close()
        logger.debug("Ledger retired window=%s rows=%d", window_id, n)
        return n

    # ---- reads (snapshots) ----

    def active_participants(self, window_id: str, kind: ReactionKind) -> set[str]:
        with translate_errors("ReactionLedger.active_participants"):
            conn = self._get_conn()
            try:
                rows = conn.execute(
                    """
                    SELECT user_id FROM reactions
                    WHERE window_id = ? AND kind = ? AND removed = 0
                    """,
                    (window_id, ReactionKind(kind).value),
                ).fetchall()
                return {str(r["user_id"]) for r in rows}
            finally:
                conn.close()

    def records_for_window(self, window_id: str) -> list[ReactionRecord]:
        with translate_errors("ReactionLedger.records_for_window"):
            conn = self._get_conn()
            try:
                rows = conn.execute(
                    "SELECT * FROM reactions WHERE window_id = ? ORDER BY timestamp ASC, id ASC",
                    (window_id,),
                ).fetchall()
                return [self._row_to_record(r) for r in rows]
            finally:
                conn.close()
