# src/rollcall/core/sqlite.py

"""
Shared SQLite plumbing for the stores.

Every store opens a short-lived connection per call (no shared handles),
so stores are safe to use from the event loop and from worker threads alike.
"""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from .errors import PersistenceError

logger = logging.getLogger(__name__)


def connect(db_path: str | Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), timeout=30.0)
    conn.row_factory = sqlite3.Row
    with contextlib.suppress(sqlite3.Error):
        conn.execute("PRAGMA journal_mode=WAL")
    # A committed write must survive power loss before put() returns.
    conn.execute("PRAGMA synchronous=FULL")
    return conn


@contextlib.contextmanager
def translate_errors(action: str) -> Iterator[None]:
    """Re-raise sqlite3 failures as PersistenceError with the action name."""
    try:
        yield
    except sqlite3.Error as e:
        raise PersistenceError(f"{action} failed: {e}") from e


def ensure_columns(cur: sqlite3.Cursor, table: str, columns: dict[str, str]) -> None:
    """Add missing columns to an existing table (additive migrations only)."""
    cur.execute(f"PRAGMA table_info({table})")
    existing = {row["name"] for row in cur.fetchall()}
    for name, decl in columns.items():
        if name in existing:
            continue
        cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
        logger.info("%s migration: added column %s", table, name)


def dumps_json(value: dict[str, Any] | None) -> str:
    if not value:
        return "{}"
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def loads_json(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        val = json.loads(raw)
    except ValueError:
        logger.warning("Corrupt JSON column value ignored: %.80r", raw)
        return {}
    return val if isinstance(val, dict) else {}
