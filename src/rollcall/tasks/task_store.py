# src/rollcall/tasks/task_store.py

from __future__ import annotations

import json
import logging
import sqlite3
import time
from pathlib import Path

from ..core.errors import PersistenceError
from ..core.sqlite import connect, dumps_json, ensure_columns, loads_json, translate_errors
from .task_models import Recurrence, ScheduledTask, TaskKind

logger = logging.getLogger(__name__)


class TaskStore:
    """
    SQLite store for scheduled tasks.

    put() is an upsert by id and is committed (synchronous=FULL) before it
    returns: a task the Scheduler persisted is recoverable after a crash.

    Failures surface as PersistenceError; the Scheduler decides whether to
    degrade to in-memory scheduling.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "rollcall.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count()
        except PersistenceError:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        return connect(self._db_path)

    def _ensure_schema(self) -> None:
        with translate_errors("TaskStore schema"):
            conn = self._get_conn()
            try:
                cur = conn.cursor()
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS scheduler_tasks (
                        id TEXT PRIMARY KEY,
                        type TEXT NOT NULL,
                        execute_at INTEGER NOT NULL,
                        data TEXT NOT NULL DEFAULT '{}',
                        recurring_pattern TEXT,
                        recurring_days TEXT
                    )
                    """
                )
                ensure_columns(
                    cur,
                    "scheduler_tasks",
                    {
                        "recurring_pattern": "TEXT",
                        "recurring_days": "TEXT",
                        "updated_at": "INTEGER NOT NULL DEFAULT 0",
                    },
                )
                cur.execute(
                    "CREATE INDEX IF NOT EXISTS idx_scheduler_tasks_execute_at "
                    "ON scheduler_tasks(execute_at)"
                )
                conn.commit()
            finally:
                conn.close()

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> ScheduledTask:
        recurrence = None
        pattern = row["recurring_pattern"]
        if pattern:
            days = None
            raw_days = row["recurring_days"]
            if raw_days:
                try:
                    parsed = json.loads(raw_days)
                    days = tuple(int(d) for d in parsed) if isinstance(parsed, list) and parsed else None
                except (ValueError, TypeError):
                    logger.warning("Bad recurring_days for task %s: %r", row["id"], raw_days)
            recurrence = Recurrence(time_of_day=str(pattern), days=days)

        return ScheduledTask(
            id=str(row["id"]),
            kind=TaskKind.from_db(row["type"]),
            execute_at=int(row["execute_at"]),
            payload=loads_json(row["data"]),
            recurrence=recurrence,
        )

    # ---- public API ----

    def count(self) -> int:
        with translate_errors("TaskStore.count"):
            conn = self._get_conn()
            try:
                (n,) = conn.execute("SELECT COUNT(*) FROM scheduler_tasks").fetchone()
                return int(n)
            finally:
                conn.close()

    def put(self, task: ScheduledTask) -> None:
        rec = task.recurrence
        days = json.dumps(list(rec.days)) if rec is not None and rec.days else None
        with translate_errors(f"TaskStore.put({task.id})"):
            conn = self._get_conn()
            try:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO scheduler_tasks(
                        id, type, execute_at, data, recurring_pattern, recurring_days, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        task.id,
                        task.kind.value,
                        int(task.execute_at),
                        dumps_json(task.payload),
                        rec.time_of_day if rec is not None else None,
                        days,
                        int(time.time() * 1000),
                    ),
                )
                conn.commit()
            finally:
                conn.close()
        logger.debug("Task saved id=%s kind=%s execute_at=%s", task.id, task.kind.value, task.execute_at)

    def get(self, task_id: str) -> ScheduledTask | None:
        with translate_errors(f"TaskStore.get({task_id})"):
            conn = self._get_conn()
            try:
                row = conn.execute("SELECT * FROM scheduler_tasks WHERE id = ?", (task_id,)).fetchone()
                return self._row_to_task(row) if row else None
            finally:
                conn.close()

    def delete(self, task_id: str) -> bool:
        with translate_errors(f"TaskStore.delete({task_id})"):
            conn = self._get_conn()
            try:
                cur = conn.execute("DELETE FROM scheduler_tasks WHERE id = ?", (task_id,))
                conn.commit()
                return cur.rowcount > 0
            finally:
                conn.close()

    def list_all(self) -> list[ScheduledTask]:
        with translate_errors("TaskStore.list_all"):
            conn = self._get_conn()
            try:
                rows = conn.execute("SELECT * FROM scheduler_tasks ORDER BY execute_at ASC, id ASC").fetchall()
            finally:
                conn.close()

        out: list[ScheduledTask] = []
        for row in rows:
            try:
                out.append(self._row_to_task(row))
            except (TypeError, ValueError):
                logger.exception("Skipping unreadable task row id=%s", row["id"])
        return out

    def clear(self) -> int:
        with translate_errors("TaskStore.clear"):
            conn = self._get_conn()
            try:
                cur = conn.execute("DELETE FROM scheduler_tasks")
                conn.commit()
                return cur.rowcount
            finally:
                conn.close()
