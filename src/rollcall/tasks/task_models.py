# src/rollcall/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class TaskKind(StrEnum):
    ONE_TIME = "one_time"
    RECURRING = "recurring"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskKind:
        if not raw:
            return cls.ONE_TIME
        try:
            return cls(raw)
        except ValueError:
            return cls.ONE_TIME


class TaskState(StrEnum):
    """
    In-memory lifecycle of a scheduled task.

    pending -> armed -> fired -> (removed | rescheduled back to armed)

    Not persisted: every task loaded from the store starts as pending.
    """

    PENDING = "pending"
    ARMED = "armed"
    FIRED = "fired"


@dataclass(frozen=True, slots=True)
class Recurrence:
    """Time of day ("HH:MM") plus an optional weekday set (0 = Sunday)."""

    time_of_day: str
    days: tuple[int, ...] | None = None


@dataclass(frozen=True, slots=True)
class ScheduledTask:
    id: str
    kind: TaskKind
    execute_at: int  # epoch ms
    payload: dict[str, Any] = field(default_factory=dict)
    recurrence: Recurrence | None = None

    @property
    def is_recurring(self) -> bool:
        return self.kind == TaskKind.RECURRING

    @property
    def payload_type(self) -> str:
        return str(self.payload.get("type") or "")
