# src/rollcall/registration/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from ..core.clock import DATE_FORMAT


class WindowKind(StrEnum):
    REGULAR = "regular"
    LATE_MORNING = "late_morning"
    LATE_EVENING = "late_evening"

    @classmethod
    def parse(cls, raw: str) -> WindowKind:
        key = (raw or "").strip().lower().replace("-", "_")
        aliases = {"meal": cls.REGULAR, "morning": cls.LATE_MORNING, "evening": cls.LATE_EVENING}
        if key in aliases:
            return aliases[key]
        return cls(key)


class WindowStatus(StrEnum):
    """
    open -> closed -> processed

    PROCESSED is never written: deleting the row is what marks a window
    processed. The value is kept for reporting.
    """

    OPEN = "open"
    CLOSED = "closed"
    PROCESSED = "processed"

    @classmethod
    def from_db(cls, raw: str | None) -> WindowStatus:
        if not raw:
            return cls.OPEN
        try:
            return cls(raw)
        except ValueError:
            return cls.OPEN


class ReactionKind(StrEnum):
    BREAKFAST = "breakfast"
    DINNER = "dinner"
    LATE = "late"


@dataclass(frozen=True, slots=True)
class RegistrationWindow:
    id: str  # originating message id
    channel_id: str
    kind: WindowKind
    end_timestamp: int  # epoch ms
    identifier: str
    status: WindowStatus = WindowStatus.OPEN
    created_at: int = 0


@dataclass(frozen=True, slots=True)
class ReactionRecord:
    user_id: str
    window_id: str
    kind: ReactionKind
    timestamp: int
    removed: bool = False


@dataclass(frozen=True, slots=True)
class KindSummary:
    kind: ReactionKind
    registered: frozenset[str]
    missing: frozenset[str]


@dataclass(frozen=True, slots=True)
class WindowSummary:
    window: RegistrationWindow
    kinds: tuple[KindSummary, ...]
    roster: frozenset[str]
    not_registered: frozenset[str]

    def registered(self, kind: ReactionKind) -> frozenset[str]:
        for ks in self.kinds:
            if ks.kind == kind:
                return ks.registered
        return frozenset()


@dataclass(frozen=True, slots=True)
class WindowSpec:
    """Static configuration of one daily window kind."""

    kind: WindowKind
    channel_id: str
    start: str  # "HH:MM"
    end: str  # "HH:MM"; earlier than start means next day
    reactions: dict[str, ReactionKind] = field(default_factory=dict)  # emoji -> kind
    title: str = ""
    body: str = ""
    footer: str = ""
    days: tuple[int, ...] | None = None

    @property
    def reaction_kinds(self) -> tuple[ReactionKind, ...]:
        seen: list[ReactionKind] = []
        for k in self.reactions.values():
            if k not in seen:
                seen.append(k)
        return tuple(seen)


def window_identifier(kind: WindowKind, start: datetime) -> str:
    return f"{kind.value}_{start.strftime(DATE_FORMAT)}"


def close_task_id(identifier: str) -> str:
    return f"close_{identifier}"


def open_task_id(kind: WindowKind) -> str:
    return f"open_{kind.value}"
