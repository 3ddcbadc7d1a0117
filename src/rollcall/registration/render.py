# src/rollcall/registration/render.py

"""
Message bodies for registration windows.

Templates are plain strings with {placeholder} markers. Only the names
passed in are substituted; unknown markers are left untouched and nothing
in a template is ever evaluated.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from .models import ReactionKind, WindowSpec, WindowSummary

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")

KIND_LABELS: dict[ReactionKind, str] = {
    ReactionKind.BREAKFAST: "Breakfast",
    ReactionKind.DINNER: "Dinner",
    ReactionKind.LATE: "Late meal",
}


def render_template(template: str, **values: object) -> str:
    def _sub(m: re.Match[str]) -> str:
        name = m.group(1)
        if name in values:
            return str(values[name])
        return m.group(0)

    return _PLACEHOLDER_RE.sub(_sub, template or "")


def _mentions(user_ids: Iterable[str]) -> str:
    ids = sorted(user_ids)
    return ", ".join(ids) if ids else "-"


def render_opening(spec: WindowSpec, *, date: str, start_time: str, end_time: str) -> str:
    values = {"date": date, "startTime": start_time, "endTime": end_time}
    lines = []
    if spec.title:
        lines.append(render_template(spec.title, **values))
    if spec.body:
        lines.append(render_template(spec.body, **values))
    for key, kind in spec.reactions.items():
        lines.append(f"{key} {KIND_LABELS.get(kind, kind.value)}")
    if spec.footer:
        lines.append("")
        lines.append(render_template(spec.footer, **values))
    return "\n".join(lines)


def render_summary(summary: WindowSummary, *, title: str, closed_at: str) -> str:
    lines = [f"{title} (closed {closed_at})" if title else f"Registration closed {closed_at}"]
    for ks in summary.kinds:
        label = KIND_LABELS.get(ks.kind, ks.kind.value)
        lines.append(f"{label}: {len(ks.registered)} registered")
        lines.append(f"  registered: {_mentions(ks.registered)}")
        if summary.roster:
            lines.append(f"  missing: {_mentions(ks.missing)}")
    if summary.roster:
        lines.append(f"Not registered at all: {_mentions(summary.not_registered)}")
    return "\n".join(lines)


def render_reaction_log(*, user_id: str, added: bool, key: str, identifier: str, at: str) -> str:
    verb = "registered" if added else "unregistered"
    return f"[{at}] {user_id} {verb} {key} in {identifier}"
