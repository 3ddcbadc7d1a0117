# src/rollcall/core/errors.py

"""
Error taxonomy and the operator-facing error reporter.

Components never let a failure escape into the scheduler loop. They catch it
at the execution boundary and hand it to ErrorReporter, which:
- logs it (with traceback when available),
- keeps a bounded buffer of recent errors + per-type counters,
- forwards a short notification to an optional NotificationSink
  (e.g. an operator channel).

Only InitializationError is meant to propagate (it aborts boot).
"""

from __future__ import annotations

import asyncio
import logging
import time
import traceback
from collections import Counter, deque
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from .ports import NotificationSink

logger = logging.getLogger(__name__)

MAX_RECENT_ERRORS = 50
MAX_STACK_CHARS = 500


class ErrorType(StrEnum):
    INITIALIZATION = "initialization"
    TASK_SCHEDULING = "task_scheduling"
    TASK_EXECUTION = "task_execution"
    TASK_CANCELLATION = "task_cancellation"
    PERSISTENCE = "persistence"
    MESSAGE_SENDING = "message_sending"
    UNKNOWN = "unknown"


class RollcallError(Exception):
    """Base class for all errors raised by rollcall components."""

    error_type: ClassVar[ErrorType] = ErrorType.UNKNOWN


class InitializationError(RollcallError):
    error_type = ErrorType.INITIALIZATION


class TaskSchedulingError(RollcallError):
    error_type = ErrorType.TASK_SCHEDULING


class PersistenceError(RollcallError):
    error_type = ErrorType.PERSISTENCE


class MessageSendingError(RollcallError):
    error_type = ErrorType.MESSAGE_SENDING


class GatewayError(MessageSendingError):
    """Raised by gateway adapters when the transport rejects a call."""


def classify(exc: BaseException) -> ErrorType:
    if isinstance(exc, RollcallError):
        return exc.error_type
    return ErrorType.UNKNOWN


@dataclass(frozen=True, slots=True)
class ErrorRecord:
    error_type: ErrorType
    message: str
    timestamp: float
    task_id: str | None = None
    task_kind: str | None = None
    execute_at: int | None = None
    error: str | None = None
    stack: str | None = None


class ErrorReporter:
    """
    Central sink for component failures.

    report() is synchronous so it can be called from any code path; the
    notification (if a sink is configured and a loop is running) is delivered
    in a background task. Use drain() to wait for pending notifications.
    """

    def __init__(
        self,
        sink: NotificationSink | None = None,
        *,
        max_recent: int = MAX_RECENT_ERRORS,
    ) -> None:
        self._sink = sink
        self._recent: deque[ErrorRecord] = deque(maxlen=max(1, int(max_recent)))
        self._counts: Counter[ErrorType] = Counter()
        self._pending: set[asyncio.Task[None]] = set()

    def set_sink(self, sink: NotificationSink | None) -> None:
        self._sink = sink

    def report(
        self,
        error_type: ErrorType,
        message: str,
        *,
        error: BaseException | None = None,
        task_id: str | None = None,
        task: Any = None,
    ) -> ErrorRecord:
        if task is not None and task_id is None:
            task_id = getattr(task, "id", None)

        stack = None
        if error is not None and error.__traceback__ is not None:
            stack = "".join(traceback.format_exception(error))[:MAX_STACK_CHARS]

        kind = getattr(task, "kind", None)
        record = ErrorRecord(
            error_type=error_type,
            message=message,
            timestamp=time.time(),
            task_id=task_id,
            task_kind=str(kind) if kind is not None else None,
            execute_at=getattr(task, "execute_at", None),
            error=repr(error) if error is not None else None,
            stack=stack,
        )

        self._recent.append(record)
        self._counts[error_type] += 1

        exc_info = error if error is not None else None
        if error_type == ErrorType.PERSISTENCE:
            logger.warning(
                "[%s] %s task_id=%s error=%r", error_type.value, message, task_id, error
            )
        else:
            logger.error(
                "[%s] %s task_id=%s", error_type.value, message, task_id, exc_info=exc_info
            )

        self._notify(record)
        return record

    def _notify(self, record: ErrorRecord) -> None:
        if self._sink is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; error notification skipped.")
            return

        t = loop.create_task(self._deliver(record))
        self._pending.add(t)
        t.add_done_callback(self._pending.discard)

    async def _deliver(self, record: ErrorRecord) -> None:
        sink = self._sink
        if sink is None:
            return
        try:
            await sink.notify(format_error_notification(record))
        except Exception:
            # Never recurse into report(): a broken sink would loop forever.
            logger.exception("Failed to deliver error notification type=%s", record.error_type.value)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def recent(self, limit: int | None = None) -> list[ErrorRecord]:
        items = list(self._recent)
        if limit is not None:
            items = items[-max(0, int(limit)):] if limit > 0 else []
        return items

    def statistics(self) -> dict[str, Any]:
        return {
            "total": sum(self._counts.values()),
            "by_type": {t.value: self._counts.get(t, 0) for t in ErrorType},
            "recent": len(self._recent),
        }

    def clear(self) -> None:
        self._recent.clear()
        self._counts.clear()


def format_error_notification(record: ErrorRecord) -> str:
    lines = [
        f"Scheduler error: {record.error_type.value}",
        f"Message: {record.message}",
        f"Time: {time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(record.timestamp))}",
    ]
    if record.task_id:
        lines.append(f"Task: {record.task_id}")
    if record.task_kind:
        lines.append(f"Task kind: {record.task_kind}")
    if record.execute_at is not None:
        lines.append(f"Execute at (ms): {record.execute_at}")
    if record.error:
        lines.append(f"Error: {record.error}")
    if record.stack:
        lines.append("Stack:")
        lines.append(record.stack)
    return "\n".join(lines)
