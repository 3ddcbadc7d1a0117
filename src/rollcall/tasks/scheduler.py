# src/rollcall/tasks/scheduler.py

from __future__ import annotations

"""
Persistent task scheduler.

Tasks live in two places:
- the TaskStore (durable; the source of truth after a restart),
- an in-memory table of armed loop timers (the source of truth while running).

Scheduling always persists before arming. Firing publishes the task to every
subscriber; afterwards one-time tasks are removed and recurring tasks are
recomputed from their rule and re-armed.

A sweep loop (default every 60s) fires anything whose execute_at has passed
but whose timer did not run (suspended process, clock jumps).

All methods must be called from the event loop thread.
"""

import asyncio
import contextlib
import functools
import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any

from ..core.clock import Clock, to_ms
from ..core.errors import (
    ErrorReporter,
    ErrorType,
    InitializationError,
    PersistenceError,
    TaskSchedulingError,
    classify,
)
from ..core.ports import TaskHandler, TaskRepo
from ..core.sqlite import dumps_json
from .recurrence import compile_cron, make_recurrence, next_fire
from .task_models import Recurrence, ScheduledTask, TaskKind, TaskState

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0


@dataclass(slots=True)
class _Timer:
    task: ScheduledTask
    handle: asyncio.TimerHandle


class Scheduler:
    def __init__(
        self,
        store: TaskRepo,
        clock: Clock,
        *,
        reporter: ErrorReporter,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self._store = store
        self._clock = clock
        self._reporter = reporter
        self._sweep_interval = max(0.05, float(sweep_interval_seconds))

        self._tasks: dict[str, ScheduledTask] = {}
        self._states: dict[str, TaskState] = {}
        self._timers: dict[str, _Timer] = {}
        self._inflight: dict[str, asyncio.Task[None]] = {}
        self._handlers: list[TaskHandler] = []

        self._running = False
        self._sweeper: asyncio.Task[None] | None = None

    # ---- subscribers ----

    def subscribe(self, handler: TaskHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: TaskHandler) -> None:
        with contextlib.suppress(ValueError):
            self._handlers.remove(handler)

    # ---- lifecycle ----

    @property
    def running(self) -> bool:
        return self._running

    def load(self) -> int:
        """
        Read persisted tasks into memory (state: pending).

        Nothing is armed until start(). Tasks already scheduled in this
        process win over their persisted copy.
        """
        try:
            tasks = self._store.list_all()
        except PersistenceError as e:
            raise InitializationError(f"Failed to load scheduled tasks: {e}") from e

        loaded = 0
        for task in tasks:
            if task.id in self._tasks:
                continue
            self._tasks[task.id] = task
            self._states[task.id] = TaskState.PENDING
            loaded += 1

        logger.info("Scheduler loaded %d task(s) from store", loaded)
        return loaded

    async def start(self) -> None:
        if self._running:
            return
        self._running = True

        for task in list(self._tasks.values()):
            if self._states.get(task.id) == TaskState.PENDING:
                self._arm(task)

        self._sweeper = asyncio.create_task(self._sweep_loop(), name="rollcall-scheduler-sweep")
        logger.info(
            "Scheduler started tasks=%d sweep_interval=%.1fs", len(self._tasks), self._sweep_interval
        )

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False

        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

        for task_id in list(self._timers):
            self._disarm(task_id)
            self._states[task_id] = TaskState.PENDING

        inflight = list(self._inflight.values())
        for t in inflight:
            t.cancel()
        if inflight:
            await asyncio.gather(*inflight, return_exceptions=True)

        logger.info("Scheduler stopped.")

    # ---- scheduling API ----

    def schedule_once(
        self,
        task_id: str,
        execute_at: int,
        payload: dict[str, Any] | None = None,
    ) -> ScheduledTask:
        """Schedule a one-time task at epoch-ms `execute_at` (replaces any task with this id)."""
        task = ScheduledTask(
            id=self._check_id(task_id),
            kind=TaskKind.ONE_TIME,
            execute_at=int(execute_at),
            payload=self._check_payload(task_id, payload),
        )
        return self._schedule(task)

    def schedule_recurring(
        self,
        task_id: str,
        time_of_day: str,
        payload: dict[str, Any] | None = None,
        days: Iterable[int] | None = None,
    ) -> ScheduledTask:
        """
        Schedule a daily task at "HH:MM", optionally limited to weekdays (0 = Sunday).

        Re-scheduling an id with the same rule and payload is a no-op.
        """
        try:
            rule = make_recurrence(time_of_day, days)
        except ValueError as e:
            self._reporter.report(
                ErrorType.TASK_SCHEDULING,
                f"Invalid recurrence for task {task_id}",
                error=e,
                task_id=task_id,
            )
            raise TaskSchedulingError(str(e)) from e
        return self._schedule_rule(task_id, rule, payload)

    def schedule_cron(
        self,
        task_id: str,
        expression: str,
        payload: dict[str, Any] | None = None,
    ) -> ScheduledTask:
        try:
            rule = compile_cron(expression)
        except ValueError as e:
            self._reporter.report(
                ErrorType.TASK_SCHEDULING,
                f"Invalid cron expression for task {task_id}",
                error=e,
                task_id=task_id,
            )
            raise TaskSchedulingError(str(e)) from e
        return self._schedule_rule(task_id, rule, payload)

    def cancel_task(self, task_id: str) -> bool:
        """
        Cancel a task: drop its timer and delete it from the store.

        Returns False if the id is unknown. A firing already in flight is
        not interrupted; it will notice it no longer owns the id.
        """
        known = task_id in self._tasks
        self._forget(task_id)

        deleted = False
        try:
            deleted = self._store.delete(task_id)
        except PersistenceError as e:
            self._reporter.report(
                ErrorType.TASK_CANCELLATION,
                f"Failed to delete task {task_id} from store; cancelled in memory only",
                error=e,
                task_id=task_id,
            )

        if known or deleted:
            logger.info("Task cancelled id=%s", task_id)
            return True
        return False

    # ---- introspection ----

    def get_task(self, task_id: str) -> ScheduledTask | None:
        return self._tasks.get(task_id)

    def has_task(self, task_id: str) -> bool:
        return task_id in self._tasks

    def task_state(self, task_id: str) -> TaskState | None:
        return self._states.get(task_id)

    def list_tasks(self) -> list[ScheduledTask]:
        return sorted(self._tasks.values(), key=lambda t: (t.execute_at, t.id))

    def is_executing(self, task_id: str) -> bool:
        t = self._inflight.get(task_id)
        return t is not None and not t.done()

    # ---- sweep ----

    async def sweep_once(self) -> list[str]:
        """Fire every pending/armed task that is overdue and not already executing."""
        now_ms = self._clock.now_ms()
        due: list[ScheduledTask] = []
        for task in list(self._tasks.values()):
            if task.execute_at > now_ms:
                continue
            if self._states.get(task.id) not in (TaskState.PENDING, TaskState.ARMED):
                continue
            if self.is_executing(task.id):
                continue
            due.append(task)

        runners = []
        for task in due:
            logger.warning(
                "Missed task detected id=%s execute_at=%s now=%s; firing now",
                task.id,
                task.execute_at,
                now_ms,
            )
            self._disarm(task.id)
            runners.append(self._spawn(task))

        if runners:
            await asyncio.gather(*runners, return_exceptions=True)
        return [t.id for t in due]

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._reporter.report(classify(e), "Scheduler sweep failed", error=e)

    # ---- internals ----

    @staticmethod
    def _check_id(task_id: str) -> str:
        task_id = (task_id or "").strip()
        if not task_id:
            raise TaskSchedulingError("task id is required")
        return task_id

    def _check_payload(self, task_id: str, payload: dict[str, Any] | None) -> dict[str, Any]:
        payload = dict(payload or {})
        try:
            dumps_json(payload)
        except (TypeError, ValueError) as e:
            self._reporter.report(
                ErrorType.TASK_SCHEDULING,
                f"Payload for task {task_id} is not JSON-serializable",
                error=e,
                task_id=task_id,
            )
            raise TaskSchedulingError(str(e)) from e
        return payload

    def _schedule_rule(
        self,
        task_id: str,
        rule: Recurrence,
        payload: dict[str, Any] | None,
    ) -> ScheduledTask:
        task_id = self._check_id(task_id)
        payload = self._check_payload(task_id, payload)

        # Same rule already held (e.g. loaded at boot): keep its pending
        # occurrence, which may be overdue and must still fire.
        existing = self._tasks.get(task_id)
        if existing is not None and existing.recurrence == rule and existing.payload == payload:
            logger.debug("Task %s unchanged; keeping execute_at=%s", task_id, existing.execute_at)
            return existing

        first = next_fire(rule, self._clock.now())
        task = ScheduledTask(
            id=task_id,
            kind=TaskKind.RECURRING,
            execute_at=to_ms(first),
            payload=payload,
            recurrence=rule,
        )
        return self._schedule(task)

    def _schedule(self, task: ScheduledTask) -> ScheduledTask:
        self._forget(task.id)
        self._tasks[task.id] = task
        self._states[task.id] = TaskState.PENDING

        try:
            self._store.put(task)
        except PersistenceError as e:
            self._reporter.report(
                ErrorType.PERSISTENCE,
                f"Task {task.id} scheduled in memory only; it will not survive a restart",
                error=e,
                task=task,
            )

        self._arm(task)
        logger.info(
            "Task scheduled id=%s kind=%s at=%s",
            task.id,
            task.kind.value,
            self._clock.format_ms(task.execute_at),
        )
        return task

    def _arm(self, task: ScheduledTask) -> None:
        if not self._running:
            return
        self._disarm(task.id)

        loop = asyncio.get_running_loop()
        delay = max(0.0, (task.execute_at - self._clock.now_ms()) / 1000.0)
        handle = loop.call_later(delay, functools.partial(self._on_timer, task))
        self._timers[task.id] = _Timer(task=task, handle=handle)
        self._states[task.id] = TaskState.ARMED
        logger.debug("Task armed id=%s delay=%.3fs", task.id, delay)

    def _disarm(self, task_id: str) -> None:
        timer = self._timers.pop(task_id, None)
        if timer is not None:
            timer.handle.cancel()

    def _forget(self, task_id: str) -> None:
        self._disarm(task_id)
        self._tasks.pop(task_id, None)
        self._states.pop(task_id, None)

    def _on_timer(self, task: ScheduledTask) -> None:
        timer = self._timers.get(task.id)
        if timer is not None and timer.task is task:
            del self._timers[task.id]
        if self._tasks.get(task.id) is not task:
            return
        self._spawn(task)

    def _spawn(self, task: ScheduledTask) -> asyncio.Task[None]:
        previous = self._inflight.get(task.id)
        self._states[task.id] = TaskState.FIRED
        runner = asyncio.get_running_loop().create_task(
            self._execute(task, previous), name=f"rollcall-task-{task.id}"
        )
        self._inflight[task.id] = runner
        runner.add_done_callback(functools.partial(self._clear_inflight, task.id))
        return runner

    def _clear_inflight(self, task_id: str, runner: asyncio.Task[None]) -> None:
        if self._inflight.get(task_id) is runner:
            del self._inflight[task_id]

    async def _execute(self, task: ScheduledTask, previous: asyncio.Task[None] | None) -> None:
        # One execution per id at a time: a re-fire waits for the previous run.
        if previous is not None and not previous.done():
            await asyncio.wait({previous})

        logger.info("Task fired id=%s type=%s", task.id, task.payload_type or "-")
        for handler in list(self._handlers):
            try:
                await handler(task)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._reporter.report(
                    ErrorType.TASK_EXECUTION,
                    f"Subscriber failed while executing task {task.id}",
                    error=e,
                    task=task,
                )

        self._after_fire(task)

    def _after_fire(self, task: ScheduledTask) -> None:
        if self._tasks.get(task.id) is not task:
            logger.debug("Task %s was replaced or cancelled during execution", task.id)
            return

        if task.is_recurring and task.recurrence is not None:
            base = max(self._clock.now(), self._clock.from_ms(task.execute_at) + timedelta(seconds=1))
            nxt = replace(task, execute_at=to_ms(next_fire(task.recurrence, base)))
            self._schedule(nxt)
            return

        self._forget(task.id)
        try:
            self._store.delete(task.id)
        except PersistenceError as e:
            self._reporter.report(
                ErrorType.PERSISTENCE,
                f"Failed to delete fired task {task.id}; it may fire again after a restart",
                error=e,
                task=task,
            )
