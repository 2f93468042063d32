from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from taskforge import events as ev
from taskforge.analytics import AnalyticsTracker
from taskforge.errors import (
    HandlerError,
    TaskExecutionError,
    TaskTimeoutError,
    UnknownTaskTypeError,
)
from taskforge.events import EventHub
from taskforge.models import Task, TaskStatus, TaskType, utcnow_iso
from taskforge.store import TaskStore

logger = logging.getLogger(__name__)

TaskHandler = Callable[[Task], Awaitable[Any]]


@dataclass(slots=True)
class HandlerOutcome:
    """Explicit handler verdict. Returning ``success=False`` fails the attempt."""

    success: bool
    result: Any = None
    error: str | None = None


@dataclass(slots=True)
class Attempt:
    task_id: str
    number: int
    started: float
    runner: asyncio.Task[None] | None = None
    timer: asyncio.TimerHandle | None = None

    def discard_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class TaskExecutor:
    """Dispatches tasks to handlers by type and owns their state transitions.

    All outcomes are applied on the event loop thread, so the store and the
    lock map need no extra synchronization.
    """

    def __init__(
        self,
        store: TaskStore,
        handlers: dict[TaskType, TaskHandler] | None = None,
        *,
        analytics: AnalyticsTracker | None = None,
        events: EventHub | None = None,
        auto_retry: bool = True,
        retry_backoff_seconds: float = 2.0,
        exclusive_types: Iterable[TaskType | str] = (),
    ) -> None:
        self.store = store
        self.handlers: dict[TaskType, TaskHandler] = dict(handlers or {})
        self.analytics = analytics
        self.events = events or EventHub()
        self.auto_retry = auto_retry
        self.retry_backoff_seconds = max(0.0, float(retry_backoff_seconds))
        self.exclusive_types = {
            item.value if isinstance(item, TaskType) else str(item) for item in exclusive_types
        }
        self._attempts: dict[str, Attempt] = {}
        self._backoff: dict[str, asyncio.TimerHandle] = {}
        self._attempt_counter = 0

    def register(self, task_type: TaskType, handler: TaskHandler) -> None:
        self.handlers[task_type] = handler

    def resource_for(self, task: Task) -> str | None:
        if task.type.value in self.exclusive_types:
            return task.type.value
        return None

    @property
    def in_flight(self) -> int:
        return len(self._attempts)

    @property
    def waiting_retries(self) -> int:
        return len(self._backoff)

    def execute(self, task: Task) -> asyncio.Task[None] | None:
        """Activate ``task`` and start its handler without waiting for it.

        Returns the running handler task, or ``None`` when the task failed
        immediately because no handler is registered for its type.
        """

        handler = self.handlers.get(task.type)
        if handler is None:
            error = UnknownTaskTypeError(
                f"No handler registered for task type '{task.type.value}'",
                task_id=task.id,
                task_type=task.type.value,
            )
            self._finish_failed(task, error, terminal=True)
            return None

        loop = asyncio.get_running_loop()
        resource = self.resource_for(task)
        if resource is not None and not self.store.acquire_lock(resource, task.id):
            # Callers check locks before admission; keep the task pending if they did not.
            self.store.move(task, TaskStatus.PENDING)
            return None

        self._attempt_counter += 1
        attempt = Attempt(task_id=task.id, number=self._attempt_counter, started=time.monotonic())
        task.started_at = utcnow_iso()
        task.completed_at = None
        self.store.move(task, TaskStatus.ACTIVE)
        self._attempts[task.id] = attempt
        attempt.timer = loop.call_later(task.timeout_seconds, self._on_timer, task.id, attempt)
        attempt.runner = loop.create_task(self._run(task, handler, attempt))
        self.events.emit(
            ev.TASK_STARTED,
            task_id=task.id,
            type=task.type.value,
            priority=task.priority,
            retry_count=task.retry_count,
        )
        logger.debug("Started task %s (%s)", task.id, task.type.value)
        return attempt.runner

    async def _run(self, task: Task, handler: TaskHandler, attempt: Attempt) -> None:
        try:
            result = await handler(task)
        except asyncio.CancelledError:
            raise
        except TaskExecutionError as exc:
            self._on_failure(task, attempt, exc)
            return
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            self._on_failure(
                task,
                attempt,
                HandlerError(message, task_id=task.id, task_type=task.type.value),
            )
            return

        if isinstance(result, HandlerOutcome):
            if not result.success:
                self._on_failure(
                    task,
                    attempt,
                    HandlerError(
                        result.error or "Handler reported failure",
                        task_id=task.id,
                        task_type=task.type.value,
                    ),
                )
                return
            result = result.result
        self._on_success(task, attempt, result)

    def _is_current(self, task: Task, attempt: Attempt) -> bool:
        return self._attempts.get(task.id) is attempt and task.status == TaskStatus.ACTIVE

    def _close_attempt(self, task: Task, attempt: Attempt) -> float:
        self._attempts.pop(task.id, None)
        attempt.discard_timer()
        resource = self.resource_for(task)
        if resource is not None:
            self.store.release_lock(resource, task.id)
        return time.monotonic() - attempt.started

    def _on_success(self, task: Task, attempt: Attempt, result: Any) -> None:
        if not self._is_current(task, attempt):
            logger.debug("Ignoring stale result for task %s", task.id)
            return
        elapsed = self._close_attempt(task, attempt)
        task.result = result
        task.error = None
        task.completed_at = utcnow_iso()
        self.store.move(task, TaskStatus.COMPLETED)
        if self.analytics is not None:
            self.analytics.record(task.type, elapsed, True)
        logger.info("Task %s (%s) completed in %.2fs", task.id, task.type.value, elapsed)
        self.events.emit(
            ev.TASK_COMPLETED,
            task_id=task.id,
            type=task.type.value,
            goal_id=task.goal_id,
            duration_seconds=round(elapsed, 4),
        )

    def _on_failure(self, task: Task, attempt: Attempt, error: TaskExecutionError) -> None:
        if not self._is_current(task, attempt):
            logger.debug("Ignoring stale failure for task %s: %s", task.id, error)
            return
        elapsed = self._close_attempt(task, attempt)
        if self.analytics is not None:
            self.analytics.record(task.type, elapsed, False)
        retry = error.retriable and self.auto_retry and task.retry_count < task.max_retries
        if attempt.runner is not None and attempt.runner is not asyncio.current_task():
            attempt.runner.cancel()
        self._finish_failed(task, error, terminal=not retry)

    def _finish_failed(self, task: Task, error: TaskExecutionError, *, terminal: bool) -> None:
        task.error = str(error)
        self.store.move(task, TaskStatus.FAILED)
        if terminal:
            logger.error(
                "Task %s (%s) failed after %d retries: %s",
                task.id,
                task.type.value,
                task.retry_count,
                error,
            )
            self.events.emit(
                ev.TASK_FAILED,
                task_id=task.id,
                type=task.type.value,
                goal_id=task.goal_id,
                error=str(error),
                error_type=type(error).__name__,
                retry_count=task.retry_count,
                terminal=True,
            )
            return

        self.store.mark_retrying(task.id)
        task.retry_count += 1
        logger.warning(
            "Task %s (%s) failed, retry %d/%d in %.1fs: %s",
            task.id,
            task.type.value,
            task.retry_count,
            task.max_retries,
            self.retry_backoff_seconds,
            error,
        )
        self.events.emit(
            ev.TASK_RETRY,
            task_id=task.id,
            type=task.type.value,
            goal_id=task.goal_id,
            error=str(error),
            error_type=type(error).__name__,
            retry_count=task.retry_count,
            max_retries=task.max_retries,
            delay_seconds=self.retry_backoff_seconds,
        )
        loop = asyncio.get_running_loop()
        self._backoff[task.id] = loop.call_later(
            self.retry_backoff_seconds, self._requeue, task.id
        )

    def _requeue(self, task_id: str) -> None:
        self._backoff.pop(task_id, None)
        task = self.store.get_task(task_id)
        if task is None or task.status != TaskStatus.FAILED:
            return
        self.store.move(task, TaskStatus.PENDING)
        self.events.emit(
            ev.TASK_REQUEUED,
            task_id=task.id,
            type=task.type.value,
            retry_count=task.retry_count,
        )

    def _on_timer(self, task_id: str, attempt: Attempt) -> None:
        attempt.timer = None
        task = self.store.get_task(task_id)
        if task is not None:
            self._timeout(task, attempt)

    def _timeout(self, task: Task, attempt: Attempt) -> None:
        error = TaskTimeoutError(
            f"Task exceeded timeout of {task.timeout_seconds:.1f}s",
            task_id=task.id,
            task_type=task.type.value,
        )
        self._on_failure(task, attempt, error)

    def check_timeouts(self, now: float | None = None) -> list[str]:
        """Fail every active attempt that ran past its timeout. Returns the task ids."""

        current = time.monotonic() if now is None else now
        expired: list[str] = []
        for task_id, attempt in list(self._attempts.items()):
            task = self.store.get_task(task_id)
            if task is None:
                continue
            if current - attempt.started > task.timeout_seconds:
                expired.append(task_id)
                self._timeout(task, attempt)
        return expired

    def abort(self, task: Task, error: Exception) -> None:
        """Terminally fail a task whose dispatch raised unexpectedly."""

        attempt = self._attempts.get(task.id)
        if attempt is not None:
            self._close_attempt(task, attempt)
            if attempt.runner is not None:
                attempt.runner.cancel()
        wrapped = (
            error
            if isinstance(error, TaskExecutionError)
            else HandlerError(str(error), task_id=task.id, task_type=task.type.value)
        )
        self._finish_failed(task, wrapped, terminal=True)

    def cancel(self, task_id: str) -> bool:
        """Cancel a pending, active or retry-waiting task.

        The handler of an active task receives ``asyncio.CancelledError`` at
        its next suspension point; a handler that ignores it keeps running
        but its outcome is discarded.
        """

        task = self.store.get_task(task_id)
        if task is None:
            return False
        backoff = self._backoff.pop(task_id, None)
        if backoff is not None:
            backoff.cancel()
        elif task.status == TaskStatus.ACTIVE:
            attempt = self._attempts.get(task_id)
            if attempt is not None:
                self._close_attempt(task, attempt)
                if attempt.runner is not None:
                    attempt.runner.cancel()
        elif task.status != TaskStatus.PENDING:
            return False
        self.store.move(task, TaskStatus.CANCELLED)
        logger.info("Task %s (%s) cancelled", task.id, task.type.value)
        self.events.emit(
            ev.TASK_CANCELLED,
            task_id=task.id,
            type=task.type.value,
            goal_id=task.goal_id,
        )
        return True

    async def shutdown(self) -> None:
        """Cancel everything in flight or waiting for a retry, then wait for handlers."""

        runners = [
            attempt.runner for attempt in self._attempts.values() if attempt.runner is not None
        ]
        for task_id in [*self._attempts, *self._backoff]:
            self.cancel(task_id)
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)
