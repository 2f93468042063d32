from __future__ import annotations

import asyncio
import logging

from taskforge.errors import DeferReason
from taskforge.executor import TaskExecutor
from taskforge.models import Task, TaskStatus
from taskforge.resolver import by_priority, dependencies_met, next_task, ready_tasks
from taskforge.store import TaskStore

logger = logging.getLogger(__name__)


class Scheduler:
    """Periodic tick that admits pending tasks and enforces timeouts.

    ``tick`` is synchronous: it hands work to the executor and returns
    without waiting for any handler.
    """

    def __init__(
        self,
        store: TaskStore,
        executor: TaskExecutor,
        *,
        max_concurrent_tasks: int = 5,
        tick_interval_seconds: float = 1.0,
    ) -> None:
        self.store = store
        self.executor = executor
        self.max_concurrent_tasks = max(1, int(max_concurrent_tasks))
        self.tick_interval_seconds = max(0.0, float(tick_interval_seconds))
        self.ticks = 0
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def _locked_out(self, task: Task) -> bool:
        resource = self.executor.resource_for(task)
        if resource is None:
            return False
        holder = self.store.lock_holder(resource)
        return holder is not None and holder != task.id

    def tick(self) -> list[Task]:
        """Admit eligible tasks up to the concurrency bound, then check timeouts."""

        self.ticks += 1
        admitted: list[Task] = []
        while len(self.store.active) < self.max_concurrent_tasks:
            task = next_task(
                self.store.pending,
                self.store.completed_ids(),
                blocked=self._locked_out,
            )
            if task is None:
                break
            try:
                self.executor.execute(task)
            except Exception as exc:
                logger.exception("Dispatch of task %s failed", task.id)
                self.executor.abort(task, exc)
                continue
            if task.status == TaskStatus.PENDING:
                break
            if task.status == TaskStatus.ACTIVE:
                admitted.append(task)
        self.executor.check_timeouts()
        return admitted

    def deferred(self) -> dict[str, DeferReason]:
        """Pending tasks that cannot be admitted right now, with the reason."""

        completed = self.store.completed_ids()
        reasons: dict[str, DeferReason] = {}
        for task in by_priority(self.store.pending):
            if not dependencies_met(task, completed):
                reasons[task.id] = DeferReason.DEPENDENCY_UNMET
            elif self._locked_out(task):
                reasons[task.id] = DeferReason.RESOURCE_LOCKED
        return reasons

    def is_idle(self) -> bool:
        if self.store.active or self.executor.waiting_retries:
            return False
        return not ready_tasks(self.store.pending, self.store.completed_ids())

    async def run(self, *, until_idle: bool = False) -> None:
        self._running = True
        try:
            while self._running:
                self.tick()
                if until_idle and self.is_idle():
                    break
                await asyncio.sleep(self.tick_interval_seconds)
        finally:
            self._running = False

    async def run_until_idle(self) -> None:
        await self.run(until_idle=True)
        stalled = self.deferred()
        if stalled:
            logger.warning("Scheduler idle with %d stalled task(s): %s", len(stalled), stalled)

    def stop(self) -> None:
        self._running = False
