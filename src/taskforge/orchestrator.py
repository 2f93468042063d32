from __future__ import annotations

import logging
from typing import Any

from taskforge import events as ev
from taskforge.analytics import AnalyticsTracker
from taskforge.collaborators import EditorOperations, MemoryStore
from taskforge.config import TaskforgeConfig
from taskforge.decision import DecisionEngine, DecisionResult
from taskforge.errors import TaskforgeError
from taskforge.events import EventHub
from taskforge.executor import TaskExecutor, TaskHandler
from taskforge.handlers import HandlerContext, build_default_handlers
from taskforge.models import (
    DecisionRecord,
    ErrorInfo,
    Goal,
    GoalStatus,
    Task,
    TaskStatus,
    TaskType,
    new_id,
    utcnow_iso,
)
from taskforge.planner import GoalPlanner
from taskforge.providers.base import ProviderBridge
from taskforge.scheduler import Scheduler
from taskforge.state import JsonStateStore
from taskforge.store import TaskStore

logger = logging.getLogger(__name__)

ERROR_FIX_PRIORITY = 9
WARNING_FIX_PRIORITY = 6
TERMINAL_GOAL_STATUSES = {GoalStatus.COMPLETED, GoalStatus.FAILED, GoalStatus.CANCELLED}


class Orchestrator:
    """Goal-level entry point wiring the planner, scheduler and executor together."""

    def __init__(
        self,
        config: TaskforgeConfig | None = None,
        *,
        store: TaskStore | None = None,
        analytics: AnalyticsTracker | None = None,
        events: EventHub | None = None,
        handlers: dict[TaskType, TaskHandler] | None = None,
        bridge: ProviderBridge | None = None,
        editor: EditorOperations | None = None,
        memory: MemoryStore | None = None,
        state_store: JsonStateStore | None = None,
    ) -> None:
        self.config = config or TaskforgeConfig.default()
        self.store = store or TaskStore()
        self.events = events or EventHub()
        self.analytics = analytics or AnalyticsTracker(
            seed_success_rate=self.config.analytics.seed_success_rate,
            decay=self.config.analytics.decay,
            history_size=self.config.analytics.history_size,
        )
        self.memory = memory
        self.state_store = state_store
        self.planner = GoalPlanner(
            self.analytics,
            base_timeout_seconds=self.config.planner.base_timeout_seconds,
            default_max_retries=self.config.planner.default_max_retries,
        )
        self.decisions = DecisionEngine(sink=self._record_decision)
        if handlers is None:
            handlers = build_default_handlers(
                HandlerContext(
                    bridge=bridge,
                    editor=editor,
                    memory=memory,
                    goal_lookup=self.store.get_goal,
                )
            )
        scheduler_config = self.config.scheduler
        self.executor = TaskExecutor(
            self.store,
            handlers,
            analytics=self.analytics,
            events=self.events,
            auto_retry=scheduler_config.auto_retry,
            retry_backoff_seconds=scheduler_config.retry_backoff_seconds,
            exclusive_types=scheduler_config.exclusive_types,
        )
        self.scheduler = Scheduler(
            self.store,
            self.executor,
            max_concurrent_tasks=scheduler_config.max_concurrent_tasks,
            tick_interval_seconds=scheduler_config.tick_interval_seconds,
        )
        self._unsubscribe = self.events.subscribe(self._on_event)

    def _record_decision(self, record: DecisionRecord) -> None:
        self.store.record_decision(record)
        self.events.emit(
            ev.DECISION_MADE,
            decision_id=record.id,
            confidence=record.confidence,
            chosen=record.chosen_option,
        )

    def _build_goal(
        self,
        description: str,
        priority: int,
        deadline: str | None,
        context: dict[str, Any],
    ) -> tuple[Goal, list[Task]]:
        goal_id = new_id("goal")
        assessment = self.planner.assess(description, context)
        tasks = self.planner.decompose(description, context, goal_id=goal_id)
        goal = Goal(
            id=goal_id,
            description=description,
            priority=priority,
            deadline=deadline,
            subtasks=[task.id for task in tasks],
            complexity=assessment.complexity,
            success_probability=assessment.success_probability,
            learning_value=assessment.learning_value,
            context=context,
            metadata={"family": assessment.family},
        )
        return goal, tasks

    def plan(
        self, description: str, context: dict[str, Any] | None = None
    ) -> tuple[Goal, list[Task]]:
        """Decompose ``description`` without storing or scheduling anything."""

        return self._build_goal(description, 5, None, dict(context or {}))

    def set_goal(
        self,
        description: str,
        priority: int = 5,
        deadline: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> Goal:
        context = dict(context or {})
        if self.memory is not None:
            similar = self.memory.get_similar(description)
            if similar:
                context.setdefault("similar_solutions", similar[:3])
        goal, tasks = self._build_goal(description, priority, deadline, context)

        autonomy = self.config.autonomy
        auto_start = (
            autonomy.auto_execute
            and goal.success_probability >= autonomy.confidence_threshold
        )
        goal.status = GoalStatus.ACTIVE if auto_start else GoalStatus.AWAITING_APPROVAL
        self.store.add_goal(goal)
        for task in tasks:
            self.store.add_task(task, enqueue=auto_start)

        if auto_start:
            logger.info("Goal %s started with %d task(s)", goal.id, len(tasks))
        else:
            logger.info(
                "Goal %s awaiting approval (success probability %.2f)",
                goal.id,
                goal.success_probability,
            )
        self.events.emit(
            ev.GOAL_CREATED,
            goal_id=goal.id,
            description=description,
            status=goal.status.value,
            family=goal.metadata["family"],
            tasks=[task.id for task in tasks],
            success_probability=goal.success_probability,
        )
        return goal

    def start_goal(self, goal_id: str) -> Goal:
        goal = self.store.get_goal(goal_id)
        if goal is None:
            raise TaskforgeError(f"Unknown goal id: {goal_id}")
        if goal.status != GoalStatus.AWAITING_APPROVAL:
            return goal
        goal.status = GoalStatus.ACTIVE
        for task in self.store.goal_tasks(goal_id):
            if self.store.queue_of(task.id) == "held":
                self.store.enqueue(task.id)
        logger.info("Goal %s approved and started", goal_id)
        return goal

    def _detected_task(self, info: ErrorInfo, task_type: TaskType, priority: int) -> Task:
        location = info.file_path or "unknown location"
        if info.file_path and info.line_number is not None:
            location = f"{info.file_path}:{info.line_number}"
        label = "error" if task_type == TaskType.FIX_ERROR else "warning"
        task = Task(
            id=new_id(f"task-{task_type.value.replace('_', '-')}"),
            type=task_type,
            description=f"Fix {label} at {location}: {info.message}",
            priority=priority,
            max_retries=self.config.planner.default_max_retries,
            timeout_seconds=self.config.planner.base_timeout_seconds,
            metadata={
                "error_info": {
                    "message": info.message,
                    "line_number": info.line_number,
                    "file_path": info.file_path,
                    "severity": info.severity,
                    "timestamp": info.timestamp,
                }
            },
        )
        self.store.add_task(task)
        logger.info("Queued %s task %s for %s", task_type.value, task.id, location)
        return task

    def on_error_detected(self, info: ErrorInfo | dict[str, Any]) -> Task:
        if isinstance(info, dict):
            info = ErrorInfo.from_dict(info)
        return self._detected_task(info, TaskType.FIX_ERROR, ERROR_FIX_PRIORITY)

    def on_warning_detected(self, info: ErrorInfo | dict[str, Any]) -> Task:
        if isinstance(info, dict):
            info = ErrorInfo.from_dict({"severity": "warning", **info})
        return self._detected_task(info, TaskType.FIX_WARNING, WARNING_FIX_PRIORITY)

    def get_queue_status(self) -> dict[str, int]:
        return self.store.queue_status()

    def cancel_task(self, task_id: str) -> bool:
        return self.executor.cancel(task_id)

    def get_analytics(self) -> dict[str, Any]:
        return self.analytics.snapshot()

    def choose(self, context: dict[str, Any], options: list[dict[str, Any]]) -> DecisionResult:
        return self.decisions.choose(context, options)

    def _on_event(self, record: dict[str, Any]) -> None:
        event = record["event"]
        if event not in {ev.TASK_COMPLETED, ev.TASK_FAILED, ev.TASK_CANCELLED}:
            return
        goal_id = record.get("goal_id")
        if not goal_id:
            return
        goal = self.store.get_goal(goal_id)
        if goal is None:
            return

        goal.update_progress(self.store.tasks)
        self.events.emit(ev.GOAL_PROGRESS, goal_id=goal.id, progress=round(goal.progress, 4))
        if goal.status in TERMINAL_GOAL_STATUSES:
            return

        if event == ev.TASK_FAILED and record.get("terminal"):
            self._finish_goal(goal, success=False, error=record.get("error"))
        elif goal.subtasks and goal.progress >= 1.0:
            self._finish_goal(goal, success=True)
        elif event == ev.TASK_CANCELLED and all(
            task.status in {TaskStatus.CANCELLED, TaskStatus.COMPLETED}
            for task in self.store.goal_tasks(goal.id)
        ):
            goal.status = GoalStatus.CANCELLED
            goal.completed_at = utcnow_iso()
            logger.info("Goal %s cancelled", goal.id)

    def _finish_goal(self, goal: Goal, *, success: bool, error: str | None = None) -> None:
        goal.completed_at = utcnow_iso()
        self.planner.record_outcome(goal.description, success)
        if success:
            goal.status = GoalStatus.COMPLETED
            logger.info("Goal %s completed", goal.id)
            if self.memory is not None:
                self.memory.store_solution(
                    goal.description,
                    self._solution_summary(goal),
                    goal.success_probability,
                )
            self.events.emit(ev.GOAL_COMPLETED, goal_id=goal.id)
            return
        goal.status = GoalStatus.FAILED
        logger.error("Goal %s failed: %s", goal.id, error)
        self.events.emit(ev.GOAL_FAILED, goal_id=goal.id, error=error)

    def _solution_summary(self, goal: Goal) -> str:
        lines = []
        for task in self.store.goal_tasks(goal.id):
            result = task.result
            if isinstance(result, dict):
                result = result.get("content", result)
            lines.append(f"{task.type.value}: {result}")
        return "\n".join(lines)

    def snapshot(self) -> dict[str, Any]:
        payload = self.store.snapshot()
        payload["analytics"] = self.analytics.snapshot()
        payload["deferred"] = {
            task_id: reason.value for task_id, reason in self.scheduler.deferred().items()
        }
        return payload

    def persist(self) -> int | None:
        """Write the snapshot, analytics and decisions to the state store, if any."""

        if self.state_store is None:
            return None
        snapshot = self.snapshot()
        self.state_store.save_analytics(snapshot["analytics"])
        self.state_store.append_decisions(snapshot["decisions"])
        return self.state_store.save_snapshot(snapshot)

    def restore_analytics(self) -> None:
        if self.state_store is not None:
            self.analytics.restore(self.state_store.load_analytics())

    async def run_until_idle(self) -> dict[str, int]:
        await self.scheduler.run_until_idle()
        return self.get_queue_status()

    async def shutdown(self) -> None:
        self.scheduler.stop()
        await self.executor.shutdown()
        self._unsubscribe()
