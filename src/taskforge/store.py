from __future__ import annotations

from typing import Any

from taskforge.errors import TaskforgeError
from taskforge.models import DecisionRecord, Goal, Task, TaskStatus


class TaskStore:
    """Holds tasks, goals, their queues, resource locks and decision history.

    A task lives in exactly one queue. ``pending`` keeps arrival order; the
    other queues are keyed by task id. Tasks of a goal awaiting approval wait
    in ``held`` with status pending until the goal starts.
    """

    def __init__(self) -> None:
        self.tasks: dict[str, Task] = {}
        self.goals: dict[str, Goal] = {}
        self.pending: list[Task] = []
        self.held: dict[str, Task] = {}
        self.active: dict[str, Task] = {}
        self.completed: dict[str, Task] = {}
        self.failed: dict[str, Task] = {}
        self.cancelled: dict[str, Task] = {}
        self.locks: dict[str, str] = {}
        self.decisions: list[DecisionRecord] = []
        self.retrying: set[str] = set()
        self.retired_completed: set[str] = set()

    def add_task(self, task: Task, *, enqueue: bool = True) -> Task:
        if task.id in self.tasks:
            raise TaskforgeError(f"Duplicate task id: {task.id}")
        self.tasks[task.id] = task
        task.status = TaskStatus.PENDING
        if enqueue:
            self.pending.append(task)
        else:
            self.held[task.id] = task
        return task

    def enqueue(self, task_id: str) -> Task:
        task = self.require_task(task_id)
        if any(item.id == task_id for item in self.pending):
            return task
        return self.move(task, TaskStatus.PENDING)

    def add_goal(self, goal: Goal) -> Goal:
        if goal.id in self.goals:
            raise TaskforgeError(f"Duplicate goal id: {goal.id}")
        self.goals[goal.id] = goal
        return goal

    def get_task(self, task_id: str) -> Task | None:
        return self.tasks.get(task_id)

    def require_task(self, task_id: str) -> Task:
        task = self.tasks.get(task_id)
        if task is None:
            raise TaskforgeError(f"Unknown task id: {task_id}")
        return task

    def get_goal(self, goal_id: str) -> Goal | None:
        return self.goals.get(goal_id)

    def _detach(self, task: Task) -> None:
        self.pending = [item for item in self.pending if item.id != task.id]
        for queue in (self.held, self.active, self.completed, self.failed, self.cancelled):
            queue.pop(task.id, None)
        self.retrying.discard(task.id)

    def move(self, task: Task, status: TaskStatus) -> Task:
        self._detach(task)
        task.status = status
        if status == TaskStatus.PENDING:
            self.pending.append(task)
        elif status == TaskStatus.ACTIVE:
            self.active[task.id] = task
        elif status == TaskStatus.COMPLETED:
            self.completed[task.id] = task
        elif status == TaskStatus.FAILED:
            self.failed[task.id] = task
        elif status == TaskStatus.CANCELLED:
            self.cancelled[task.id] = task
        return task

    def queue_of(self, task_id: str) -> str | None:
        if any(item.id == task_id for item in self.pending):
            return TaskStatus.PENDING.value
        for name, queue in (
            ("held", self.held),
            (TaskStatus.ACTIVE.value, self.active),
            (TaskStatus.COMPLETED.value, self.completed),
            (TaskStatus.FAILED.value, self.failed),
            (TaskStatus.CANCELLED.value, self.cancelled),
        ):
            if task_id in queue:
                return name
        return None

    def pending_tasks(self) -> list[Task]:
        return list(self.pending)

    def completed_ids(self) -> set[str]:
        return self.retired_completed | set(self.completed)

    def mark_retrying(self, task_id: str) -> None:
        if task_id in self.failed:
            self.retrying.add(task_id)

    def acquire_lock(self, resource: str, task_id: str) -> bool:
        holder = self.locks.get(resource)
        if holder is not None and holder != task_id:
            return False
        self.locks[resource] = task_id
        return True

    def release_lock(self, resource: str, task_id: str) -> None:
        if self.locks.get(resource) == task_id:
            del self.locks[resource]

    def lock_holder(self, resource: str) -> str | None:
        return self.locks.get(resource)

    def queue_status(self) -> dict[str, int]:
        return {
            "pending": len(self.pending),
            "held": len(self.held),
            "active": len(self.active),
            "completed": len(self.completed),
            "failed": len(self.failed),
            "cancelled": len(self.cancelled),
        }

    def record_decision(self, record: DecisionRecord) -> None:
        self.decisions.append(record)

    def goal_tasks(self, goal_id: str) -> list[Task]:
        goal = self.goals.get(goal_id)
        if goal is None:
            return []
        return [self.tasks[task_id] for task_id in goal.subtasks if task_id in self.tasks]

    def clear_history(self) -> int:
        """Drop finished tasks and the decision history. Returns the number of tasks removed.

        Failed tasks still waiting out a retry backoff are kept. Ids of dropped
        completed tasks stay known so their dependents can still be admitted.
        """

        self.retired_completed.update(self.completed)
        failed = [task_id for task_id in self.failed if task_id not in self.retrying]
        finished = [*self.completed, *failed, *self.cancelled]
        for task_id in finished:
            self.tasks.pop(task_id, None)
        self.completed.clear()
        self.failed = {
            task_id: task for task_id, task in self.failed.items() if task_id in self.retrying
        }
        self.cancelled.clear()
        self.decisions.clear()
        return len(finished)

    def snapshot(self) -> dict[str, Any]:
        return {
            "queues": self.queue_status(),
            "tasks": [task.to_dict() for task in self.tasks.values()],
            "goals": [goal.to_dict() for goal in self.goals.values()],
            "locks": dict(self.locks),
            "decisions": [record.to_dict() for record in self.decisions],
        }
