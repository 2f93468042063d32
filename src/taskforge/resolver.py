from __future__ import annotations

from collections.abc import Callable, Iterable

from taskforge.models import Task

BlockedPredicate = Callable[[Task], bool]


def by_priority(pending: Iterable[Task]) -> list[Task]:
    # sorted() is stable, so equal priorities keep arrival order.
    return sorted(pending, key=lambda task: task.priority, reverse=True)


def dependencies_met(task: Task, completed: set[str]) -> bool:
    return task.dependencies <= completed


def ready_tasks(pending: Iterable[Task], completed: set[str]) -> list[Task]:
    return [task for task in by_priority(pending) if dependencies_met(task, completed)]


def next_task(
    pending: list[Task],
    completed: set[str],
    *,
    blocked: BlockedPredicate | None = None,
) -> Task | None:
    """Pop the highest-priority task whose dependencies are all completed.

    Tasks with unmet dependencies, or rejected by ``blocked``, stay where they
    are. Only the returned task is removed from ``pending``.
    """

    for task in by_priority(pending):
        if not dependencies_met(task, completed):
            continue
        if blocked is not None and blocked(task):
            continue
        pending[:] = [item for item in pending if item is not task]
        return task
    return None
