from taskforge.models import Task, TaskType
from taskforge.resolver import by_priority, next_task, ready_tasks


def _task(task_id: str, priority: int, dependencies: set[str] | None = None) -> Task:
    return Task(
        id=task_id,
        type=TaskType.EXECUTE_GOAL,
        description=task_id,
        priority=priority,
        dependencies=dependencies or set(),
    )


def test_equal_priorities_keep_arrival_order() -> None:
    pending = [_task("first", 5), _task("high", 9), _task("second", 5)]

    assert [task.id for task in by_priority(pending)] == ["high", "first", "second"]


def test_next_task_skips_unmet_dependencies_and_removes_only_result() -> None:
    pending = [_task("child", 9, {"parent"}), _task("parent", 4), _task("other", 2)]

    chosen = next_task(pending, set())

    assert chosen is not None and chosen.id == "parent"
    assert [task.id for task in pending] == ["child", "other"]

    chosen = next_task(pending, {"parent"})
    assert chosen is not None and chosen.id == "child"
    assert [task.id for task in pending] == ["other"]


def test_next_task_honors_blocked_predicate() -> None:
    pending = [_task("locked", 9), _task("free", 3)]

    chosen = next_task(pending, set(), blocked=lambda task: task.id == "locked")

    assert chosen is not None and chosen.id == "free"
    assert [task.id for task in pending] == ["locked"]


def test_next_task_returns_none_when_nothing_is_ready() -> None:
    pending = [_task("a", 5, {"missing"})]

    assert next_task(pending, set()) is None
    assert len(pending) == 1


def test_ready_tasks_does_not_mutate_pending() -> None:
    pending = [_task("a", 1), _task("b", 7, {"a"}), _task("c", 7)]

    assert [task.id for task in ready_tasks(pending, set())] == ["c", "a"]
    assert [task.id for task in ready_tasks(pending, {"a"})] == ["b", "c", "a"]
    assert len(pending) == 3
