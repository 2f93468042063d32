import asyncio
from pathlib import Path
from typing import Any

from taskforge import events as ev
from taskforge.collaborators import FileEditor, InMemorySolutionStore
from taskforge.config import TaskforgeConfig
from taskforge.models import GoalStatus, Task, TaskStatus, TaskType
from taskforge.orchestrator import Orchestrator
from taskforge.providers import EchoProvider, ProviderBridge
from taskforge.state import JsonStateStore


def _config(**autonomy: Any) -> TaskforgeConfig:
    config = TaskforgeConfig.default()
    config.scheduler.tick_interval_seconds = 0.005
    config.scheduler.retry_backoff_seconds = 0.01
    for key, value in autonomy.items():
        setattr(config.autonomy, key, value)
    return config


def _orchestrator(config: TaskforgeConfig | None = None, **kwargs: Any) -> Orchestrator:
    kwargs.setdefault("bridge", ProviderBridge(EchoProvider()))
    return Orchestrator(config or _config(), **kwargs)


def test_goal_runs_to_completion_and_is_remembered() -> None:
    async def _scenario() -> None:
        memory = InMemorySolutionStore()
        orchestrator = _orchestrator(memory=memory)

        goal = orchestrator.set_goal("Fix all compilation errors", priority=8)
        assert goal.status == GoalStatus.ACTIVE
        assert orchestrator.get_queue_status()["pending"] == 3

        await orchestrator.run_until_idle()

        assert goal.status == GoalStatus.COMPLETED
        assert goal.progress == 1.0
        assert goal.completed_at is not None
        assert orchestrator.get_queue_status()["completed"] == 3
        assert orchestrator.get_analytics()["total_executions"] == 3
        assert orchestrator.events.history(ev.GOAL_COMPLETED)[0]["goal_id"] == goal.id
        assert memory.solutions[0].problem == "Fix all compilation errors"
        assert "compilation" in orchestrator.planner.success_patterns

        second = orchestrator.set_goal("Fix all compilation errors")
        assert second.context["similar_solutions"][0]["problem"] == "Fix all compilation errors"
        await orchestrator.shutdown()

    asyncio.run(_scenario())


def test_low_confidence_goal_waits_for_approval() -> None:
    async def _scenario() -> None:
        orchestrator = _orchestrator(_config(confidence_threshold=0.7))

        goal = orchestrator.set_goal("Rewrite the entire architecture")

        assert goal.success_probability < 0.7
        assert goal.status == GoalStatus.AWAITING_APPROVAL
        assert orchestrator.get_queue_status()["pending"] == 0
        assert orchestrator.get_queue_status()["held"] == 3
        assert all(orchestrator.store.queue_of(task_id) == "held" for task_id in goal.subtasks)

        orchestrator.start_goal(goal.id)
        assert goal.status == GoalStatus.ACTIVE
        assert orchestrator.get_queue_status()["pending"] == 3
        assert orchestrator.get_queue_status()["held"] == 0

        await orchestrator.run_until_idle()
        assert goal.status == GoalStatus.COMPLETED
        await orchestrator.shutdown()

    asyncio.run(_scenario())


def test_auto_execute_off_holds_every_goal() -> None:
    orchestrator = _orchestrator(_config(auto_execute=False))

    goal = orchestrator.set_goal("Fix all compilation errors")

    assert goal.status == GoalStatus.AWAITING_APPROVAL
    created = orchestrator.events.history(ev.GOAL_CREATED)[0]
    assert created["status"] == "awaiting_approval"
    assert created["family"] == "error_fixing"


def test_terminal_task_failure_fails_goal() -> None:
    async def _broken(task: Task) -> None:
        raise RuntimeError("handler crashed")

    async def _scenario() -> None:
        config = _config()
        config.planner.default_max_retries = 1
        orchestrator = Orchestrator(config, handlers={task_type: _broken for task_type in TaskType})

        goal = orchestrator.set_goal("Fix all compilation errors")
        await orchestrator.run_until_idle()

        first, second, third = (orchestrator.store.get_task(task_id) for task_id in goal.subtasks)
        assert first.status == TaskStatus.FAILED
        assert first.retry_count == 1
        assert second.status == TaskStatus.PENDING
        assert third.status == TaskStatus.PENDING
        assert goal.status == GoalStatus.FAILED
        assert "compilation" in orchestrator.planner.failure_patterns
        failed = orchestrator.events.history(ev.GOAL_FAILED)
        assert failed[0]["error"] == "handler crashed"
        assert orchestrator.snapshot()["deferred"] == {
            second.id: "dependency_unmet",
            third.id: "dependency_unmet",
        }
        await orchestrator.shutdown()

    asyncio.run(_scenario())


def test_detected_error_is_fixed_through_editor(tmp_path: Path) -> None:
    source = tmp_path / "main.py"
    source.write_text("def main():\n    print('hi'\n", encoding="utf-8")

    def _responder(prompt: str, context: dict[str, Any], mode: str) -> str:
        return "    print('hi')"

    async def _scenario() -> None:
        orchestrator = _orchestrator(
            bridge=ProviderBridge(EchoProvider(_responder)),
            editor=FileEditor(tmp_path),
        )
        task = orchestrator.on_error_detected(
            {
                "message": "SyntaxError: '(' was never closed",
                "file_path": "main.py",
                "line_number": 2,
            }
        )
        assert task.type == TaskType.FIX_ERROR
        assert task.priority == 9

        await orchestrator.run_until_idle()

        assert task.status == TaskStatus.COMPLETED
        assert source.read_text(encoding="utf-8") == "def main():\n    print('hi')\n"
        await orchestrator.shutdown()

    asyncio.run(_scenario())


def test_detected_warning_gets_lower_priority() -> None:
    orchestrator = _orchestrator()

    task = orchestrator.on_warning_detected({"message": "unused import", "file_path": "a.py"})

    assert task.type == TaskType.FIX_WARNING
    assert task.priority == 6
    assert task.metadata["error_info"]["severity"] == "warning"
    assert orchestrator.get_queue_status()["pending"] == 1


def test_cancel_task_and_goal() -> None:
    orchestrator = _orchestrator()
    goal = orchestrator.set_goal("Document the public API")

    results = [orchestrator.cancel_task(task_id) for task_id in goal.subtasks]

    assert results == [True, True, True]
    assert goal.status == GoalStatus.CANCELLED
    assert orchestrator.cancel_task(goal.subtasks[0]) is False
    assert orchestrator.get_queue_status()["cancelled"] == 3


def test_choose_records_decision() -> None:
    orchestrator = _orchestrator()

    result = orchestrator.choose({}, [{"name": "a", "priority": 9}])

    assert result.chosen["name"] == "a"
    assert orchestrator.store.decisions[0].id == result.record_id
    assert orchestrator.events.history(ev.DECISION_MADE)[0]["decision_id"] == result.record_id


def test_persist_writes_snapshot_analytics_and_decisions(tmp_path: Path) -> None:
    async def _scenario() -> None:
        state = JsonStateStore(tmp_path / "state")
        orchestrator = _orchestrator(state_store=state)
        goal = orchestrator.set_goal("Document the public API", context={"owner": "docs"})
        orchestrator.choose({}, [{"name": "only"}])
        await orchestrator.run_until_idle()
        await orchestrator.shutdown()

        assert orchestrator.persist() == 1

        snapshot = state.load_snapshot()
        assert snapshot["goals"][0]["id"] == goal.id
        assert snapshot["goals"][0]["status"] == "completed"
        assert snapshot["queues"]["completed"] == 3
        assert state.load_analytics()["total_executions"] == 3
        assert len(state.get_decisions()) == 1

        restored = _orchestrator(state_store=state)
        restored.restore_analytics()
        assert restored.analytics.success_rate(TaskType.ANALYZE_GOAL) > 0.8

    asyncio.run(_scenario())
