import asyncio
from pathlib import Path
from typing import Any

import pytest

from taskforge.collaborators import FileEditor, InMemorySolutionStore
from taskforge.errors import HandlerError
from taskforge.handlers import (
    INSTRUCTIONS,
    EditorFixHandler,
    HandlerContext,
    PromptHandler,
    build_default_handlers,
)
from taskforge.models import Goal, Task, TaskType
from taskforge.providers import EchoProvider, ProviderBridge


class RecordingResponder:
    def __init__(self, answer: str | None = None) -> None:
        self.answer = answer
        self.calls: list[tuple[str, dict[str, Any], str]] = []

    def __call__(self, prompt: str, context: dict[str, Any], mode: str) -> str:
        self.calls.append((prompt, context, mode))
        return self.answer if self.answer is not None else f"{mode}: ok"


def _fix_task(file_path: str, line_number: int) -> Task:
    return Task(
        id="fix-1",
        type=TaskType.FIX_ERROR,
        description="Fix error",
        metadata={
            "error_info": {
                "message": "NameError: name 'retrun' is not defined",
                "file_path": file_path,
                "line_number": line_number,
            }
        },
    )


def test_default_handlers_cover_every_task_type() -> None:
    handlers = build_default_handlers(HandlerContext())

    assert set(handlers) == set(TaskType)
    assert set(INSTRUCTIONS) == set(TaskType)
    assert isinstance(handlers[TaskType.FIX_ERROR], EditorFixHandler)
    assert isinstance(handlers[TaskType.FIX_WARNING], EditorFixHandler)
    assert type(handlers[TaskType.DESIGN_SOLUTION]) is PromptHandler


def test_prompt_handler_sends_goal_and_memory_context() -> None:
    responder = RecordingResponder()
    memory = InMemorySolutionStore()
    memory.store_solution("Analyze goal: ship the parser", "split lexer first", 0.9)
    goal = Goal(id="g1", description="Ship the parser")
    context = HandlerContext(
        bridge=ProviderBridge(EchoProvider(responder)),
        memory=memory,
        goal_lookup={"g1": goal}.get,
    )
    handler = PromptHandler(context, mode="analyze", instruction="Break it down.")
    task = Task(
        id="t1",
        type=TaskType.ANALYZE_GOAL,
        description="Analyze goal: ship the parser",
        goal_id="g1",
        metadata={"context": {"repo": "demo"}},
    )

    result = asyncio.run(handler(task))

    assert result == {"mode": "analyze", "content": "analyze: ok"}
    prompt, sent_context, mode = responder.calls[0]
    assert prompt.startswith("Break it down.")
    assert "Analyze goal: ship the parser" in prompt
    assert mode == "analyze"
    assert sent_context["goal"] == "Ship the parser"
    assert sent_context["repo"] == "demo"
    assert sent_context["attempt"] == 1
    assert sent_context["similar_solutions"][0]["solution"] == "split lexer first"


def test_prompt_handler_without_provider_is_not_retriable() -> None:
    handler = PromptHandler(HandlerContext(), mode="chat", instruction="Go.")
    task = Task(id="t1", type=TaskType.EXECUTE_GOAL, description="x")

    with pytest.raises(HandlerError) as excinfo:
        asyncio.run(handler(task))

    assert excinfo.value.retriable is False
    assert excinfo.value.task_id == "t1"


def test_provider_failure_becomes_handler_error() -> None:
    def _broken(prompt: str, context: dict[str, Any], mode: str) -> str:
        raise RuntimeError("overloaded")

    handler = PromptHandler(
        HandlerContext(bridge=ProviderBridge(EchoProvider(_broken))),
        mode="chat",
        instruction="Go.",
    )
    task = Task(id="t1", type=TaskType.EXECUTE_GOAL, description="x")

    with pytest.raises(HandlerError, match="overloaded") as excinfo:
        asyncio.run(handler(task))

    assert excinfo.value.retriable is True


def test_editor_fix_handler_replaces_reported_line(tmp_path: Path) -> None:
    source = tmp_path / "app.py"
    source.write_text("def main():\n    retrun 1\n", encoding="utf-8")
    responder = RecordingResponder("```python\n    return 1\n```")
    handler = build_default_handlers(
        HandlerContext(
            bridge=ProviderBridge(EchoProvider(responder)),
            editor=FileEditor(tmp_path),
        )
    )[TaskType.FIX_ERROR]

    result = asyncio.run(handler(_fix_task("app.py", 2)))

    assert source.read_text(encoding="utf-8") == "def main():\n    return 1\n"
    assert result["previous"] == "    retrun 1"
    assert result["replacement"] == "    return 1"
    prompt, sent_context, mode = responder.calls[0]
    assert mode == "fix"
    assert "Current line:\n    retrun 1" in prompt
    assert sent_context["function"] == "main"
    assert sent_context["line_number"] == 2


def test_editor_failure_is_handler_failure(tmp_path: Path) -> None:
    (tmp_path / "app.py").write_text("x = 1\n", encoding="utf-8")
    responder = RecordingResponder("y = 2")
    handler = build_default_handlers(
        HandlerContext(
            bridge=ProviderBridge(EchoProvider(responder)),
            editor=FileEditor(tmp_path),
        )
    )[TaskType.FIX_ERROR]

    with pytest.raises(HandlerError, match="out of range"):
        asyncio.run(handler(_fix_task("app.py", 9)))
    with pytest.raises(HandlerError, match="File not found"):
        asyncio.run(handler(_fix_task("missing.py", 1)))
    assert responder.calls == []


def test_empty_fix_answer_fails(tmp_path: Path) -> None:
    (tmp_path / "app.py").write_text("x = 1\n", encoding="utf-8")
    handler = build_default_handlers(
        HandlerContext(
            bridge=ProviderBridge(EchoProvider(RecordingResponder("```\n```"))),
            editor=FileEditor(tmp_path),
        )
    )[TaskType.FIX_ERROR]

    with pytest.raises(HandlerError, match="no replacement"):
        asyncio.run(handler(_fix_task("app.py", 1)))
    assert (tmp_path / "app.py").read_text(encoding="utf-8") == "x = 1\n"


def test_file_editor_insert_and_function_lookup(tmp_path: Path) -> None:
    (tmp_path / "mod.py").write_text("import os\n\ndef run():\n    pass", encoding="utf-8")
    editor = FileEditor(tmp_path)

    editor.insert_line("mod.py", 5, "    return None")
    editor.insert_line("mod.py", 1, "# header")

    assert editor.read_line("mod.py", 1) == "# header"
    assert editor.read_line("mod.py", 6) == "    return None"
    assert editor.function_at("mod.py", 6) == "run"
    assert editor.function_at("mod.py", 2) is None
