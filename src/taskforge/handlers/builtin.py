from __future__ import annotations

from typing import Any

from taskforge.errors import HandlerError, TaskforgeError
from taskforge.executor import TaskHandler
from taskforge.handlers.base import HandlerContext, PromptHandler
from taskforge.models import ErrorInfo, Task, TaskType

INSTRUCTIONS: dict[TaskType, tuple[str, str]] = {
    TaskType.ANALYZE_ERRORS: (
        "analyze",
        "List the distinct errors, their likely root causes and the files involved.",
    ),
    TaskType.FIX_ERRORS: (
        "fix",
        "Propose minimal code changes that resolve the analyzed errors.",
    ),
    TaskType.VERIFY_FIXES: (
        "review",
        "Check that the applied fixes resolve the errors without regressions.",
    ),
    TaskType.FIX_ERROR: (
        "fix",
        "Return only the corrected source line for the reported error.",
    ),
    TaskType.FIX_WARNING: (
        "fix",
        "Return only the corrected source line that removes the reported warning.",
    ),
    TaskType.ANALYZE_REQUIREMENTS: (
        "analyze",
        "Extract functional requirements, constraints and acceptance criteria.",
    ),
    TaskType.DESIGN_SOLUTION: (
        "plan",
        "Design interfaces, data flow and implementation steps for the requirements.",
    ),
    TaskType.IMPLEMENT_CODE: (
        "code",
        "Write the code for the designed solution.",
    ),
    TaskType.TEST_IMPLEMENTATION: (
        "review",
        "Write and describe tests that exercise the implementation.",
    ),
    TaskType.ANALYZE_CODE: (
        "analyze",
        "Describe the structure, coupling and smells of the code to refactor.",
    ),
    TaskType.PLAN_REFACTORING: (
        "plan",
        "Plan behavior-preserving refactoring steps in a safe order.",
    ),
    TaskType.APPLY_REFACTORING: (
        "code",
        "Apply the planned refactoring steps.",
    ),
    TaskType.VERIFY_REFACTORING: (
        "review",
        "Confirm the refactoring preserved behavior.",
    ),
    TaskType.ANALYZE_GOAL: (
        "analyze",
        "Break the goal down and identify what information is needed.",
    ),
    TaskType.EXECUTE_GOAL: (
        "chat",
        "Carry out the goal.",
    ),
    TaskType.REVIEW_RESULTS: (
        "review",
        "Review the results and report remaining gaps.",
    ),
}

FIX_TYPES = {TaskType.FIX_ERROR, TaskType.FIX_WARNING}


def _first_code_line(text: str) -> str:
    for raw_line in text.splitlines():
        line = raw_line.rstrip()
        if not line.strip() or line.strip().startswith("```"):
            continue
        return line
    return ""


class EditorFixHandler(PromptHandler):
    """Fixes a single reported line through the editor collaborator."""

    def render_prompt(self, task: Task) -> str:
        prompt = super().render_prompt(task)
        current_line = task.metadata.get("current_line")
        if current_line is not None:
            prompt += f"\n\nCurrent line:\n{current_line}"
        return prompt

    async def __call__(self, task: Task) -> dict[str, Any]:
        raw_info = task.metadata.get("error_info")
        info = ErrorInfo.from_dict(raw_info) if isinstance(raw_info, dict) else None
        editor = self.context.editor
        if info is None or editor is None or not info.file_path or info.line_number is None:
            return await super().__call__(task)

        try:
            task.metadata["current_line"] = editor.read_line(info.file_path, info.line_number)
            function_name = editor.function_at(info.file_path, info.line_number)
        except TaskforgeError:
            raise
        except Exception as exc:
            raise HandlerError(
                f"Editor read failed: {exc}", task_id=task.id, task_type=task.type.value
            ) from exc

        context = self.request_context(task)
        context.update(
            {
                "file_path": info.file_path,
                "line_number": info.line_number,
                "severity": info.severity,
                "function": function_name,
            }
        )
        content = await self.ask(task, self.render_prompt(task), context)
        replacement = _first_code_line(content)
        if not replacement:
            raise HandlerError(
                "Provider returned no replacement line",
                task_id=task.id,
                task_type=task.type.value,
            )
        try:
            editor.replace_line(info.file_path, info.line_number, replacement)
        except TaskforgeError:
            raise
        except Exception as exc:
            raise HandlerError(
                f"Editor replace failed: {exc}", task_id=task.id, task_type=task.type.value
            ) from exc
        return {
            "mode": self.mode,
            "content": content,
            "file_path": info.file_path,
            "line_number": info.line_number,
            "previous": task.metadata["current_line"],
            "replacement": replacement,
        }


def build_default_handlers(context: HandlerContext) -> dict[TaskType, TaskHandler]:
    handlers: dict[TaskType, TaskHandler] = {}
    for task_type, (mode, instruction) in INSTRUCTIONS.items():
        handler_cls = EditorFixHandler if task_type in FIX_TYPES else PromptHandler
        handlers[task_type] = handler_cls(context, mode=mode, instruction=instruction)
    return handlers
