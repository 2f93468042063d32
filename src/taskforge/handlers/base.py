from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from taskforge.collaborators import EditorOperations, MemoryStore
from taskforge.errors import HandlerError, ProviderError
from taskforge.models import Goal, Task
from taskforge.providers.base import ProviderBridge

GoalLookup = Callable[[str], Goal | None]


@dataclass(slots=True)
class HandlerContext:
    bridge: ProviderBridge | None = None
    editor: EditorOperations | None = None
    memory: MemoryStore | None = None
    goal_lookup: GoalLookup | None = None


class PromptHandler:
    """Asks the AI provider to carry out a task described by an instruction."""

    def __init__(self, context: HandlerContext, *, mode: str, instruction: str) -> None:
        self.context = context
        self.mode = mode
        self.instruction = instruction

    def request_context(self, task: Task) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "task_id": task.id,
            "task_type": task.type.value,
            "priority": task.priority,
            "attempt": task.retry_count + 1,
        }
        payload.update(task.metadata.get("context", {}))
        if task.goal_id and self.context.goal_lookup is not None:
            goal = self.context.goal_lookup(task.goal_id)
            if goal is not None:
                payload["goal"] = goal.description
        if self.context.memory is not None:
            similar = self.context.memory.get_similar(task.description)
            if similar:
                payload["similar_solutions"] = similar[:3]
        return payload

    def render_prompt(self, task: Task) -> str:
        return f"{self.instruction}\n\nTask: {task.description}"

    async def ask(self, task: Task, prompt: str, context: dict[str, Any]) -> str:
        if self.context.bridge is None:
            raise HandlerError(
                "No AI provider configured",
                task_id=task.id,
                task_type=task.type.value,
                retriable=False,
            )
        try:
            return await self.context.bridge.request(prompt, context, self.mode)
        except ProviderError as exc:
            raise HandlerError(
                f"Provider request failed: {exc}",
                task_id=task.id,
                task_type=task.type.value,
                retriable=exc.retriable,
            ) from exc

    async def __call__(self, task: Task) -> dict[str, Any]:
        content = await self.ask(task, self.render_prompt(task), self.request_context(task))
        return {"mode": self.mode, "content": content}
