"""Deterministic in-process provider for the CLI and tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from itertools import count
from typing import Any

from taskforge.providers.base import AIProvider

Responder = Callable[[str, dict[str, Any], str], str]


def echo_responder(prompt: str, context: dict[str, Any], mode: str) -> str:
    _ = context
    first_line = prompt.strip().splitlines()[0] if prompt.strip() else ""
    return f"[{mode}] {first_line}".strip()


class EchoProvider(AIProvider):
    """Answers every request on the next loop iteration (or after ``delay_seconds``).

    A custom ``responder`` may raise to simulate a provider-side error.
    """

    name = "echo"

    def __init__(self, responder: Responder | None = None, *, delay_seconds: float = 0.0) -> None:
        super().__init__()
        self.responder = responder or echo_responder
        self.delay_seconds = delay_seconds
        self.requests: list[dict[str, Any]] = []
        self._ids = count(1)

    def send_request(self, prompt: str, context: dict[str, Any], mode: str) -> str:
        request_id = f"echo-{next(self._ids)}"
        self.requests.append(
            {"request_id": request_id, "prompt": prompt, "context": context, "mode": mode}
        )
        loop = asyncio.get_running_loop()
        loop.call_later(self.delay_seconds, self._answer, request_id, prompt, context, mode)
        return request_id

    def _answer(self, request_id: str, prompt: str, context: dict[str, Any], mode: str) -> None:
        try:
            text = self.responder(prompt, context, mode)
        except Exception as exc:
            self._emit_error(str(exc), request_id)
            return
        self._emit_response(text, request_id)
