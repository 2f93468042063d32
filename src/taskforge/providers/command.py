from __future__ import annotations

import asyncio
import json
from itertools import count
from pathlib import Path
from typing import Any

from taskforge.providers.base import AIProvider


class CommandProvider(AIProvider):
    """Runs a CLI model client (``claude -p`` by default) once per request."""

    name = "command"

    def __init__(
        self,
        binary: str = "claude",
        working_directory: Path | None = None,
        *,
        extra_args: list[str] | None = None,
    ) -> None:
        super().__init__()
        self.binary = binary
        self.working_directory = working_directory
        self.extra_args = list(extra_args or [])
        self._ids = count(1)
        self._running: dict[str, asyncio.Task[None]] = {}

    def build_command(self, prompt: str, context: dict[str, Any], mode: str) -> list[str]:
        rendered = f"Mode: {mode}\n\n{prompt}"
        if context:
            rendered = (
                f"{rendered}\n\nContext JSON:\n"
                f"{json.dumps(context, ensure_ascii=False, indent=2, default=str)}"
            )
        return [self.binary, *self.extra_args, "-p", rendered]

    def send_request(self, prompt: str, context: dict[str, Any], mode: str) -> str:
        request_id = f"{self.binary}-{next(self._ids)}"
        command = self.build_command(prompt, context, mode)
        task = asyncio.get_running_loop().create_task(self._run(request_id, command))
        self._running[request_id] = task
        task.add_done_callback(lambda _: self._running.pop(request_id, None))
        return request_id

    async def _run(self, request_id: str, command: list[str]) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(self.working_directory) if self.working_directory else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            self._emit_error(f"Provider binary not found: {self.binary}", request_id)
            return

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            self._emit_error(
                f"{self.binary} failed with exit code {process.returncode}: {detail}",
                request_id,
            )
            return
        self._emit_response(stdout.decode("utf-8", errors="replace").strip(), request_id)
