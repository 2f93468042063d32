from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from taskforge.errors import HandlerError

FUNCTION_PATTERN = re.compile(r"^\s*(?:async\s+def|def|function|fn|func)\s+(\w+)")
WORD_PATTERN = re.compile(r"[a-z0-9_]+")


class EditorOperations(Protocol):
    def read_line(self, file_path: str, line_number: int) -> str: ...

    def replace_line(self, file_path: str, line_number: int, text: str) -> None: ...

    def insert_line(self, file_path: str, line_number: int, text: str) -> None: ...

    def function_at(self, file_path: str, line_number: int) -> str | None: ...


class MemoryStore(Protocol):
    def store_solution(self, problem: str, solution: str, effectiveness: float) -> None: ...

    def get_similar(self, problem: str) -> list[dict[str, Any]]: ...


class FileEditor:
    """Line-level edits on files under ``root``. Line numbers are 1-based."""

    def __init__(self, root: Path) -> None:
        self.root = root.resolve()

    def _path(self, file_path: str) -> Path:
        path = Path(file_path)
        if not path.is_absolute():
            path = self.root / path
        if not path.exists():
            raise HandlerError(f"File not found: {file_path}")
        return path

    def _lines(self, file_path: str) -> tuple[Path, list[str]]:
        path = self._path(file_path)
        return path, path.read_text(encoding="utf-8").splitlines(keepends=True)

    @staticmethod
    def _check_range(lines: list[str], line_number: int, *, allow_end: bool = False) -> None:
        upper = len(lines) + (1 if allow_end else 0)
        if line_number < 1 or line_number > upper:
            raise HandlerError(f"Line {line_number} out of range (1..{upper})")

    def read_line(self, file_path: str, line_number: int) -> str:
        _, lines = self._lines(file_path)
        self._check_range(lines, line_number)
        return lines[line_number - 1].rstrip("\r\n")

    def replace_line(self, file_path: str, line_number: int, text: str) -> None:
        path, lines = self._lines(file_path)
        self._check_range(lines, line_number)
        ending = "\n" if lines[line_number - 1].endswith("\n") else ""
        lines[line_number - 1] = text.rstrip("\r\n") + ending
        path.write_text("".join(lines), encoding="utf-8")

    def insert_line(self, file_path: str, line_number: int, text: str) -> None:
        path, lines = self._lines(file_path)
        self._check_range(lines, line_number, allow_end=True)
        if lines and not lines[-1].endswith("\n"):
            lines[-1] += "\n"
        lines.insert(line_number - 1, text.rstrip("\r\n") + "\n")
        path.write_text("".join(lines), encoding="utf-8")

    def function_at(self, file_path: str, line_number: int) -> str | None:
        _, lines = self._lines(file_path)
        self._check_range(lines, line_number)
        for index in range(line_number - 1, -1, -1):
            match = FUNCTION_PATTERN.match(lines[index])
            if match:
                return match.group(1)
        return None


@dataclass(slots=True)
class StoredSolution:
    problem: str
    solution: str
    effectiveness: float


class InMemorySolutionStore:
    """Keyword-overlap memory of past solutions."""

    def __init__(self, *, min_overlap: float = 0.3) -> None:
        self.min_overlap = min_overlap
        self.solutions: list[StoredSolution] = []

    @staticmethod
    def _keywords(text: str) -> set[str]:
        return {word for word in WORD_PATTERN.findall(text.lower()) if len(word) > 2}

    def store_solution(self, problem: str, solution: str, effectiveness: float) -> None:
        self.solutions.append(
            StoredSolution(
                problem=problem,
                solution=solution,
                effectiveness=max(0.0, min(1.0, float(effectiveness))),
            )
        )

    def get_similar(self, problem: str) -> list[dict[str, Any]]:
        wanted = self._keywords(problem)
        if not wanted:
            return []
        matches: list[tuple[float, StoredSolution]] = []
        for item in self.solutions:
            overlap = len(wanted & self._keywords(item.problem)) / len(wanted)
            if overlap >= self.min_overlap:
                matches.append((overlap, item))
        matches.sort(key=lambda pair: (pair[0], pair[1].effectiveness), reverse=True)
        return [
            {
                "problem": item.problem,
                "solution": item.solution,
                "effectiveness": item.effectiveness,
                "similarity": round(overlap, 4),
            }
            for overlap, item in matches
        ]
