from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any

from taskforge.models import TaskType


@dataclass(slots=True)
class TypeStats:
    success_rate: float
    executions: int = 0
    successes: int = 0
    durations: deque[float] = field(default_factory=deque)


class AnalyticsTracker:
    """Exponential-moving-average success rates and execution times per task type."""

    def __init__(
        self,
        *,
        seed_success_rate: float = 0.8,
        decay: float = 0.9,
        history_size: int = 1000,
    ) -> None:
        self.seed_success_rate = seed_success_rate
        self.decay = decay
        self.history_size = max(1, int(history_size))
        self._types: dict[str, TypeStats] = {}
        self._durations: deque[float] = deque(maxlen=self.history_size)
        self._executions = 0
        self._successes = 0

    @staticmethod
    def _key(task_type: TaskType | str) -> str:
        return task_type.value if isinstance(task_type, TaskType) else str(task_type)

    def _stats(self, key: str) -> TypeStats:
        stats = self._types.get(key)
        if stats is None:
            stats = TypeStats(
                success_rate=self.seed_success_rate,
                durations=deque(maxlen=self.history_size),
            )
            self._types[key] = stats
        return stats

    def record(self, task_type: TaskType | str, execution_time: float, success: bool) -> float:
        stats = self._stats(self._key(task_type))
        outcome = 1.0 if success else 0.0
        stats.success_rate = stats.success_rate * self.decay + outcome * (1.0 - self.decay)
        stats.executions += 1
        duration = max(0.0, float(execution_time))
        stats.durations.append(duration)
        self._durations.append(duration)
        self._executions += 1
        if success:
            stats.successes += 1
            self._successes += 1
        return stats.success_rate

    def success_rate(self, task_type: TaskType | str) -> float:
        stats = self._types.get(self._key(task_type))
        return stats.success_rate if stats else self.seed_success_rate

    def average_execution_time(self, task_type: TaskType | str | None = None) -> float:
        if task_type is None:
            durations = self._durations
        else:
            stats = self._types.get(self._key(task_type))
            durations = stats.durations if stats else deque()
        if not durations:
            return 0.0
        return sum(durations) / len(durations)

    def has_history(self, task_type: TaskType | str) -> bool:
        stats = self._types.get(self._key(task_type))
        return stats is not None and stats.executions > 0

    def overall_success_rate(self) -> float:
        if not self._executions:
            return self.seed_success_rate
        return self._successes / self._executions

    def restore(self, snapshot: dict[str, Any]) -> None:
        """Seed per-type rates from a previous ``snapshot()``. Durations start empty."""

        for key, rate in (snapshot.get("per_type_rates") or {}).items():
            self._stats(str(key)).success_rate = max(0.0, min(1.0, float(rate)))

    def snapshot(self) -> dict[str, Any]:
        return {
            "success_rate": round(self.overall_success_rate(), 4),
            "avg_execution_time": round(self.average_execution_time(), 4),
            "per_type_rates": {
                key: round(stats.success_rate, 4) for key, stats in sorted(self._types.items())
            },
            "total_executions": self._executions,
        }
