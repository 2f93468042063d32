from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4


def utcnow_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12]}"


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class TaskStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class GoalStatus(str, Enum):
    PLANNED = "planned"
    AWAITING_APPROVAL = "awaiting_approval"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TaskType(str, Enum):
    ANALYZE_ERRORS = "analyze_errors"
    FIX_ERRORS = "fix_errors"
    VERIFY_FIXES = "verify_fixes"
    FIX_ERROR = "fix_error"
    FIX_WARNING = "fix_warning"
    ANALYZE_REQUIREMENTS = "analyze_requirements"
    DESIGN_SOLUTION = "design_solution"
    IMPLEMENT_CODE = "implement_code"
    TEST_IMPLEMENTATION = "test_implementation"
    ANALYZE_CODE = "analyze_code"
    PLAN_REFACTORING = "plan_refactoring"
    APPLY_REFACTORING = "apply_refactoring"
    VERIFY_REFACTORING = "verify_refactoring"
    ANALYZE_GOAL = "analyze_goal"
    EXECUTE_GOAL = "execute_goal"
    REVIEW_RESULTS = "review_results"


@dataclass(slots=True)
class Task:
    id: str
    type: TaskType
    description: str
    priority: int = 5
    status: TaskStatus = TaskStatus.PENDING
    dependencies: set[str] = field(default_factory=set)
    retry_count: int = 0
    max_retries: int = 3
    timeout_seconds: float = 600.0
    estimated_duration: float = 0.0
    complexity: float = 0.5
    success_probability: float = 0.8
    created_at: str = field(default_factory=utcnow_iso)
    started_at: str | None = None
    completed_at: str | None = None
    result: Any = None
    error: str | None = None
    goal_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.type, str) and not isinstance(self.type, TaskType):
            self.type = TaskType(self.type)
        if isinstance(self.status, str) and not isinstance(self.status, TaskStatus):
            self.status = TaskStatus(self.status)
        self.dependencies = set(self.dependencies)
        self.priority = int(_clamp(int(self.priority), 1, 10))
        self.complexity = _clamp(float(self.complexity), 0.0, 1.0)
        self.success_probability = _clamp(float(self.success_probability), 0.0, 1.0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "description": self.description,
            "priority": self.priority,
            "status": self.status.value,
            "dependencies": sorted(self.dependencies),
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "timeout_seconds": self.timeout_seconds,
            "estimated_duration": self.estimated_duration,
            "complexity": round(self.complexity, 4),
            "success_probability": round(self.success_probability, 4),
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "result": self.result if _is_json_scalar(self.result) else str(self.result),
            "error": self.error,
            "goal_id": self.goal_id,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Task:
        return cls(
            id=str(payload["id"]),
            type=TaskType(payload["type"]),
            description=str(payload.get("description", "")),
            priority=int(payload.get("priority", 5)),
            status=TaskStatus(payload.get("status", TaskStatus.PENDING.value)),
            dependencies=set(payload.get("dependencies", [])),
            retry_count=int(payload.get("retry_count", 0)),
            max_retries=int(payload.get("max_retries", 3)),
            timeout_seconds=float(payload.get("timeout_seconds", 600.0)),
            estimated_duration=float(payload.get("estimated_duration", 0.0)),
            complexity=float(payload.get("complexity", 0.5)),
            success_probability=float(payload.get("success_probability", 0.8)),
            created_at=str(payload.get("created_at") or utcnow_iso()),
            started_at=payload.get("started_at"),
            completed_at=payload.get("completed_at"),
            result=payload.get("result"),
            error=payload.get("error"),
            goal_id=payload.get("goal_id"),
            metadata=dict(payload.get("metadata") or {}),
        )


def _is_json_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool, list, dict))


@dataclass(slots=True)
class Goal:
    id: str
    description: str
    priority: int = 5
    deadline: str | None = None
    status: GoalStatus = GoalStatus.PLANNED
    progress: float = 0.0
    subtasks: list[str] = field(default_factory=list)
    complexity: float = 0.5
    success_probability: float = 0.7
    learning_value: float = 0.5
    context: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=utcnow_iso)
    completed_at: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def update_progress(self, tasks: dict[str, Task]) -> float:
        if not self.subtasks:
            self.progress = 0.0
            return self.progress
        done = sum(
            1
            for task_id in self.subtasks
            if task_id in tasks and tasks[task_id].status == TaskStatus.COMPLETED
        )
        self.progress = done / len(self.subtasks)
        return self.progress

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "priority": self.priority,
            "deadline": self.deadline,
            "status": self.status.value,
            "progress": round(self.progress, 4),
            "subtasks": list(self.subtasks),
            "complexity": round(self.complexity, 4),
            "success_probability": round(self.success_probability, 4),
            "learning_value": round(self.learning_value, 4),
            "context": dict(self.context),
            "created_at": self.created_at,
            "completed_at": self.completed_at,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True, slots=True)
class DecisionRecord:
    id: str
    timestamp: str
    context: dict[str, Any]
    options: tuple[dict[str, Any], ...]
    chosen_option: dict[str, Any]
    confidence: float
    reasoning: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "context": dict(self.context),
            "options": [dict(option) for option in self.options],
            "chosen_option": dict(self.chosen_option),
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }


@dataclass(slots=True)
class ErrorInfo:
    """Payload of a log-monitor ``error_detected``/``warning_detected`` event."""

    message: str
    line_number: int | None = None
    file_path: str | None = None
    severity: str = "error"
    timestamp: str = field(default_factory=utcnow_iso)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ErrorInfo:
        line_number = payload.get("line_number")
        return cls(
            message=str(payload.get("message", "")),
            line_number=int(line_number) if line_number is not None else None,
            file_path=payload.get("file_path"),
            severity=str(payload.get("severity") or "error"),
            timestamp=str(payload.get("timestamp") or utcnow_iso()),
        )
