from __future__ import annotations

from enum import Enum


class TaskforgeError(RuntimeError):
    """Base class for orchestration failures."""

    def __init__(self, message: str, *, retriable: bool = False) -> None:
        super().__init__(message)
        self.retriable = retriable


class TaskExecutionError(TaskforgeError):
    """Raised for failures attributed to a single task attempt."""

    def __init__(
        self,
        message: str,
        *,
        task_id: str | None = None,
        task_type: str | None = None,
        retriable: bool = True,
    ) -> None:
        super().__init__(message, retriable=retriable)
        self.task_id = task_id
        self.task_type = task_type


class TaskTimeoutError(TaskExecutionError):
    """Raised when an active task runs past its ``timeout_seconds``."""


class HandlerError(TaskExecutionError):
    """Raised by (or on behalf of) a handler that failed its task."""


class UnknownTaskTypeError(TaskExecutionError):
    """Raised when no handler is registered for a task type. Never retried."""

    def __init__(self, message: str, *, task_id: str | None = None, task_type: str | None = None):
        super().__init__(message, task_id=task_id, task_type=task_type, retriable=False)


class ProviderError(TaskforgeError):
    """Raised when the AI provider reports an error or does not answer in time."""

    def __init__(self, message: str, *, request_id: str | None = None, retriable: bool = True):
        super().__init__(message, retriable=retriable)
        self.request_id = request_id


class StateStoreError(TaskforgeError):
    """Raised when snapshot persistence fails."""


class DeferReason(str, Enum):
    """Why a pending task was not admitted. Not an error: the task stays pending."""

    DEPENDENCY_UNMET = "dependency_unmet"
    RESOURCE_LOCKED = "resource_locked"
