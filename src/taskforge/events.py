from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from taskforge.models import utcnow_iso

logger = logging.getLogger(__name__)

EventHook = Callable[[dict[str, Any]], None]

TASK_STARTED = "task_started"
TASK_COMPLETED = "task_completed"
TASK_FAILED = "task_failed"
TASK_RETRY = "task_retry"
TASK_CANCELLED = "task_cancelled"
TASK_REQUEUED = "task_requeued"
GOAL_CREATED = "goal_created"
GOAL_PROGRESS = "goal_progress"
GOAL_COMPLETED = "goal_completed"
GOAL_FAILED = "goal_failed"
DECISION_MADE = "decision_made"


class EventHub:
    """Observer registry for orchestration events.

    Every subscriber receives every event emitted after it subscribed, in
    subscription order. Events are plain dicts with an ``event`` key and an
    ``at`` timestamp.
    """

    def __init__(self) -> None:
        self._hooks: list[EventHook] = []
        self._history: list[dict[str, Any]] = []
        self.history_limit = 500

    def subscribe(self, hook: EventHook) -> Callable[[], None]:
        self._hooks.append(hook)

        def _unsubscribe() -> None:
            if hook in self._hooks:
                self._hooks.remove(hook)

        return _unsubscribe

    def emit(self, event: str, **payload: Any) -> dict[str, Any]:
        record = {"event": event, "at": utcnow_iso(), **payload}
        self._history.append(record)
        if len(self._history) > self.history_limit:
            self._history = self._history[-self.history_limit :]
        for hook in list(self._hooks):
            try:
                hook(record)
            except Exception:
                logger.exception("Event subscriber failed for %s", event)
        return record

    def history(self, event: str | None = None) -> list[dict[str, Any]]:
        if event is None:
            return list(self._history)
        return [item for item in self._history if item["event"] == event]
