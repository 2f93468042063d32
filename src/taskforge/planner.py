from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from taskforge.analytics import AnalyticsTracker
from taskforge.models import Task, TaskType, new_id

WORD_PATTERN = re.compile(r"[a-z][a-z0-9_]+")
CLAUSE_PATTERN = re.compile(r"\band\b|\bthen\b|\balso\b|[,;]")

ERROR_KEYWORDS = ("fix", "error", "bug", "compil", "crash", "exception", "failing", "broken")
REFACTOR_KEYWORDS = ("refactor", "restructure", "reorganize", "clean up", "cleanup", "simplify")
CREATION_KEYWORDS = ("create", "implement", "build", "add", "write", "develop", "generate", "make")

COMPLEXITY_WEIGHTS = {
    "architecture": 0.3,
    "redesign": 0.3,
    "refactor": 0.2,
    "framework": 0.2,
    "migrate": 0.2,
    "concurren": 0.2,
    "integrate": 0.15,
    "system": 0.1,
    "optimize": 0.1,
    "multiple": 0.1,
    "all": 0.05,
    "fix": -0.1,
    "add": -0.1,
    "rename": -0.1,
    "update": -0.05,
    "simple": -0.2,
    "typo": -0.3,
}

LEARNING_WEIGHTS = {
    "new": 0.15,
    "learn": 0.2,
    "explore": 0.2,
    "research": 0.2,
    "algorithm": 0.15,
    "architecture": 0.15,
    "design": 0.1,
    "optimize": 0.1,
    "fix": -0.1,
    "typo": -0.2,
    "format": -0.1,
}

DEFAULT_SUCCESS_PATTERNS = {"fix", "add", "update", "rename", "format", "document"}
DEFAULT_FAILURE_PATTERNS = {"rewrite", "migrate", "redesign", "entire", "everything"}
STOPWORDS = {"the", "and", "then", "also", "all", "for", "with", "from", "into", "this", "that"}


@dataclass(frozen=True, slots=True)
class TemplateStep:
    type: TaskType
    priority: int
    description: str
    duration_seconds: float
    complexity_factor: float


TEMPLATES: dict[str, tuple[TemplateStep, ...]] = {
    "error_fixing": (
        TemplateStep(TaskType.ANALYZE_ERRORS, 8, "Analyze errors for: {goal}", 30.0, 0.6),
        TemplateStep(TaskType.FIX_ERRORS, 9, "Fix errors for: {goal}", 120.0, 1.0),
        TemplateStep(TaskType.VERIFY_FIXES, 7, "Verify fixes for: {goal}", 60.0, 0.5),
    ),
    "refactoring": (
        TemplateStep(TaskType.ANALYZE_CODE, 7, "Analyze current code for: {goal}", 60.0, 0.6),
        TemplateStep(TaskType.PLAN_REFACTORING, 6, "Plan refactoring for: {goal}", 90.0, 0.8),
        TemplateStep(TaskType.APPLY_REFACTORING, 5, "Apply refactoring for: {goal}", 300.0, 1.0),
        TemplateStep(TaskType.VERIFY_REFACTORING, 4, "Verify refactoring for: {goal}", 90.0, 0.5),
    ),
    "creation": (
        TemplateStep(
            TaskType.ANALYZE_REQUIREMENTS, 8, "Analyze requirements for: {goal}", 60.0, 0.5
        ),
        TemplateStep(TaskType.DESIGN_SOLUTION, 7, "Design a solution for: {goal}", 120.0, 0.8),
        TemplateStep(TaskType.IMPLEMENT_CODE, 6, "Implement code for: {goal}", 300.0, 1.0),
        TemplateStep(
            TaskType.TEST_IMPLEMENTATION, 5, "Test the implementation of: {goal}", 120.0, 0.6
        ),
    ),
    "generic": (
        TemplateStep(TaskType.ANALYZE_GOAL, 6, "Analyze goal: {goal}", 60.0, 0.5),
        TemplateStep(TaskType.EXECUTE_GOAL, 5, "Execute goal: {goal}", 180.0, 1.0),
        TemplateStep(TaskType.REVIEW_RESULTS, 4, "Review results of: {goal}", 60.0, 0.4),
    ),
}


@dataclass(frozen=True, slots=True)
class GoalAssessment:
    family: str
    complexity: float
    success_probability: float
    learning_value: float


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _words(text: str) -> list[str]:
    return WORD_PATTERN.findall(text.lower())


def _mentions(text: str, words: list[str], keywords: tuple[str, ...]) -> bool:
    """Match keywords as word prefixes, or as whole phrases when they contain a space."""
    for keyword in keywords:
        if " " in keyword:
            if re.search(rf"\b{re.escape(keyword)}\b", text):
                return True
        elif any(word.startswith(keyword) for word in words):
            return True
    return False


class GoalPlanner:
    """Turns a goal description plus context into a fixed task template.

    Pure text transformation: the only external input is the optional
    analytics tracker, which refines duration and success estimates.
    """

    def __init__(
        self,
        analytics: AnalyticsTracker | None = None,
        *,
        base_timeout_seconds: float = 600.0,
        default_max_retries: int = 3,
    ) -> None:
        self.analytics = analytics
        self.base_timeout_seconds = base_timeout_seconds
        self.default_max_retries = default_max_retries
        self.success_patterns: set[str] = set(DEFAULT_SUCCESS_PATTERNS)
        self.failure_patterns: set[str] = set(DEFAULT_FAILURE_PATTERNS)

    @staticmethod
    def classify(description: str) -> str:
        # Refactoring is checked before creation: "refactor X and add Y" is a refactor.
        text = description.lower()
        words = _words(text)
        if _mentions(text, words, ERROR_KEYWORDS):
            return "error_fixing"
        if _mentions(text, words, REFACTOR_KEYWORDS):
            return "refactoring"
        if set(words) & set(CREATION_KEYWORDS):
            return "creation"
        return "generic"

    @staticmethod
    def estimate_complexity(description: str) -> float:
        text = description.lower()
        words = _words(text)
        score = 0.5
        for keyword, weight in COMPLEXITY_WEIGHTS.items():
            if any(word.startswith(keyword) for word in words):
                score += weight
        clauses = len(CLAUSE_PATTERN.findall(text))
        score += min(0.3, 0.1 * clauses)
        return round(_clamp(score, 0.1, 1.0), 4)

    @staticmethod
    def estimate_learning_value(description: str) -> float:
        words = _words(description)
        score = 0.3
        for keyword, weight in LEARNING_WEIGHTS.items():
            if any(word.startswith(keyword) for word in words):
                score += weight
        return round(_clamp(score, 0.0, 1.0), 4)

    def estimate_success_probability(
        self,
        description: str,
        context: dict[str, Any] | None = None,
        task_types: list[TaskType] | None = None,
    ) -> float:
        words = set(_words(description))
        probability = 0.7
        if words & self.success_patterns:
            probability += 0.15
        if words & self.failure_patterns:
            probability -= 0.2
        probability += 0.1 if context else -0.1
        probability = _clamp(probability, 0.0, 1.0)
        if self.analytics is not None and task_types:
            rates = [self.analytics.success_rate(task_type) for task_type in task_types]
            probability = (probability + sum(rates) / len(rates)) / 2
        return round(_clamp(probability, 0.0, 1.0), 4)

    def assess(self, description: str, context: dict[str, Any] | None = None) -> GoalAssessment:
        family = self.classify(description)
        task_types = [step.type for step in TEMPLATES[family]]
        return GoalAssessment(
            family=family,
            complexity=self.estimate_complexity(description),
            success_probability=self.estimate_success_probability(
                description, context, task_types
            ),
            learning_value=self.estimate_learning_value(description),
        )

    def decompose(
        self,
        description: str,
        context: dict[str, Any] | None = None,
        *,
        goal_id: str | None = None,
    ) -> list[Task]:
        family = self.classify(description)
        goal_complexity = self.estimate_complexity(description)
        scalar_context = {
            key: value
            for key, value in (context or {}).items()
            if isinstance(value, (str, int, float, bool))
        }
        tasks: list[Task] = []
        previous_id: str | None = None
        for step in TEMPLATES[family]:
            duration = step.duration_seconds
            success_probability = 0.8
            if self.analytics is not None:
                success_probability = self.analytics.success_rate(step.type)
                if self.analytics.has_history(step.type):
                    duration = self.analytics.average_execution_time(step.type)
            task = Task(
                id=new_id(f"task-{step.type.value.replace('_', '-')}"),
                type=step.type,
                description=step.description.format(goal=description.strip()),
                priority=step.priority,
                dependencies={previous_id} if previous_id else set(),
                max_retries=self.default_max_retries,
                timeout_seconds=self.base_timeout_seconds,
                estimated_duration=duration,
                complexity=goal_complexity * step.complexity_factor,
                success_probability=success_probability,
                goal_id=goal_id,
                metadata={"family": family, "context": scalar_context},
            )
            tasks.append(task)
            previous_id = task.id
        return tasks

    def record_outcome(self, description: str, success: bool) -> None:
        keywords = {word for word in _words(description) if len(word) > 3} - STOPWORDS
        if success:
            self.success_patterns.update(keywords)
        else:
            self.failure_patterns.update(keywords)
