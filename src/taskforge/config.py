from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_EXCLUSIVE_TYPES = [
    "fix_errors",
    "fix_error",
    "fix_warning",
    "apply_refactoring",
    "implement_code",
]


@dataclass(slots=True)
class SchedulerConfig:
    tick_interval_seconds: float = 1.0
    max_concurrent_tasks: int = 5
    auto_retry: bool = True
    retry_backoff_seconds: float = 2.0
    exclusive_types: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUSIVE_TYPES))


@dataclass(slots=True)
class PlannerConfig:
    base_timeout_seconds: float = 600.0
    default_max_retries: int = 3


@dataclass(slots=True)
class AutonomyConfig:
    auto_execute: bool = True
    confidence_threshold: float = 0.5


@dataclass(slots=True)
class AnalyticsConfig:
    seed_success_rate: float = 0.8
    decay: float = 0.9
    history_size: int = 1000


@dataclass(slots=True)
class StateConfig:
    directory: str = ".taskforge/state"
    persist: bool = True


@dataclass(slots=True)
class TaskforgeConfig:
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    planner: PlannerConfig = field(default_factory=PlannerConfig)
    autonomy: AutonomyConfig = field(default_factory=AutonomyConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    state: StateConfig = field(default_factory=StateConfig)

    @classmethod
    def default(cls) -> TaskforgeConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> TaskforgeConfig:
        return cls(
            scheduler=SchedulerConfig(**data.get("scheduler", {})),
            planner=PlannerConfig(**data.get("planner", {})),
            autonomy=AutonomyConfig(**data.get("autonomy", {})),
            analytics=AnalyticsConfig(**data.get("analytics", {})),
            state=StateConfig(**data.get("state", {})),
        )

    def to_dict(self) -> dict:
        return {
            "scheduler": {
                "tick_interval_seconds": self.scheduler.tick_interval_seconds,
                "max_concurrent_tasks": self.scheduler.max_concurrent_tasks,
                "auto_retry": self.scheduler.auto_retry,
                "retry_backoff_seconds": self.scheduler.retry_backoff_seconds,
                "exclusive_types": list(self.scheduler.exclusive_types),
            },
            "planner": {
                "base_timeout_seconds": self.planner.base_timeout_seconds,
                "default_max_retries": self.planner.default_max_retries,
            },
            "autonomy": {
                "auto_execute": self.autonomy.auto_execute,
                "confidence_threshold": self.autonomy.confidence_threshold,
            },
            "analytics": {
                "seed_success_rate": self.analytics.seed_success_rate,
                "decay": self.analytics.decay,
                "history_size": self.analytics.history_size,
            },
            "state": {
                "directory": self.state.directory,
                "persist": self.state.persist,
            },
        }


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0")
        if rendered.endswith("."):
            rendered += "0"
        return rendered if rendered else "0.0"
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: TaskforgeConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    section_order = ["scheduler", "planner", "autonomy", "analytics", "state"]
    for section in section_order:
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> TaskforgeConfig:
    if not path.exists():
        return TaskforgeConfig.default()
    return TaskforgeConfig.from_dict(tomllib.loads(path.read_text(encoding="utf-8")))


def save_config(path: Path, config: TaskforgeConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
