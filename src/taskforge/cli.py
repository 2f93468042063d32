from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from taskforge.collaborators import FileEditor, InMemorySolutionStore
from taskforge.config import TaskforgeConfig, load_config, save_config
from taskforge.errors import StateStoreError, TaskforgeError
from taskforge.models import GoalStatus
from taskforge.orchestrator import Orchestrator
from taskforge.providers import CommandProvider, EchoProvider, ProviderBridge
from taskforge.state import JsonStateStore

LOG_LEVELS = ["debug", "info", "warning", "error"]


@dataclass(slots=True)
class Runtime:
    repo_root: Path
    config_path: Path
    config: TaskforgeConfig
    state: JsonStateStore | None
    orchestrator: Orchestrator


def _resolve_config_path(repo_root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = repo_root / config_path
    return config_path.resolve()


def _state_dir(repo_root: Path, config: TaskforgeConfig) -> Path:
    directory = Path(config.state.directory)
    if not directory.is_absolute():
        directory = repo_root / directory
    return directory


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_bridge(provider_name: str, repo_root: Path) -> ProviderBridge:
    if provider_name == "claude":
        return ProviderBridge(CommandProvider("claude", working_directory=repo_root))
    return ProviderBridge(EchoProvider())


def _load_runtime(repo_root: Path, config_path: Path, provider_name: str = "echo") -> Runtime:
    config = load_config(config_path)
    state = JsonStateStore(_state_dir(repo_root, config)) if config.state.persist else None
    orchestrator = Orchestrator(
        config,
        bridge=_build_bridge(provider_name, repo_root),
        editor=FileEditor(repo_root),
        memory=InMemorySolutionStore(),
        state_store=state,
    )
    return Runtime(
        repo_root=repo_root,
        config_path=config_path,
        config=config,
        state=state,
        orchestrator=orchestrator,
    )


def _parse_context(pairs: tuple[str, ...]) -> dict[str, Any]:
    context: dict[str, Any] = {}
    for pair in pairs:
        key, separator, value = pair.partition("=")
        if not separator or not key.strip():
            raise click.BadParameter(f"Expected key=value, got '{pair}'", param_hint="--context")
        context[key.strip()] = value
    return context


def _load_json(raw: str, label: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"Invalid JSON: {exc}", param_hint=label) from exc


async def _run_goal(
    runtime: Runtime, goal_text: str, context: dict[str, Any], priority: int, approve: bool
) -> dict[str, Any]:
    orchestrator = runtime.orchestrator
    orchestrator.restore_analytics()
    goal = orchestrator.set_goal(goal_text, priority=priority, context=context)
    if goal.status == GoalStatus.AWAITING_APPROVAL and approve:
        orchestrator.start_goal(goal.id)
    try:
        if goal.status == GoalStatus.ACTIVE:
            await orchestrator.run_until_idle()
    finally:
        await orchestrator.shutdown()
    orchestrator.persist()
    return {
        "goal": goal.to_dict(),
        "queues": orchestrator.get_queue_status(),
        "analytics": orchestrator.get_analytics(),
    }


@click.group()
def cli() -> None:
    """Taskforge CLI."""


@cli.command("init")
@click.option("--config", "config_value", default="taskforge.toml", show_default=True)
@click.option("--max-concurrent", type=int, default=None)
def init_command(config_value: str, max_concurrent: int | None) -> None:
    repo_root = Path.cwd().resolve()
    config_path = _resolve_config_path(repo_root, config_value)
    config = load_config(config_path)
    if max_concurrent is not None:
        config.scheduler.max_concurrent_tasks = max_concurrent
    save_config(config_path, config)
    state_dir = _state_dir(repo_root, config)
    if config.state.persist:
        JsonStateStore(state_dir)

    click.echo(f"Initialized taskforge in {repo_root}")
    click.echo(f"Config: {config_path}")
    click.echo(f"State: {state_dir if config.state.persist else 'disabled'}")


@cli.command("plan")
@click.argument("goal")
@click.option("--context", "context_pairs", multiple=True, help="key=value, repeatable.")
@click.option("--config", "config_value", default="taskforge.toml", show_default=True)
def plan_command(goal: str, context_pairs: tuple[str, ...], config_value: str) -> None:
    repo_root = Path.cwd().resolve()
    config = load_config(_resolve_config_path(repo_root, config_value))
    orchestrator = Orchestrator(config, handlers={})
    planned, tasks = orchestrator.plan(goal, _parse_context(context_pairs))
    payload = {
        "goal": planned.to_dict(),
        "tasks": [task.to_dict() for task in tasks],
    }
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))


@cli.command("run")
@click.argument("goal")
@click.option("--context", "context_pairs", multiple=True, help="key=value, repeatable.")
@click.option("--priority", type=click.IntRange(1, 10), default=5, show_default=True)
@click.option("--provider", type=click.Choice(["echo", "claude"]), default="echo")
@click.option("--approve", is_flag=True, default=False, help="Start even below the threshold.")
@click.option("--log-level", type=click.Choice(LOG_LEVELS), default="warning")
@click.option("--config", "config_value", default="taskforge.toml", show_default=True)
def run_command(
    goal: str,
    context_pairs: tuple[str, ...],
    priority: int,
    provider: str,
    approve: bool,
    log_level: str,
    config_value: str,
) -> None:
    _configure_logging(log_level)
    repo_root = Path.cwd().resolve()
    context = _parse_context(context_pairs)
    runtime = _load_runtime(repo_root, _resolve_config_path(repo_root, config_value), provider)
    try:
        summary = asyncio.run(_run_goal(runtime, goal, context, priority, approve))
    except TaskforgeError as exc:
        raise click.ClickException(str(exc)) from exc

    goal_payload = summary["goal"]
    queues = summary["queues"]
    click.echo(f"Goal {goal_payload['status']}: {goal_payload['description']}")
    click.echo(f"Goal ID: {goal_payload['id']}")
    click.echo(f"Tasks: {queues['completed']}/{len(goal_payload['subtasks'])} completed")
    if goal_payload["status"] == GoalStatus.AWAITING_APPROVAL.value:
        click.echo(
            f"Awaiting approval at success probability {goal_payload['success_probability']:.2f}; "
            "rerun with --approve to start it."
        )


@cli.command("decide")
@click.argument("options_json")
@click.option("--context", "context_json", default="{}", show_default=True)
@click.option("--config", "config_value", default="taskforge.toml", show_default=True)
def decide_command(options_json: str, context_json: str, config_value: str) -> None:
    options = _load_json(options_json, "OPTIONS_JSON")
    context = _load_json(context_json, "--context")
    if not isinstance(options, list) or not all(isinstance(item, dict) for item in options):
        raise click.BadParameter("Expected a JSON list of objects", param_hint="OPTIONS_JSON")
    if not isinstance(context, dict):
        raise click.BadParameter("Expected a JSON object", param_hint="--context")

    repo_root = Path.cwd().resolve()
    config = load_config(_resolve_config_path(repo_root, config_value))
    orchestrator = Orchestrator(config, handlers={})
    result = orchestrator.choose(context, options)
    payload = {
        "chosen": result.chosen,
        "confidence": round(result.confidence, 4),
        "reasoning": result.reasoning,
        "scores": [round(score, 4) for score in result.scores],
    }
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))


@cli.command("status")
@click.option("--verbose", is_flag=True, default=False)
@click.option("--config", "config_value", default="taskforge.toml", show_default=True)
def status_command(verbose: bool, config_value: str) -> None:
    repo_root = Path.cwd().resolve()
    config = load_config(_resolve_config_path(repo_root, config_value))
    if not config.state.persist:
        raise click.ClickException("State persistence is disabled in the config.")
    state = JsonStateStore(_state_dir(repo_root, config))
    try:
        envelope = state.read("snapshot")
    except StateStoreError as exc:
        raise click.ClickException(str(exc)) from exc

    snapshot = envelope.data if isinstance(envelope.data, dict) else {}
    if not snapshot:
        click.echo("No runs recorded yet.")
        return
    payload: dict[str, Any] = {
        "revision": envelope.revision,
        "updated_at": envelope.updated_at,
        "queues": snapshot.get("queues", {}),
        "analytics": snapshot.get("analytics", {}),
        "goals": [
            {
                "id": goal.get("id"),
                "description": goal.get("description"),
                "status": goal.get("status"),
                "progress": goal.get("progress"),
            }
            for goal in snapshot.get("goals", [])
        ],
    }
    if verbose:
        payload["tasks"] = snapshot.get("tasks", [])
        payload["deferred"] = snapshot.get("deferred", {})
        payload["decisions"] = state.get_decisions()
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))
