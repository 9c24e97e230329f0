"""CLI entrypoint for pycadence."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import click

from pycadence import __version__
from pycadence.config import STATE_BACKENDS, Settings, load_repository, open_state_store
from pycadence.errors import CadenceError
from pycadence.executor import Orchestrator
from pycadence.lock import DirectoryLock
from pycadence.storage.files import entity_filename

T = TypeVar("T")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _run(settings: Settings, action: Callable[[Orchestrator], Awaitable[T]]) -> T:
    """Open the state store, build the orchestrator, run ``action``, close the store."""

    async def session() -> T:
        repository = load_repository(settings.config_dir)
        store = await open_state_store(settings)
        try:
            return await action(Orchestrator.from_settings(settings, repository, store))
        finally:
            await store.close()

    try:
        return asyncio.run(session())
    except CadenceError as e:
        raise click.ClickException(str(e)) from e


def _locked(
    settings: Settings,
    entity_id: str,
    action: Callable[[Orchestrator], Awaitable[T]],
) -> Callable[[Orchestrator], Awaitable[T]]:
    async def wrapped(orchestrator: Orchestrator) -> T:
        lock = DirectoryLock(
            settings.state_dir / "locks" / entity_filename(entity_id, suffix=""),
            timeout=settings.lock_timeout,
        )
        async with lock:
            return await action(orchestrator)

    return wrapped


def _emit_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, sort_keys=True))


@click.group()
@click.version_option(version=__version__, prog_name="pycadence")
@click.option(
    "--config-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory with tasks.json and workflows.json.",
)
@click.option(
    "--state-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory for persisted state.",
)
@click.option(
    "--backend",
    type=click.Choice(STATE_BACKENDS),
    default=None,
    help="State store backend.",
)
@click.option("--log-level", default=None, help="Logging level, for example DEBUG.")
@click.pass_context
def cli(
    ctx: click.Context,
    config_dir: Path | None,
    state_dir: Path | None,
    backend: str | None,
    log_level: str | None,
) -> None:
    """Dependency-aware task workflow runner."""
    overrides = {
        "config_dir": config_dir,
        "state_dir": state_dir,
        "state_backend": backend,
        "log_level": log_level.upper() if log_level else None,
    }
    try:
        settings = dataclasses.replace(
            Settings.from_env(),
            **{key: value for key, value in overrides.items() if value is not None},
        )
    except CadenceError as e:
        raise click.ClickException(str(e)) from e

    _configure_logging(settings.log_level)
    ctx.obj = settings


@cli.command("run-workflow")
@click.argument("workflow_id")
@click.option(
    "--lock",
    is_flag=True,
    help="Wait for other locked runs of the same id to finish first.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
@click.pass_obj
def run_workflow(settings: Settings, workflow_id: str, lock: bool, as_json: bool) -> None:
    """Run a workflow and all of its tasks in dependency order."""

    async def action(orchestrator: Orchestrator):
        return await orchestrator.run_workflow(workflow_id)

    if lock:
        action = _locked(settings, workflow_id, action)
    result = _run(settings, action)

    if as_json:
        _emit_json(result.to_dict())
    else:
        click.echo(f"Workflow {result.workflow_id}: {result.status.value}")
        click.echo(f"Run: {result.run_id}")
        click.echo(f"Attempts: {result.attempts}  Duration: {result.duration:.1f}s")
        for task_id, status in result.task_statuses().items():
            click.echo(f"  {task_id}: {status.value}")
        if result.error:
            click.echo(f"Error: {result.error}")

    if not result.succeeded:
        sys.exit(1)


@cli.command("run-task")
@click.argument("task_id")
@click.option(
    "--lock",
    is_flag=True,
    help="Wait for other locked runs of the same id to finish first.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
@click.pass_obj
def run_task(settings: Settings, task_id: str, lock: bool, as_json: bool) -> None:
    """Run a single task with its retry policy."""

    async def action(orchestrator: Orchestrator):
        return await orchestrator.run_task(task_id)

    if lock:
        action = _locked(settings, task_id, action)
    result = _run(settings, action)

    if as_json:
        _emit_json(result.to_dict())
    else:
        click.echo(f"Task {result.task_id}: {result.status.value} (exit code {result.exit_code})")
        if result.output:
            click.echo(result.output.rstrip("\n"))
        if result.error:
            click.echo(f"Error: {result.error}")

    if not result.succeeded:
        sys.exit(1)


@cli.command("retry-stats")
@click.argument("entity_id")
@click.option("--json", "as_json", is_flag=True, help="Print the statistics as JSON.")
@click.pass_obj
def retry_stats(settings: Settings, entity_id: str, as_json: bool) -> None:
    """Show retry statistics of a task or workflow."""
    state = _run(settings, lambda orchestrator: orchestrator.get_retry_stats(entity_id))
    if as_json:
        _emit_json(state.to_dict())
        return
    for key, value in state.to_dict().items():
        click.echo(f"{key}: {value}")


@cli.command("reset-retry")
@click.argument("entity_id")
@click.pass_obj
def reset_retry(settings: Settings, entity_id: str) -> None:
    """Clear retry attempts and permanent failure of a task or workflow."""
    cleared = _run(settings, lambda orchestrator: orchestrator.reset_retry_state(entity_id))
    if cleared:
        click.echo(f"Retry state cleared for {entity_id}")
    else:
        click.echo(f"No retry state recorded for {entity_id}")


@cli.command("task-status")
@click.argument("task_id")
@click.option("--json", "as_json", is_flag=True, help="Print the state as JSON.")
@click.pass_obj
def task_status(settings: Settings, task_id: str, as_json: bool) -> None:
    """Show the last recorded execution state of a task."""
    state = _run(settings, lambda orchestrator: orchestrator.get_task_status(task_id))
    if state is None:
        if as_json:
            _emit_json(None)
        else:
            click.echo(f"Task {task_id} has not run yet")
        return
    if as_json:
        _emit_json(state.to_dict())
        return
    for key, value in state.to_dict().items():
        click.echo(f"{key}: {value}")


@cli.command("cancel-task")
@click.argument("task_id")
@click.pass_obj
def cancel_task(settings: Settings, task_id: str) -> None:
    """Mark a running task as cancelled (its process is not signalled)."""
    if not _run(settings, lambda orchestrator: orchestrator.cancel_task(task_id)):
        raise click.ClickException(f"Task {task_id} is not currently running")
    click.echo(f"Task {task_id} marked as cancelled")


@cli.command("plan")
@click.argument("workflow_id")
@click.option("--json", "as_json", is_flag=True, help="Print the layers as JSON.")
@click.pass_obj
def plan(settings: Settings, workflow_id: str, as_json: bool) -> None:
    """Show the execution layers of a workflow without running it."""

    async def action(orchestrator: Orchestrator):
        return orchestrator.plan(workflow_id)

    layers = _run(settings, action)
    if as_json:
        _emit_json([list(layer) for layer in layers])
        return
    for index, layer in enumerate(layers, start=1):
        click.echo(f"Layer {index}: {', '.join(layer)}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
