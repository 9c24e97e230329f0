"""
Definitions and settings.

Task and workflow definitions are parsed once, at load time, into frozen
dataclasses; a malformed definition fails loudly with ConfigError before
anything runs. Runtime settings come from ``PYCADENCE_*`` environment
variables.

Definition files (in the config directory):

``tasks.json``::

    [
      {"id": "backup", "name": "Nightly backup", "command": "./backup.sh",
       "working_dir": "/srv", "timeout": 600,
       "retry": {"max_attempts": 3, "delay": 5},
       "notifications": {"on_success": false, "on_failure": true}}
    ]

``workflows.json``::

    {"workflows": [
      {"id": "nightly", "name": "Nightly", "retry": {"max_attempts": 2},
       "tasks": [{"task_id": "backup"},
                 {"task_id": "report", "dependencies": ["backup"]}]}
    ]}
"""

from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pycadence.errors import ConfigError, TaskNotFound, WorkflowNotFound
from pycadence.models import RetryPolicy, TaskDefinition, TaskRef, WorkflowDefinition
from pycadence.models.definitions import DEFAULT_WORKFLOW_RETRY
from pycadence.storage.base import StateStore

TASKS_FILE = "tasks.json"
WORKFLOWS_FILE = "workflows.json"

STATE_BACKENDS = ("json", "sqlite", "memory", "redis")


# =============================================================================
# Repository - where definitions come from
# =============================================================================


class Repository(ABC):
    """Read-only source of task and workflow definitions."""

    @abstractmethod
    def get_task(self, task_id: str) -> TaskDefinition:
        """
        Raises:
            TaskNotFound: If no task has this id
        """

    @abstractmethod
    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        """
        Raises:
            WorkflowNotFound: If no workflow has this id
        """

    @abstractmethod
    def list_tasks(self) -> list[TaskDefinition]: ...

    @abstractmethod
    def list_workflows(self) -> list[WorkflowDefinition]: ...

    def has_task(self, task_id: str) -> bool:
        try:
            self.get_task(task_id)
        except TaskNotFound:
            return False
        return True


class InMemoryRepository(Repository):
    """Repository over already-parsed definitions."""

    def __init__(
        self,
        tasks: Iterable[TaskDefinition] = (),
        workflows: Iterable[WorkflowDefinition] = (),
    ):
        self._tasks: dict[str, TaskDefinition] = {}
        self._workflows: dict[str, WorkflowDefinition] = {}
        for task in tasks:
            self.add_task(task)
        for workflow in workflows:
            self.add_workflow(workflow)

    def add_task(self, task: TaskDefinition) -> None:
        if task.id in self._tasks:
            raise ConfigError(f"Duplicate task id: {task.id}")
        self._tasks[task.id] = task

    def add_workflow(self, workflow: WorkflowDefinition) -> None:
        if workflow.id in self._workflows:
            raise ConfigError(f"Duplicate workflow id: {workflow.id}")
        self._workflows[workflow.id] = workflow

    def get_task(self, task_id: str) -> TaskDefinition:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise TaskNotFound(task_id) from None

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        try:
            return self._workflows[workflow_id]
        except KeyError:
            raise WorkflowNotFound(workflow_id) from None

    def list_tasks(self) -> list[TaskDefinition]:
        return list(self._tasks.values())

    def list_workflows(self) -> list[WorkflowDefinition]:
        return list(self._workflows.values())


# =============================================================================
# Parsing
# =============================================================================


def _require(data: dict[str, Any], key: str, kind: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        ident = data.get("id", "<unknown>")
        raise ConfigError(f"{kind} {ident} missing required field: {key}")
    return value


def _parse_retry(data: Any, default: RetryPolicy, owner: str) -> RetryPolicy:
    if data is None:
        return default
    if not isinstance(data, dict):
        raise ConfigError(f"{owner}: 'retry' must be an object")
    try:
        return RetryPolicy.from_dict(data, default=default)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{owner}: invalid retry policy: {e}") from e


def parse_task(data: dict[str, Any]) -> TaskDefinition:
    """Parse one task object from ``tasks.json``."""
    if not isinstance(data, dict):
        raise ConfigError(f"Task definition must be an object, got {type(data).__name__}")

    task_id = str(_require(data, "id", "Task"))
    name = str(_require(data, "name", "Task"))
    command = str(_require(data, "command", "Task"))
    owner = f"Task {task_id}"

    timeout = data.get("timeout")
    try:
        timeout = float(timeout) if timeout else None
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{owner}: invalid timeout {data.get('timeout')!r}") from e
    if timeout is not None and timeout < 0:
        raise ConfigError(f"{owner}: timeout must be non-negative")

    notifications = data.get("notifications") or {}
    if not isinstance(notifications, dict):
        raise ConfigError(f"{owner}: 'notifications' must be an object")

    return TaskDefinition(
        id=task_id,
        name=name,
        command=command,
        working_dir=data.get("working_dir") or None,
        timeout=timeout,
        retry_policy=_parse_retry(data.get("retry"), RetryPolicy.STANDARD, owner),
        notify_on_success=bool(notifications.get("on_success", False)),
        notify_on_failure=bool(notifications.get("on_failure", True)),
        description=str(data.get("description") or ""),
    )


def parse_workflow(data: dict[str, Any]) -> WorkflowDefinition:
    """Parse one workflow object from ``workflows.json``."""
    if not isinstance(data, dict):
        raise ConfigError(f"Workflow definition must be an object, got {type(data).__name__}")

    workflow_id = str(_require(data, "id", "Workflow"))
    name = str(_require(data, "name", "Workflow"))
    raw_tasks = _require(data, "tasks", "Workflow")
    owner = f"Workflow {workflow_id}"

    if not isinstance(raw_tasks, list):
        raise ConfigError(f"{owner}: 'tasks' must be a list")

    refs: list[TaskRef] = []
    for entry in raw_tasks:
        # Shorthand: a bare string is a task without dependencies
        if isinstance(entry, str):
            refs.append(TaskRef(task_id=entry))
            continue
        if not isinstance(entry, dict) or not entry.get("task_id"):
            raise ConfigError(f"{owner}: each task needs a 'task_id'")
        deps = entry.get("dependencies") or []
        if not isinstance(deps, list):
            raise ConfigError(f"{owner}: dependencies of {entry['task_id']} must be a list")
        refs.append(
            TaskRef(task_id=str(entry["task_id"]), dependencies=frozenset(str(d) for d in deps))
        )

    return WorkflowDefinition(
        id=workflow_id,
        name=name,
        tasks=tuple(refs),
        retry_policy=_parse_retry(data.get("retry"), DEFAULT_WORKFLOW_RETRY, owner),
        description=str(data.get("description") or ""),
    )


def _load_json(path: Path) -> Any:
    try:
        with open(path, encoding="utf-8") as fh:
            return json.load(fh)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e


def load_tasks(path: Path) -> list[TaskDefinition]:
    """Load ``tasks.json`` (a list, or an object with a ``tasks`` list)."""
    data = _load_json(path)
    if isinstance(data, dict):
        data = data.get("tasks", [])
    if not isinstance(data, list):
        raise ConfigError(f"{path}: expected a list of tasks")
    return [parse_task(item) for item in data]


def load_workflows(path: Path) -> list[WorkflowDefinition]:
    """Load ``workflows.json`` (an object with a ``workflows`` list, or a list)."""
    data = _load_json(path)
    if isinstance(data, dict):
        data = data.get("workflows", [])
    if not isinstance(data, list):
        raise ConfigError(f"{path}: expected a list of workflows")
    return [parse_workflow(item) for item in data]


def load_repository(config_dir: str | Path) -> InMemoryRepository:
    """
    Load every definition from a config directory.

    Missing files mean "no definitions of that kind"; malformed files raise
    ConfigError.
    """
    config_dir = Path(config_dir).expanduser()
    tasks_path = config_dir / TASKS_FILE
    workflows_path = config_dir / WORKFLOWS_FILE

    tasks = load_tasks(tasks_path) if tasks_path.exists() else []
    workflows = load_workflows(workflows_path) if workflows_path.exists() else []
    return InMemoryRepository(tasks, workflows)


# =============================================================================
# Settings
# =============================================================================


def _env_float(env: dict[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class Settings:
    """
    Runtime settings, read once at startup.

    Attributes:
        config_dir: Directory holding tasks.json / workflows.json
        state_dir: Root of the JSON state store (and default SQLite location)
        state_backend: One of "json", "sqlite", "memory", "redis"
        sqlite_path: SQLite database file
        redis_url: Redis connection URL
        output_dir: Where command output is archived (None = not archived)
        workflow_retry_interval: Fixed pause between workflow attempts (seconds)
        lock_timeout: Seconds to wait for a DirectoryLock
        log_level: Logging level name
    """

    config_dir: Path = Path("config")
    state_dir: Path = Path("state")
    state_backend: str = "json"
    sqlite_path: Path | None = None
    redis_url: str = "redis://localhost:6379"
    output_dir: Path | None = None
    workflow_retry_interval: float = 1.0
    lock_timeout: float = 30.0
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.state_backend not in STATE_BACKENDS:
            raise ConfigError(
                f"Unknown state backend {self.state_backend!r}; "
                f"expected one of {', '.join(STATE_BACKENDS)}"
            )
        if self.workflow_retry_interval < 0:
            raise ConfigError("workflow_retry_interval must be non-negative")

    @property
    def resolved_sqlite_path(self) -> Path:
        return self.sqlite_path if self.sqlite_path is not None else self.state_dir / "state.db"

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        """Build settings from ``PYCADENCE_*`` environment variables."""
        env = dict(os.environ if environ is None else environ)

        def path(key: str) -> Path | None:
            value = env.get(key)
            return Path(value).expanduser() if value else None

        return cls(
            config_dir=path("PYCADENCE_CONFIG_DIR") or Path("config"),
            state_dir=path("PYCADENCE_STATE_DIR") or Path("state"),
            state_backend=env.get("PYCADENCE_STATE_BACKEND", "json").lower(),
            sqlite_path=path("PYCADENCE_SQLITE_PATH"),
            redis_url=env.get("PYCADENCE_REDIS_URL", "redis://localhost:6379"),
            output_dir=path("PYCADENCE_OUTPUT_DIR"),
            workflow_retry_interval=_env_float(env, "PYCADENCE_WORKFLOW_RETRY_INTERVAL", 1.0),
            lock_timeout=_env_float(env, "PYCADENCE_LOCK_TIMEOUT", 30.0),
            log_level=env.get("PYCADENCE_LOG_LEVEL", "INFO").upper(),
        )


async def open_state_store(settings: Settings) -> StateStore:
    """Create the configured state store and connect it."""
    store: StateStore
    if settings.state_backend == "memory":
        from pycadence.storage.memory import InMemoryStateStore

        store = InMemoryStateStore()
    elif settings.state_backend == "sqlite":
        from pycadence.storage.sqlite import SqliteStateStore

        store = SqliteStateStore(str(settings.resolved_sqlite_path))
    elif settings.state_backend == "redis":
        from pycadence.storage.redis import RedisStateStore

        store = RedisStateStore(settings.redis_url)
    else:
        from pycadence.storage.json_file import JsonFileStateStore

        store = JsonFileStateStore(settings.state_dir)

    await store.connect()
    return store


__all__ = [
    "Repository",
    "InMemoryRepository",
    "parse_task",
    "parse_workflow",
    "load_tasks",
    "load_workflows",
    "load_repository",
    "Settings",
    "open_state_store",
]
