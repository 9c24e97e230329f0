"""
Pytest configuration and fixtures for pycadence tests.

Provides reusable fixtures for storage backends, a scripted command runner,
a recording notification sink and a recording sleep.
"""

import asyncio
import fnmatch
import random
from collections.abc import AsyncGenerator, AsyncIterator

import pytest

from pycadence.config import InMemoryRepository
from pycadence.models import (
    CommandResult,
    RetryPolicy,
    TaskDefinition,
    TaskRef,
    WorkflowDefinition,
)
from pycadence.notification import Notification, NotificationSink
from pycadence.runner import CommandRunner
from redis.exceptions import ConnectionError as RedisConnectionError

from pycadence.storage import InMemoryStateStore, JsonFileStateStore
from pycadence.storage.redis import RedisStateStore
from pycadence.storage.sqlite import SqliteStateStore

NO_RETRY = RetryPolicy(max_attempts=1, jitter=False)


class FakeCommandRunner(CommandRunner):
    """
    Command runner driven by per-command scripts.

    ``script("run b", 1, 1, 0)`` makes the first two invocations of
    ``run b`` exit with 1 and every later one with 0. Unscripted commands
    succeed. ``events`` records ("start"/"end", command) in the order they
    happened.
    """

    def __init__(self):
        self.scripts: dict[str, list[CommandResult]] = {}
        self.delays: dict[str, float] = {}
        self.calls: list[str] = []
        self.events: list[tuple[str, str]] = []

    def script(self, command: str, *outcomes: int | CommandResult, delay: float = 0.0) -> None:
        self.scripts[command] = [
            outcome
            if isinstance(outcome, CommandResult)
            else CommandResult(exit_code=outcome, output=f"{command} exited {outcome}")
            for outcome in outcomes
        ]
        self.delays[command] = delay

    async def run(self, command, working_dir=None, timeout=None) -> CommandResult:
        self.calls.append(command)
        self.events.append(("start", command))
        delay = self.delays.get(command, 0.0)
        if delay:
            await asyncio.sleep(delay)
        self.events.append(("end", command))

        queue = self.scripts.get(command)
        if not queue:
            return CommandResult(exit_code=0, output=f"{command} ok")
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def count(self, command: str) -> int:
        return self.calls.count(command)


class RecordingNotificationSink(NotificationSink):
    """Keeps every notification for assertions."""

    def __init__(self):
        self.notifications: list[Notification] = []

    async def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)

    def for_entity(self, entity_id: str) -> list[Notification]:
        return [n for n in self.notifications if n.entity_id == entity_id]


class RecordedSleep:
    """Stand-in for asyncio.sleep that records delays and returns at once."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def make_task(task_id: str, policy: RetryPolicy = NO_RETRY, **kwargs) -> TaskDefinition:
    """Task whose command is ``run <task_id>``."""
    return TaskDefinition(
        id=task_id,
        name=kwargs.pop("name", f"Task {task_id}"),
        command=kwargs.pop("command", f"run {task_id}"),
        retry_policy=policy,
        **kwargs,
    )


def make_workflow(
    workflow_id: str,
    tasks: dict[str, list[str]],
    max_attempts: int = 1,
) -> WorkflowDefinition:
    """Workflow from ``{task_id: [dependencies]}`` in declaration order."""
    return WorkflowDefinition(
        id=workflow_id,
        name=f"Workflow {workflow_id}",
        tasks=tuple(
            TaskRef(task_id=task_id, dependencies=frozenset(deps)) for task_id, deps in tasks.items()
        ),
        retry_policy=RetryPolicy.with_max_attempts(max_attempts),
    )


# =============================================================================
# Storage fixtures
# =============================================================================


class FakeAsyncRedis:
    """In-memory stand-in for the redis.asyncio client calls the store makes."""

    def __init__(self, fail: bool = False):
        self.data: dict[str, str] = {}
        self.fail = fail
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def get(self, key: str) -> str | None:
        self._check()
        return self.data.get(key)

    async def set(self, key: str, value: str) -> bool:
        self._check()
        self.data[key] = value
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        return sum(1 for key in keys if self.data.pop(key, None) is not None)

    async def scan_iter(self, match: str = "*") -> AsyncIterator[str]:
        self._check()
        for key in list(self.data):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self) -> None:
        self.closed = True


def redis_store_with(client: FakeAsyncRedis) -> RedisStateStore:
    """RedisStateStore wired to an in-memory client (connect() is then a no-op)."""
    store = RedisStateStore("redis://fake:6379")
    store._redis = client
    return store


@pytest.fixture
async def memory_store() -> AsyncGenerator[InMemoryStateStore, None]:
    """Async in-memory store fixture with automatic cleanup."""
    store = InMemoryStateStore()
    yield store
    await store.reset()


@pytest.fixture
async def json_store(tmp_path) -> AsyncGenerator[JsonFileStateStore, None]:
    """JSON file store rooted in a temporary directory."""
    store = JsonFileStateStore(tmp_path / "state")
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
async def sqlite_store() -> AsyncGenerator[SqliteStateStore, None]:
    """Async SQLite in-memory store fixture with automatic cleanup."""
    store = await SqliteStateStore.in_memory()
    yield store
    await store.close()


@pytest.fixture(params=["memory", "json", "sqlite", "redis"])
async def any_store(request, tmp_path):
    """Every backend, for contract tests (Redis through an in-memory client)."""
    if request.param == "memory":
        store = InMemoryStateStore()
    elif request.param == "json":
        store = JsonFileStateStore(tmp_path / "state")
    elif request.param == "redis":
        store = redis_store_with(FakeAsyncRedis())
    else:
        store = SqliteStateStore(str(tmp_path / "state.db"))
    await store.connect()
    yield store
    await store.close()


# =============================================================================
# Collaborator fixtures
# =============================================================================


@pytest.fixture
def fake_runner() -> FakeCommandRunner:
    return FakeCommandRunner()


@pytest.fixture
def sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def recorded_sleep() -> RecordedSleep:
    return RecordedSleep()


@pytest.fixture
def rng() -> random.Random:
    """Seeded random source so jittered delays are reproducible."""
    return random.Random(1234)


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()
