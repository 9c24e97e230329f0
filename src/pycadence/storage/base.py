"""
StateStore - Abstract interface for state persistence backends.

Design Pattern: Adapter Pattern
StateStore defines the target interface that all storage adapters implement.
Different storage backends (JSON files, SQLite, Redis, Memory) adapt to this
common interface.

Design Principle: Dependency Inversion (SOLID)
High-level modules (RetryController, TaskRunner, LayeredExecutor) depend on
this abstraction, not on concrete storage implementations. Tests use
InMemoryStateStore; production uses JsonFileStateStore or SqliteStateStore.

Records are read-modify-write: every mutation is written back immediately,
so behavior survives process restarts.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pycadence.errors import StorageError
from pycadence.models import ExecutionState, RetryState

__all__ = ["StateStore", "StorageError"]


class StateStore(ABC):
    """
    Abstract storage interface for retry and execution state.

    Keys are entity ids (task or workflow ids for retry state, task ids for
    execution state). Stores do not serialize concurrent writers for the
    same key; callers needing at-most-one run per entity use DirectoryLock.
    """

    # ========================================================================
    # Retry state - attempt counters per entity
    # ========================================================================

    @abstractmethod
    async def get_retry_state(self, entity_id: str) -> RetryState:
        """
        Retrieve the retry state of an entity.

        Make the zero value useful: an entity that has never run gets a
        fresh ``RetryState()`` (attempts=0), not None.

        Raises:
            StorageError: If the backend cannot be read
        """

    @abstractmethod
    async def put_retry_state(self, entity_id: str, state: RetryState) -> None:
        """
        Persist the retry state of an entity (replaces the previous record).

        Raises:
            StorageError: If the write fails
        """

    @abstractmethod
    async def clear_retry_state(self, entity_id: str) -> bool:
        """
        Remove an entity's retry state (explicit reset).

        Returns:
            True if a record existed
        """

    # ========================================================================
    # Execution state - last known status per task
    # ========================================================================

    @abstractmethod
    async def get_execution_state(self, task_id: str) -> ExecutionState | None:
        """
        Retrieve the last execution state of a task.

        Returns:
            ExecutionState if the task has ever been recorded, None otherwise
        """

    @abstractmethod
    async def put_execution_state(self, state: ExecutionState) -> None:
        """
        Persist a task's execution state, keyed by ``state.task_id``.

        Raises:
            StorageError: If the write fails
        """

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def connect(self) -> None:
        """Open backend resources. No-op for stores usable after __init__."""

    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def reset(self) -> None:
        """Delete every record. Intended for tests."""

    async def __aenter__(self) -> StateStore:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
