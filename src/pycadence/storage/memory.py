"""In-memory storage implementation for pycadence.

Design Pattern: Adapter Pattern
InMemoryStateStore adapts in-memory dictionaries to the StateStore interface.

Instance is immediately usable after __init__. State survives for the
lifetime of the instance, so sharing one instance between several
RetryController objects simulates separate invocations of the same entity.
"""

from __future__ import annotations

import asyncio

from pycadence.models import ExecutionState, RetryState
from pycadence.storage.base import StateStore


class InMemoryStateStore(StateStore):
    """In-memory storage for testing.

    Can be substituted for JsonFileStateStore without changing client code.

    Usage:
        store = InMemoryStateStore()
        await store.put_retry_state("backup", RetryState(attempts=1))
    """

    def __init__(self):
        # Storage: {entity_id: RetryState}
        self._retry: dict[str, RetryState] = {}

        # Storage: {task_id: ExecutionState}
        self._execution: dict[str, ExecutionState] = {}

        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return "InMemoryStateStore"

    async def get_retry_state(self, entity_id: str) -> RetryState:
        async with self._lock:
            state = self._retry.get(entity_id)
            # Hand out copies so callers cannot mutate stored records in place
            return RetryState(**vars(state)) if state is not None else RetryState()

    async def put_retry_state(self, entity_id: str, state: RetryState) -> None:
        async with self._lock:
            self._retry[entity_id] = RetryState(**vars(state))

    async def clear_retry_state(self, entity_id: str) -> bool:
        async with self._lock:
            return self._retry.pop(entity_id, None) is not None

    async def get_execution_state(self, task_id: str) -> ExecutionState | None:
        async with self._lock:
            return self._execution.get(task_id)

    async def put_execution_state(self, state: ExecutionState) -> None:
        async with self._lock:
            self._execution[state.task_id] = state

    async def reset(self) -> None:
        async with self._lock:
            self._retry.clear()
            self._execution.clear()
