"""Redis-based state store implementation.

Lets several machines share retry counters and execution state without a
shared filesystem. Scheduling itself stays single-host; only the records
live in Redis.

Data Structures:
- pycadence:retry:{entity_id} (STRING): JSON-encoded RetryState
- pycadence:exec:{task_id} (STRING): JSON-encoded ExecutionState

Each record is written with a single SET, which Redis applies atomically.

Design: Adapter Pattern
Implements StateStore for Redis, adapting the key-value store to the
StateStore interface.
"""

from __future__ import annotations

import json

import redis.asyncio as redis
from redis.exceptions import RedisError

from pycadence.errors import StorageError
from pycadence.models import ExecutionState, RetryState
from pycadence.storage.base import StateStore


class RedisStateStore(StateStore):
    """Redis state store using connection pooling.

    Usage:
        store = RedisStateStore("redis://localhost:6379")
        await store.connect()
        stats = await store.get_retry_state("nightly-backup")
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        max_connections: int = 16,
        key_prefix: str = "pycadence",
    ):
        """Initialize Redis state store.

        Default redis_url works for local development.

        Args:
            redis_url: Redis connection URL
            max_connections: Maximum pool size
            key_prefix: Namespace for every key this store writes
        """
        self._redis_url = redis_url
        self._max_connections = max_connections
        self._prefix = key_prefix
        self._redis: redis.Redis | None = None

    def __repr__(self) -> str:
        return f"RedisStateStore({self._redis_url})"

    async def connect(self) -> None:
        """Establish Redis connection pool."""
        if self._redis is not None:
            return
        self._redis = redis.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=self._max_connections,
        )

    async def close(self) -> None:
        """Close Redis connection pool."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    def _check_connected(self) -> None:
        """Ensure connection established.

        Raises immediately if not connected.
        """
        if self._redis is None:
            raise StorageError("Not connected. Call connect() first.")

    def _retry_key(self, entity_id: str) -> str:
        return f"{self._prefix}:retry:{entity_id}"

    def _execution_key(self, task_id: str) -> str:
        return f"{self._prefix}:exec:{task_id}"

    async def _get_json(self, key: str) -> dict | None:
        self._check_connected()
        try:
            raw = await self._redis.get(key)
        except RedisError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e
        return json.loads(raw) if raw is not None else None

    async def _set_json(self, key: str, data: dict) -> None:
        self._check_connected()
        try:
            await self._redis.set(key, json.dumps(data))
        except RedisError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e

    async def get_retry_state(self, entity_id: str) -> RetryState:
        data = await self._get_json(self._retry_key(entity_id))
        return RetryState.from_dict(data) if data is not None else RetryState()

    async def put_retry_state(self, entity_id: str, state: RetryState) -> None:
        await self._set_json(self._retry_key(entity_id), state.to_dict())

    async def clear_retry_state(self, entity_id: str) -> bool:
        self._check_connected()
        try:
            removed = await self._redis.delete(self._retry_key(entity_id))
        except RedisError as e:
            raise StorageError(f"Failed to clear retry state for {entity_id}: {e}") from e
        return removed > 0

    async def get_execution_state(self, task_id: str) -> ExecutionState | None:
        data = await self._get_json(self._execution_key(task_id))
        return ExecutionState.from_dict(data) if data is not None else None

    async def put_execution_state(self, state: ExecutionState) -> None:
        await self._set_json(self._execution_key(state.task_id), state.to_dict())

    async def reset(self) -> None:
        """Delete every key under this store's prefix."""
        self._check_connected()
        try:
            keys = [key async for key in self._redis.scan_iter(match=f"{self._prefix}:*")]
            if keys:
                await self._redis.delete(*keys)
        except RedisError as e:
            raise StorageError(f"Failed to reset state: {e}") from e
