"""SQLite-backed storage implementation for pycadence.

Design Pattern: Adapter Pattern
SqliteStateStore adapts a SQLite database to the StateStore interface.

Implementation details:
- aiosqlite for async operations
- WAL mode for concurrent reads
- Upserts (INSERT ... ON CONFLICT DO UPDATE) so each write is a single
  atomic statement
- ISO-8601 TEXT timestamps
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import aiosqlite

from pycadence.errors import StorageError
from pycadence.models import ExecutionState, ExecutionStatus, RetryState
from pycadence.models.timestamps import format_timestamp, parse_timestamp
from pycadence.storage.base import StateStore


class SqliteStateStore(StateStore):
    """SQLite-backed durable storage.

    After __init__, the instance is not yet usable. Call connect() first.
    This follows asyncio best practices (no async in __init__).

    Usage:
        store = SqliteStateStore("state.db")
        await store.connect()
        try:
            await store.put_retry_state(...)
        finally:
            await store.close()
    """

    def __init__(self, db_path: str):
        """Initialize storage (connection not opened yet).

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()  # Serialize access to shared connection

    @classmethod
    async def in_memory(cls) -> SqliteStateStore:
        """
        Create an in-memory SQLite storage for testing.

        Returns:
            Connected in-memory storage instance
        """
        instance = cls(":memory:")
        await instance.connect()
        return instance

    def __repr__(self) -> str:
        if self.db_path == ":memory:":
            return "SqliteStateStore(in-memory)"
        return f"SqliteStateStore({self.db_path})"

    async def connect(self) -> None:
        """Open database connection and initialize schema.

        Fixed initialization sequence:
        1. Open connection
        2. Enable WAL mode
        3. Create tables
        """
        if self._connection is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self.db_path,
            timeout=5.0,
            isolation_level=None,  # Autocommit mode for better concurrency
        )

        # In-memory databases report "memory" and don't support WAL
        cursor = await self._connection.execute("PRAGMA journal_mode=WAL")
        result = await cursor.fetchone()
        await cursor.close()
        if result:
            mode = result[0].upper()
            if mode not in ("WAL", "MEMORY"):
                raise StorageError(f"Failed to enable WAL mode, got: {result[0]}")

        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.execute("PRAGMA busy_timeout=5000")

        await self._create_schema()

    async def _create_schema(self) -> None:
        """Create database tables.

        Schema design:
        - retry_state: one row per entity (task or workflow)
        - execution_state: one row per task
        """
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS retry_state (
                entity_id TEXT PRIMARY KEY,
                attempts INTEGER NOT NULL DEFAULT 0,
                last_attempt TEXT,
                last_error TEXT,
                permanent_failure INTEGER NOT NULL DEFAULT 0
            )
        """)

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS execution_state (
                task_id TEXT PRIMARY KEY,
                status TEXT CHECK( status IN (
                    'pending','running','success','failed','cancelled'
                ) ) NOT NULL,
                exit_code INTEGER,
                start_time TEXT,
                end_time TEXT,
                output_ref TEXT,
                error_msg TEXT,
                execution_count INTEGER NOT NULL DEFAULT 0,
                last_updated TEXT
            )
        """)

    async def get_retry_state(self, entity_id: str) -> RetryState:
        self._check_connected()

        async with self._lock:
            try:
                cursor = await self._connection.execute(
                    """
                    SELECT attempts, last_attempt, last_error, permanent_failure
                    FROM retry_state
                    WHERE entity_id = ?
                """,
                    (entity_id,),
                )
                row = await cursor.fetchone()
                await cursor.close()
            except aiosqlite.Error as e:
                raise StorageError(
                    f"Failed to read retry state for {entity_id}: {e}"
                ) from e

        if row is None:
            return RetryState()

        return RetryState(
            attempts=row[0],
            last_attempt=parse_timestamp(row[1]),
            last_error=row[2],
            permanent_failure=bool(row[3]),
        )

    async def put_retry_state(self, entity_id: str, state: RetryState) -> None:
        self._check_connected()

        async with self._lock:
            try:
                await self._connection.execute(
                    """
                    INSERT INTO retry_state (
                        entity_id, attempts, last_attempt, last_error,
                        permanent_failure
                    ) VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(entity_id) DO UPDATE SET
                        attempts = excluded.attempts,
                        last_attempt = excluded.last_attempt,
                        last_error = excluded.last_error,
                        permanent_failure = excluded.permanent_failure
                """,
                    (
                        entity_id,
                        state.attempts,
                        format_timestamp(state.last_attempt),
                        state.last_error,
                        1 if state.permanent_failure else 0,
                    ),
                )
            except aiosqlite.Error as e:
                raise StorageError(
                    f"Failed to write retry state for {entity_id}: {e}"
                ) from e

    async def clear_retry_state(self, entity_id: str) -> bool:
        self._check_connected()

        async with self._lock:
            try:
                cursor = await self._connection.execute(
                    "DELETE FROM retry_state WHERE entity_id = ?", (entity_id,)
                )
            except aiosqlite.Error as e:
                raise StorageError(
                    f"Failed to clear retry state for {entity_id}: {e}"
                ) from e
            return cursor.rowcount > 0

    async def get_execution_state(self, task_id: str) -> ExecutionState | None:
        self._check_connected()

        async with self._lock:
            try:
                cursor = await self._connection.execute(
                    """
                    SELECT task_id, status, exit_code, start_time, end_time,
                           output_ref, error_msg, execution_count, last_updated
                    FROM execution_state
                    WHERE task_id = ?
                """,
                    (task_id,),
                )
                row = await cursor.fetchone()
                await cursor.close()
            except aiosqlite.Error as e:
                raise StorageError(
                    f"Failed to read execution state for {task_id}: {e}"
                ) from e

        if row is None:
            return None

        return self._row_to_execution_state(row)

    async def put_execution_state(self, state: ExecutionState) -> None:
        self._check_connected()

        async with self._lock:
            try:
                await self._connection.execute(
                    """
                    INSERT INTO execution_state (
                        task_id, status, exit_code, start_time, end_time,
                        output_ref, error_msg, execution_count, last_updated
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(task_id) DO UPDATE SET
                        status = excluded.status,
                        exit_code = excluded.exit_code,
                        start_time = excluded.start_time,
                        end_time = excluded.end_time,
                        output_ref = excluded.output_ref,
                        error_msg = excluded.error_msg,
                        execution_count = excluded.execution_count,
                        last_updated = excluded.last_updated
                """,
                    (
                        state.task_id,
                        state.status.value,
                        state.exit_code,
                        format_timestamp(state.start_time),
                        format_timestamp(state.end_time),
                        state.output_ref,
                        state.error_msg,
                        state.execution_count,
                        format_timestamp(state.last_updated),
                    ),
                )
            except aiosqlite.Error as e:
                raise StorageError(
                    f"Failed to write execution state for {state.task_id}: {e}"
                ) from e

    async def reset(self) -> None:
        """Clear all data (for testing).

        After reset, storage is empty but functional.
        """
        self._check_connected()

        async with self._lock:
            try:
                await self._connection.execute("DELETE FROM retry_state")
                await self._connection.execute("DELETE FROM execution_state")
            except aiosqlite.Error as e:
                raise StorageError(f"Failed to reset state: {e}") from e

    async def close(self) -> None:
        """Close storage connections.

        Explicit resource cleanup, not relying on GC.
        """
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    def _check_connected(self) -> None:
        """Guard clause: Ensure connection is open."""
        if self._connection is None:
            raise StorageError("Not connected. Call connect() first.")

    @staticmethod
    def _row_to_execution_state(row: tuple) -> ExecutionState:
        """Convert database row to ExecutionState.

        Row format (matches SELECT query):
        0:task_id, 1:status, 2:exit_code, 3:start_time, 4:end_time,
        5:output_ref, 6:error_msg, 7:execution_count, 8:last_updated
        """
        return ExecutionState(
            task_id=row[0],
            status=ExecutionStatus(row[1]),
            exit_code=row[2],
            start_time=parse_timestamp(row[3]),
            end_time=parse_timestamp(row[4]),
            output_ref=row[5],
            error_msg=row[6],
            execution_count=row[7],
            last_updated=parse_timestamp(row[8]),
        )
