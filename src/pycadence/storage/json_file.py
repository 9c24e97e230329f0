"""JSON-file storage implementation for pycadence.

Design Pattern: Adapter Pattern
JsonFileStateStore adapts a directory of small JSON documents to the
StateStore interface, one file per entity:

    <root>/retry_state/<entity>-<hash>.json
    <root>/execution_state/<task>-<hash>.json

Every write goes through ``atomic_write_text`` (temp file + rename, with the
previous file restored on failure). Blocking file I/O runs in a worker
thread via ``asyncio.to_thread`` so the event loop keeps running the other
tasks of a layer.
"""

from __future__ import annotations

import asyncio
import json
import shutil
from pathlib import Path
from typing import Any

from pycadence.errors import StorageError
from pycadence.models import ExecutionState, RetryState
from pycadence.storage.base import StateStore
from pycadence.storage.files import atomic_write_text, entity_filename


class JsonFileStateStore(StateStore):
    """File-per-entity durable storage.

    Instance is immediately usable after __init__; directories are created
    on first write.

    Usage:
        store = JsonFileStateStore("~/.pycadence/state")
        stats = await store.get_retry_state("nightly-backup")
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).expanduser()
        self.retry_dir = self.root / "retry_state"
        self.execution_dir = self.root / "execution_state"

    def __repr__(self) -> str:
        return f"JsonFileStateStore({self.root})"

    def _retry_path(self, entity_id: str) -> Path:
        return self.retry_dir / entity_filename(entity_id)

    def _execution_path(self, task_id: str) -> Path:
        return self.execution_dir / entity_filename(task_id)

    @staticmethod
    def _read(path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    @staticmethod
    def _write(path: Path, data: dict[str, Any]) -> None:
        # Serialize before touching the file system
        atomic_write_text(path, json.dumps(data, indent=2, sort_keys=True))

    async def get_retry_state(self, entity_id: str) -> RetryState:
        data = await asyncio.to_thread(self._read, self._retry_path(entity_id))
        return RetryState.from_dict(data) if data is not None else RetryState()

    async def put_retry_state(self, entity_id: str, state: RetryState) -> None:
        data = {"entity_id": entity_id, **state.to_dict()}
        await asyncio.to_thread(self._write, self._retry_path(entity_id), data)

    async def clear_retry_state(self, entity_id: str) -> bool:
        path = self._retry_path(entity_id)

        def _remove() -> bool:
            if not path.exists():
                return False
            path.unlink()
            return True

        return await asyncio.to_thread(_remove)

    async def get_execution_state(self, task_id: str) -> ExecutionState | None:
        data = await asyncio.to_thread(self._read, self._execution_path(task_id))
        return ExecutionState.from_dict(data) if data is not None else None

    async def put_execution_state(self, state: ExecutionState) -> None:
        await asyncio.to_thread(self._write, self._execution_path(state.task_id), state.to_dict())

    async def reset(self) -> None:
        def _wipe() -> None:
            for directory in (self.retry_dir, self.execution_dir):
                shutil.rmtree(directory, ignore_errors=True)

        await asyncio.to_thread(_wipe)
