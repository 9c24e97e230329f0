"""
Directory-based mutex for serializing runs of the same entity.

``mkdir`` is atomic on every local filesystem, so whoever creates
``<path>.lock`` owns the lock. The owner writes its pid inside. A waiter
that finds a lock whose pid no longer exists, or one left without a pid for
longer than ``pidless_grace``, renames it aside, deletes it and tries again.

The engine never takes this lock on its own. Callers that need
at-most-one concurrent run per entity wrap the run with it:

    async with DirectoryLock(state_dir / "nightly", timeout=30):
        await orchestrator.run_workflow("nightly")
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import time
from pathlib import Path

from pycadence.errors import LockTimeout

logger = logging.getLogger(__name__)

PID_FILE = "pid"


def pid_alive(pid: int) -> bool:
    """True if a process with this pid exists (signal 0 checks without killing)."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user
        return True
    return True


def _read_pid(lock_dir: Path) -> int | None:
    try:
        return int((lock_dir / PID_FILE).read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None


class DirectoryLock:
    """
    Inter-process lock backed by a directory.

    Attributes:
        lock_dir: The directory whose existence means "locked"
        timeout: Seconds to keep trying before raising LockTimeout
        poll_interval: Seconds between attempts
        pidless_grace: Seconds a lock without a pid file is trusted before
            it is treated as abandoned
    """

    def __init__(
        self,
        path: str | Path,
        timeout: float = 30.0,
        poll_interval: float = 0.5,
        pidless_grace: float = 30.0,
    ):
        path = Path(path)
        self.lock_dir = path.with_name(path.name + ".lock")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.pidless_grace = pidless_grace
        self._held = False

    def __repr__(self) -> str:
        return f"DirectoryLock({self.lock_dir})"

    @property
    def held(self) -> bool:
        return self._held

    def _try_acquire(self) -> bool:
        self.lock_dir.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.lock_dir.mkdir()
        except FileExistsError:
            return False
        (self.lock_dir / PID_FILE).write_text(str(os.getpid()), encoding="utf-8")
        return True

    def _owner_pid(self) -> int | None:
        return _read_pid(self.lock_dir)

    def _lock_age(self) -> float | None:
        try:
            return time.time() - self.lock_dir.stat().st_mtime
        except FileNotFoundError:
            return None

    def _break_if_stale(self) -> bool:
        pid = self._owner_pid()
        if pid is None:
            # No pid yet means the owner is between mkdir and writing it,
            # unless it died there
            age = self._lock_age()
            if age is None:
                return True
            if age < self.pidless_grace:
                return False
            reason = f"without a pid for {age:.1f}s"
        elif pid_alive(pid):
            return False
        else:
            reason = f"held by dead pid {pid}"

        # Rename first so a waiter that judged the same lock stale cannot
        # delete a lock acquired after it was broken
        stale_dir = self.lock_dir.with_name(
            f"{self.lock_dir.name}.stale.{os.getpid()}.{time.monotonic_ns()}"
        )
        try:
            os.rename(self.lock_dir, stale_dir)
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning(f"Could not break stale lock {self.lock_dir}: {e}")
            return False

        moved_pid = _read_pid(stale_dir)
        if moved_pid != pid:
            # A new owner took the lock between the check and the rename
            try:
                os.rename(stale_dir, self.lock_dir)
            except OSError:
                logger.warning(f"Lock {self.lock_dir} changed hands while being broken")
            return True

        logger.warning(f"Removing stale lock {self.lock_dir} {reason}")
        shutil.rmtree(stale_dir, ignore_errors=True)
        return True

    async def acquire(self) -> None:
        """
        Wait until the lock is ours.

        Raises:
            LockTimeout: If the lock is still held by a live process after
                ``timeout`` seconds
        """
        deadline = time.monotonic() + self.timeout

        while True:
            if self._try_acquire():
                self._held = True
                logger.debug(f"Acquired {self.lock_dir}")
                return
            if self._break_if_stale():
                continue
            if time.monotonic() >= deadline:
                raise LockTimeout(str(self.lock_dir), self.timeout)
            await asyncio.sleep(self.poll_interval)

    def release(self) -> None:
        if not self._held:
            return
        shutil.rmtree(self.lock_dir, ignore_errors=True)
        self._held = False
        logger.debug(f"Released {self.lock_dir}")

    async def __aenter__(self) -> DirectoryLock:
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.release()


__all__ = ["DirectoryLock", "pid_alive"]
