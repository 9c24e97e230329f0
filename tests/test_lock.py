"""Tests for the directory lock."""

import asyncio
import os
import time

import pytest

from pycadence.errors import LockTimeout
from pycadence.lock import PID_FILE, DirectoryLock, pid_alive


def test_pid_alive():
    assert pid_alive(os.getpid()) is True
    assert pid_alive(0) is False
    assert pid_alive(-5) is False


@pytest.mark.asyncio
async def test_acquire_and_release(tmp_path):
    lock = DirectoryLock(tmp_path / "nightly")

    async with lock:
        assert lock.held
        assert (tmp_path / "nightly.lock").is_dir()
        assert (tmp_path / "nightly.lock" / PID_FILE).read_text() == str(os.getpid())

    assert not lock.held
    assert not (tmp_path / "nightly.lock").exists()


@pytest.mark.asyncio
async def test_second_holder_times_out(tmp_path):
    first = DirectoryLock(tmp_path / "nightly")
    second = DirectoryLock(tmp_path / "nightly", timeout=0.05, poll_interval=0.01)

    async with first:
        with pytest.raises(LockTimeout) as exc_info:
            await second.acquire()

    assert exc_info.value.timeout == 0.05
    assert not second.held


@pytest.mark.concurrency
@pytest.mark.asyncio
async def test_waiter_gets_lock_after_release(tmp_path):
    order = []

    async def worker(name: str, hold: float) -> None:
        async with DirectoryLock(tmp_path / "nightly", timeout=2, poll_interval=0.01):
            order.append(f"{name}-in")
            await asyncio.sleep(hold)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a", 0.05), worker("b", 0))

    # Critical sections never interleave
    assert order in (
        ["a-in", "a-out", "b-in", "b-out"],
        ["b-in", "b-out", "a-in", "a-out"],
    )


@pytest.mark.asyncio
async def test_stale_lock_is_broken(tmp_path, monkeypatch):
    lock_dir = tmp_path / "nightly.lock"
    lock_dir.mkdir()
    (lock_dir / PID_FILE).write_text("999999")
    monkeypatch.setattr("pycadence.lock.pid_alive", lambda pid: False)

    lock = DirectoryLock(tmp_path / "nightly", timeout=0.5, poll_interval=0.01)
    await lock.acquire()

    assert lock.held
    assert (lock_dir / PID_FILE).read_text() == str(os.getpid())
    lock.release()


@pytest.mark.asyncio
async def test_lock_without_pid_file_is_not_broken(tmp_path):
    """An owner between mkdir and writing its pid is treated as alive."""
    (tmp_path / "nightly.lock").mkdir()
    lock = DirectoryLock(tmp_path / "nightly", timeout=0.05, poll_interval=0.01)

    with pytest.raises(LockTimeout):
        await lock.acquire()

    assert (tmp_path / "nightly.lock").is_dir()


@pytest.mark.asyncio
async def test_abandoned_lock_without_pid_file_is_broken(tmp_path):
    """An owner that died between mkdir and writing its pid does not block forever."""
    lock_dir = tmp_path / "nightly.lock"
    lock_dir.mkdir()
    old = time.time() - 120
    os.utime(lock_dir, (old, old))

    lock = DirectoryLock(tmp_path / "nightly", timeout=0.5, poll_interval=0.01, pidless_grace=60)
    await lock.acquire()

    assert lock.held
    assert (lock_dir / PID_FILE).read_text() == str(os.getpid())
    assert [p.name for p in tmp_path.iterdir()] == ["nightly.lock"]
    lock.release()


@pytest.mark.asyncio
async def test_lock_taken_over_during_break_is_left_in_place(tmp_path, monkeypatch):
    """A waiter that judged a lock stale never deletes the lock of a newer owner."""
    lock_dir = tmp_path / "nightly.lock"
    lock_dir.mkdir()
    (lock_dir / PID_FILE).write_text("999999")
    waiter = DirectoryLock(tmp_path / "nightly", timeout=0.05, poll_interval=0.01)

    def dead_then_replaced(pid: int) -> bool:
        if pid == 999999:
            # Another waiter breaks the lock and takes it right after our check
            (lock_dir / PID_FILE).write_text(str(os.getpid()))
            return False
        return True

    monkeypatch.setattr("pycadence.lock.pid_alive", dead_then_replaced)

    with pytest.raises(LockTimeout):
        await waiter.acquire()

    assert (lock_dir / PID_FILE).read_text() == str(os.getpid())
    assert [p.name for p in tmp_path.iterdir()] == ["nightly.lock"]
