"""
Tests for layer-by-layer execution.

ARCHITECTURE VERIFICATION:
- Tasks of one layer run concurrently
- A layer is a barrier: the next layer starts after every task is terminal
- A failed layer stops the run; later tasks stay pending
"""

import asyncio

import pytest

from pycadence.errors import StorageError
from pycadence.executor.layers import LayeredExecutor
from pycadence.models import ExecutionState, ExecutionStatus, WorkflowStatus


def scripted(store, outcomes=None, delays=None, log=None):
    """run_task stand-in: records start/end events, persists a terminal state."""
    outcomes = outcomes or {}
    delays = delays or {}

    async def run_task(task_id: str) -> ExecutionState:
        if log is not None:
            log.append(("start", task_id))
        state = (await store.get_execution_state(task_id)).mark_running()
        await store.put_execution_state(state)
        await asyncio.sleep(delays.get(task_id, 0))
        succeeded = outcomes.get(task_id, True)
        state = state.mark_finished(succeeded, 0 if succeeded else 1)
        await store.put_execution_state(state)
        if log is not None:
            log.append(("end", task_id))
        return state

    return run_task


@pytest.mark.asyncio
async def test_all_layers_succeed(memory_store):
    executor = LayeredExecutor(memory_store)

    result = await executor.execute([("A",), ("B", "C"), ("D",)], scripted(memory_store))

    assert result.status == WorkflowStatus.SUCCESS
    assert result.layers_completed == 3
    assert result.failed_tasks == []
    assert {t: s.status for t, s in result.task_results.items()} == {
        "A": ExecutionStatus.SUCCESS,
        "B": ExecutionStatus.SUCCESS,
        "C": ExecutionStatus.SUCCESS,
        "D": ExecutionStatus.SUCCESS,
    }


@pytest.mark.asyncio
async def test_failure_stops_later_layers(memory_store):
    """A -> B -> C with B failing: A success, B failed, C never starts."""
    log = []
    executor = LayeredExecutor(memory_store)

    result = await executor.execute(
        [("A",), ("B",), ("C",)], scripted(memory_store, outcomes={"B": False}, log=log)
    )

    assert result.status == WorkflowStatus.FAILED
    assert result.failed_tasks == ["B"]
    assert result.layers_completed == 1
    assert {t: s.status for t, s in result.task_results.items()} == {
        "A": ExecutionStatus.SUCCESS,
        "B": ExecutionStatus.FAILED,
        "C": ExecutionStatus.PENDING,
    }
    assert ("start", "C") not in log
    assert (await memory_store.get_execution_state("C")).status == ExecutionStatus.PENDING


@pytest.mark.concurrency
@pytest.mark.asyncio
async def test_layer_is_a_barrier(memory_store):
    """X fast and Y slow run together; Z starts only after both finished."""
    log = []
    executor = LayeredExecutor(memory_store)

    result = await executor.execute(
        [("X", "Y"), ("Z",)],
        scripted(memory_store, delays={"X": 0.01, "Y": 0.05}, log=log),
    )

    assert result.succeeded
    # Both started before either finished
    assert log.index(("start", "Y")) < log.index(("end", "X"))
    assert log.index(("end", "X")) < log.index(("end", "Y"))
    assert log.index(("start", "Z")) > log.index(("end", "Y"))


@pytest.mark.concurrency
@pytest.mark.asyncio
async def test_failed_sibling_does_not_cancel_running_siblings(memory_store):
    """Siblings already running finish and their results are recorded."""
    executor = LayeredExecutor(memory_store)

    result = await executor.execute(
        [("fast_fail", "slow_ok"), ("after",)],
        scripted(memory_store, outcomes={"fast_fail": False}, delays={"slow_ok": 0.02}),
    )

    assert result.status == WorkflowStatus.FAILED
    assert result.task_results["slow_ok"].status == ExecutionStatus.SUCCESS
    assert result.task_results["fast_fail"].status == ExecutionStatus.FAILED
    assert result.task_results["after"].status == ExecutionStatus.PENDING


@pytest.mark.asyncio
async def test_tasks_reset_to_pending_keep_execution_count(memory_store):
    previous = ExecutionState.initial("A").mark_running().mark_finished(False, 1, error_msg="x")
    await memory_store.put_execution_state(previous)
    executor = LayeredExecutor(memory_store)
    seen = {}

    async def run_task(task_id):
        seen[task_id] = await memory_store.get_execution_state(task_id)
        state = seen[task_id].mark_running().mark_finished(True, 0)
        await memory_store.put_execution_state(state)
        return state

    await executor.execute([("A",)], run_task)

    assert seen["A"].status == ExecutionStatus.PENDING
    assert seen["A"].execution_count == 1
    assert seen["A"].error_msg is None


@pytest.mark.asyncio
async def test_unexpected_exception_is_recorded_as_failed(memory_store):
    executor = LayeredExecutor(memory_store)
    ok = scripted(memory_store)

    async def run_task(task_id):
        if task_id == "boom":
            raise RuntimeError("runner crashed")
        return await ok(task_id)

    result = await executor.execute([("ok", "boom"), ("next",)], run_task)

    assert result.status == WorkflowStatus.FAILED
    assert result.failed_tasks == ["boom"]
    assert result.task_results["boom"].status == ExecutionStatus.FAILED
    assert result.task_results["boom"].error_msg == "runner crashed"
    assert result.task_results["ok"].status == ExecutionStatus.SUCCESS


@pytest.mark.asyncio
async def test_storage_error_propagates(memory_store):
    executor = LayeredExecutor(memory_store)

    async def run_task(task_id):
        raise StorageError("disk full")

    with pytest.raises(StorageError):
        await executor.execute([("A",)], run_task)


@pytest.mark.asyncio
async def test_no_layers(memory_store):
    result = await LayeredExecutor(memory_store).execute([], scripted(memory_store))

    assert result.succeeded
    assert result.task_results == {}
