"""Tests for single task execution: state transitions, retries, output, notifications."""

import pytest
from conftest import make_task

from pycadence.config import InMemoryRepository
from pycadence.errors import TaskNotFound
from pycadence.executor.retry import RetryController
from pycadence.executor.task import TaskRunner, failure_message
from pycadence.models import (
    CANCELLED_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
    CommandResult,
    ExecutionState,
    ExecutionStatus,
    RetryPolicy,
    RetryState,
)


def build_runner(repository, store, fake_runner, sink, recorded_sleep, output_dir=None):
    return TaskRunner(
        repository,
        store,
        fake_runner,
        RetryController(store, sleep=recorded_sleep),
        sink,
        output_dir=output_dir,
    )


@pytest.mark.asyncio
async def test_successful_task(memory_store, fake_runner, sink, recorded_sleep):
    repository = InMemoryRepository([make_task("backup")])
    runner = build_runner(repository, memory_store, fake_runner, sink, recorded_sleep)

    result = await runner.run("backup")

    assert result.succeeded
    assert result.exit_code == 0
    assert result.output == "run backup ok"
    assert result.error is None
    assert result.retry == RetryState(attempts=0, last_attempt=result.retry.last_attempt)

    state = await memory_store.get_execution_state("backup")
    assert state.status == ExecutionStatus.SUCCESS
    assert state.execution_count == 1
    assert state.start_time is not None and state.end_time is not None


@pytest.mark.asyncio
async def test_failing_task_retries_then_records_failure(
    memory_store, fake_runner, sink, recorded_sleep
):
    policy = RetryPolicy(max_attempts=3, initial_delay=1, jitter=False)
    repository = InMemoryRepository([make_task("backup", policy)])
    fake_runner.script("run backup", CommandResult(exit_code=2, output="no space left\nmore"))
    runner = build_runner(repository, memory_store, fake_runner, sink, recorded_sleep)

    result = await runner.run("backup")

    assert result.status == ExecutionStatus.FAILED
    assert result.exit_code == 2
    assert fake_runner.count("run backup") == 3
    assert recorded_sleep.delays == [1.0, 2.0]
    assert result.retry.permanent_failure is True
    assert "Command failed with exit code 2: no space left" in result.error

    state = await memory_store.get_execution_state("backup")
    assert state.status == ExecutionStatus.FAILED
    assert state.exit_code == 2
    # One RUNNING transition per run, not per attempt
    assert state.execution_count == 1


@pytest.mark.asyncio
async def test_flaky_task_recovers(memory_store, fake_runner, sink, recorded_sleep):
    policy = RetryPolicy(max_attempts=3, initial_delay=1, jitter=False)
    repository = InMemoryRepository([make_task("backup", policy)])
    fake_runner.script("run backup", 1, 1, 0)
    runner = build_runner(repository, memory_store, fake_runner, sink, recorded_sleep)

    result = await runner.run("backup")

    assert result.succeeded
    assert recorded_sleep.delays == [1.0, 2.0]
    assert result.retry.attempts == 0


@pytest.mark.asyncio
async def test_timeout_is_a_failed_attempt(memory_store, fake_runner, sink, recorded_sleep):
    repository = InMemoryRepository([make_task("slow", timeout=5)])
    fake_runner.script(
        "run slow",
        CommandResult(
            exit_code=TIMEOUT_EXIT_CODE,
            output="Command execution timed out after 5 seconds",
            timed_out=True,
        ),
    )
    runner = build_runner(repository, memory_store, fake_runner, sink, recorded_sleep)

    result = await runner.run("slow")

    assert result.status == ExecutionStatus.FAILED
    assert result.exit_code == 124
    assert "timed out" in result.error


@pytest.mark.asyncio
async def test_permanently_failed_task_is_not_invoked(
    memory_store, fake_runner, sink, recorded_sleep
):
    repository = InMemoryRepository([make_task("backup")])
    await memory_store.put_retry_state(
        "backup", RetryState(attempts=3, last_error="boom", permanent_failure=True)
    )
    runner = build_runner(repository, memory_store, fake_runner, sink, recorded_sleep)

    result = await runner.run("backup")

    assert result.status == ExecutionStatus.FAILED
    assert result.exit_code is None
    assert fake_runner.calls == []
    assert "permanent failure" in result.error


@pytest.mark.asyncio
async def test_unknown_task(memory_store, fake_runner, sink, recorded_sleep):
    runner = build_runner(InMemoryRepository(), memory_store, fake_runner, sink, recorded_sleep)

    with pytest.raises(TaskNotFound):
        await runner.run("ghost")


@pytest.mark.asyncio
async def test_missing_working_dir_fails_without_retry(
    memory_store, sink, recorded_sleep, tmp_path
):
    """The real runner rejects a missing working directory as a definition error."""
    from pycadence.runner import SubprocessCommandRunner

    task = make_task(
        "backup",
        RetryPolicy(max_attempts=5),
        command="true",
        working_dir=str(tmp_path / "missing"),
    )
    runner = TaskRunner(
        InMemoryRepository([task]),
        memory_store,
        SubprocessCommandRunner(),
        RetryController(memory_store, sleep=recorded_sleep),
        sink,
    )

    result = await runner.run("backup")

    assert result.status == ExecutionStatus.FAILED
    assert "Working directory not found" in result.error
    assert recorded_sleep.delays == []
    assert result.retry == RetryState()


@pytest.mark.asyncio
async def test_output_is_archived(memory_store, fake_runner, sink, recorded_sleep, tmp_path):
    repository = InMemoryRepository([make_task("backup")])
    runner = build_runner(
        repository, memory_store, fake_runner, sink, recorded_sleep, output_dir=tmp_path
    )

    result = await runner.run("backup")

    assert result.state.output_ref is not None
    assert "backup_output_" in result.state.output_ref
    with open(result.state.output_ref, encoding="utf-8") as fh:
        assert fh.read() == "run backup ok"


# ==============================================================================
# Notifications
# ==============================================================================


@pytest.mark.asyncio
async def test_failure_notifies_by_default(memory_store, fake_runner, sink, recorded_sleep):
    repository = InMemoryRepository([make_task("backup")])
    fake_runner.script("run backup", 1)
    runner = build_runner(repository, memory_store, fake_runner, sink, recorded_sleep)

    await runner.run("backup")

    (notification,) = sink.notifications
    assert notification.entity_type == "task"
    assert notification.status == "failed"
    assert notification.exit_code == 1
    assert notification.subject == "[pycadence] Task FAILED: Task backup (backup)"


@pytest.mark.asyncio
async def test_success_is_silent_unless_requested(
    memory_store, fake_runner, sink, recorded_sleep
):
    repository = InMemoryRepository(
        [make_task("quiet"), make_task("loud", notify_on_success=True)]
    )
    runner = build_runner(repository, memory_store, fake_runner, sink, recorded_sleep)

    await runner.run("quiet")
    await runner.run("loud")

    assert [n.entity_id for n in sink.notifications] == ["loud"]
    assert sink.notifications[0].status == "success"


@pytest.mark.asyncio
async def test_failing_sink_does_not_change_outcome(memory_store, fake_runner, recorded_sleep):
    class BrokenSink:
        async def notify(self, notification):
            raise ConnectionError("smtp down")

    repository = InMemoryRepository([make_task("backup", notify_on_success=True)])
    runner = build_runner(repository, memory_store, fake_runner, BrokenSink(), recorded_sleep)

    result = await runner.run("backup")

    assert result.succeeded


# ==============================================================================
# Cancellation
# ==============================================================================


@pytest.mark.asyncio
async def test_cancel_marks_running_task(memory_store, fake_runner, sink, recorded_sleep):
    runner = build_runner(InMemoryRepository(), memory_store, fake_runner, sink, recorded_sleep)
    await memory_store.put_execution_state(ExecutionState.initial("backup").mark_running())

    assert await runner.cancel("backup") is True

    state = await memory_store.get_execution_state("backup")
    assert state.status == ExecutionStatus.CANCELLED
    assert state.exit_code == CANCELLED_EXIT_CODE
    assert state.error_msg == "Task was cancelled"


@pytest.mark.asyncio
async def test_cancel_ignores_tasks_that_are_not_running(
    memory_store, fake_runner, sink, recorded_sleep
):
    runner = build_runner(InMemoryRepository(), memory_store, fake_runner, sink, recorded_sleep)

    assert await runner.cancel("never-ran") is False

    await memory_store.put_execution_state(
        ExecutionState.initial("done").mark_running().mark_finished(True, 0)
    )
    assert await runner.cancel("done") is False
    assert (await memory_store.get_execution_state("done")).status == ExecutionStatus.SUCCESS


def test_failure_message():
    assert failure_message(CommandResult(exit_code=3, output="\nfirst\nsecond")) == (
        "Command failed with exit code 3: first"
    )
    assert failure_message(CommandResult(exit_code=3)) == "Command failed with exit code 3"
