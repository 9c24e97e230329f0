"""
Per-task execution unit.

Runs one task from start to terminal status:

1. Look up the task definition
2. Record RUNNING (execution_count + 1)
3. Run the command under the RetryController, one attempt per invocation
4. Record SUCCESS or FAILED, archiving the output when configured
5. Emit the task notification if the task's preferences ask for it

Used both standalone (``Orchestrator.run_task``) and as the callback the
LayeredExecutor launches for every task of a layer.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path

from pycadence.config import Repository
from pycadence.errors import (
    CommandFailure,
    CommandTimeout,
    ConfigError,
    PermanentFailure,
)
from pycadence.executor.retry import RetryController
from pycadence.models import (
    CANCELLED_EXIT_CODE,
    CommandResult,
    ExecutionState,
    ExecutionStatus,
    TaskDefinition,
    TaskResult,
)
from pycadence.models.timestamps import utcnow
from pycadence.notification import Notification, NotificationSink
from pycadence.runner import CommandRunner
from pycadence.storage.base import StateStore
from pycadence.storage.files import write_output

logger = logging.getLogger(__name__)


def failure_message(result: CommandResult) -> str:
    """``Command failed with exit code N: <first output line>``."""
    message = f"Command failed with exit code {result.exit_code}"
    first_line = result.output.strip().splitlines()[0] if result.output.strip() else ""
    return f"{message}: {first_line}" if first_line else message


class TaskRunner:
    """
    Executes single tasks with retries, state tracking and notifications.

    All collaborators are injected; nothing here knows which storage
    backend, command runner or notification transport is in use.
    """

    def __init__(
        self,
        repository: Repository,
        store: StateStore,
        runner: CommandRunner,
        retry: RetryController,
        notifier: NotificationSink,
        output_dir: Path | None = None,
    ):
        self._repository = repository
        self._store = store
        self._runner = runner
        self._retry = retry
        self._notifier = notifier
        self._output_dir = output_dir

    async def run(self, task_id: str) -> TaskResult:
        """
        Run a task to a terminal status.

        Command failures never escape: they end as a FAILED result. Only
        an unknown task id (TaskNotFound) and storage errors propagate.

        Raises:
            TaskNotFound: If the repository has no such task
            StorageError: If state cannot be persisted
        """
        task: TaskDefinition = self._repository.get_task(task_id)

        previous = await self._store.get_execution_state(task_id)
        state = (previous or ExecutionState.initial(task_id)).mark_running()
        await self._store.put_execution_state(state)

        logger.info(f"Task started: {task.name} ({task_id})")
        started = time.monotonic()

        last: list[CommandResult] = []

        async def attempt() -> CommandResult:
            result = await self._runner.run(task.command, task.working_dir, task.timeout)
            last.append(result)
            if result.timed_out:
                raise CommandTimeout(
                    f"Command execution timed out after {task.timeout} seconds", result
                )
            if result.exit_code != 0:
                raise CommandFailure(failure_message(result), result)
            return result

        error: str | None = None
        try:
            await self._retry.execute(task_id, attempt, task.retry_policy)
        except PermanentFailure as e:
            error = str(e)
        except ConfigError as e:
            logger.error(f"Task {task_id} cannot run: {e}")
            error = str(e)

        duration = time.monotonic() - started
        result = last[-1] if last else None
        output = result.output if result is not None else ""
        exit_code = result.exit_code if result is not None else None

        output_ref = None
        if self._output_dir is not None and result is not None:
            output_ref = await asyncio.to_thread(
                write_output, self._output_dir, task_id, output
            )

        state = state.mark_finished(
            succeeded=error is None,
            exit_code=exit_code,
            output_ref=output_ref,
            error_msg=error,
        )
        await self._store.put_execution_state(state)

        logger.info(
            f"Task finished: {task.name} ({task_id}) status={state.status} "
            f"exit_code={exit_code} duration={duration:.1f}s"
        )

        await self._notify(task, state, output, duration)

        return TaskResult(
            task_id=task_id,
            status=state.status,
            exit_code=exit_code,
            output=output,
            error=error,
            state=state,
            retry=await self._retry.get_stats(task_id),
            duration=duration,
        )

    async def _notify(
        self, task: TaskDefinition, state: ExecutionState, output: str, duration: float
    ) -> None:
        succeeded = state.status == ExecutionStatus.SUCCESS
        if succeeded and not task.notify_on_success:
            logger.debug(f"Notifications disabled for task {task.id} on success")
            return
        if not succeeded and not task.notify_on_failure:
            logger.debug(f"Notifications disabled for task {task.id} on failure")
            return

        notification = Notification(
            entity_type="task",
            entity_id=task.id,
            entity_name=task.name,
            status=state.status.value,
            exit_code=state.exit_code,
            duration=duration,
            output=output,
            error_msg=state.error_msg,
        )
        try:
            await self._notifier.notify(notification)
        except Exception as e:
            logger.warning(f"Failed to send notification for task {task.id}: {e}")

    async def cancel(self, task_id: str) -> bool:
        """
        Mark a running task as cancelled.

        State only: the command keeps running until it exits on its own.

        Returns:
            False if the task is not currently running
        """
        state = await self._store.get_execution_state(task_id)
        if state is None or state.status != ExecutionStatus.RUNNING:
            logger.warning(f"Task {task_id} is not currently running")
            return False

        await self._store.put_execution_state(
            state.transition(
                ExecutionStatus.CANCELLED,
                exit_code=CANCELLED_EXIT_CODE,
                end_time=utcnow(),
                error_msg="Task was cancelled",
            )
        )
        logger.warning(f"Task {task_id} marked as cancelled; the running command is not signalled")
        return True


__all__ = ["TaskRunner", "failure_message"]
