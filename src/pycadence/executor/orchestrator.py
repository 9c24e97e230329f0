"""
Workflow orchestration.

The Orchestrator is the public entry point of the engine. It wires the
dependency resolver, the layered executor, the task runner and the retry
controller together and drives one workflow run through its state
machine:

    PENDING -> RUNNING(attempt i) -> SUCCESS
                                  -> RETRY_PENDING -> RUNNING(attempt i+1)
                                  -> FAILED

Design Pattern: Facade
Callers see ``run_workflow`` / ``run_task`` and a handful of state queries;
the collaborators are created here from injected dependencies (repository,
state store, command runner, notification sink, sleep, random source).

Usage:
    store = JsonFileStateStore("state")
    orchestrator = Orchestrator(load_repository("config"), store)
    result = await orchestrator.run_workflow("nightly")
    print(result.status, result.task_statuses())
"""

from __future__ import annotations

import logging
import random
import time
from pathlib import Path

from uuid_extensions import uuid7

from pycadence.config import Repository, Settings
from pycadence.errors import ConfigError, PermanentFailure, WorkflowAttemptFailed
from pycadence.executor.dag import DependencyGraph, Layer
from pycadence.executor.layers import LayeredExecutor
from pycadence.executor.retry import RetryController, Sleep
from pycadence.executor.task import TaskRunner
from pycadence.models import (
    ExecutionState,
    LayerRunResult,
    RetryPolicy,
    RetryState,
    TaskResult,
    WorkflowDefinition,
    WorkflowResult,
    WorkflowStatus,
)
from pycadence.notification import (
    LoggingNotificationSink,
    Notification,
    NotificationSink,
)
from pycadence.runner import CommandRunner, SubprocessCommandRunner
from pycadence.storage.base import StateStore

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Runs workflows and single tasks against a repository of definitions.

    Whole-workflow retries go through the same RetryController as tasks,
    keyed by the workflow id, with a fixed pause of
    ``workflow_retry_interval`` seconds between attempts. Every attempt
    runs all layers from the first one.
    """

    def __init__(
        self,
        repository: Repository,
        store: StateStore,
        runner: CommandRunner | None = None,
        notifier: NotificationSink | None = None,
        *,
        workflow_retry_interval: float = 1.0,
        output_dir: Path | None = None,
        sleep: Sleep | None = None,
        rng: random.Random | None = None,
    ):
        self.repository = repository
        self.store = store
        self.workflow_retry_interval = workflow_retry_interval

        self._notifier = notifier if notifier is not None else LoggingNotificationSink()
        self._retry = RetryController(store, sleep=sleep, rng=rng)
        self._tasks = TaskRunner(
            repository,
            store,
            runner if runner is not None else SubprocessCommandRunner(),
            self._retry,
            self._notifier,
            output_dir=output_dir,
        )
        self._layers = LayeredExecutor(store)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        repository: Repository,
        store: StateStore,
        **kwargs,
    ) -> Orchestrator:
        return cls(
            repository,
            store,
            workflow_retry_interval=settings.workflow_retry_interval,
            output_dir=settings.output_dir,
            **kwargs,
        )

    # =========================================================================
    # Workflows
    # =========================================================================

    def plan(self, workflow_id: str) -> list[Layer]:
        """
        Execution layers of a workflow, without running anything.

        Raises:
            WorkflowNotFound: Unknown workflow id
            ConfigError: Missing dependency, cycle or unknown task
        """
        return self._resolve(self.repository.get_workflow(workflow_id))

    def _resolve(self, workflow: WorkflowDefinition) -> list[Layer]:
        layers = DependencyGraph.from_workflow(workflow).layers()
        for task_id in workflow.task_ids:
            # Raises TaskNotFound
            self.repository.get_task(task_id)
        return layers

    async def run_workflow(self, workflow_id: str) -> WorkflowResult:
        """
        Run a workflow to SUCCESS or FAILED.

        Graph and definition errors end the run immediately as FAILED with
        ``error`` set; no task runs and the workflow's retry state is left
        untouched. A workflow that already exhausted its attempts fails
        without running any task until ``reset_retry_state`` is called.

        Raises:
            WorkflowNotFound: Unknown workflow id
        """
        workflow = self.repository.get_workflow(workflow_id)
        run_id = str(uuid7())
        started = time.monotonic()
        transitions = [WorkflowStatus.PENDING]

        logger.info(f"Workflow started: {workflow.name} ({workflow.id}) run={run_id}")

        try:
            layers = self._resolve(workflow)
        except ConfigError as e:
            logger.error(f"Workflow {workflow.id} cannot run: {e}")
            transitions.append(WorkflowStatus.FAILED)
            return await self._finish(
                workflow,
                run_id,
                WorkflowStatus.FAILED,
                attempts=0,
                started=started,
                layers=[],
                task_results={
                    task_id: ExecutionState.initial(task_id) for task_id in workflow.task_ids
                },
                error=str(e),
                transitions=transitions,
            )

        logger.info(f"Workflow {workflow.id} resolved into {len(layers)} layer(s)")

        policy = RetryPolicy.fixed_interval(
            workflow.retry_policy.max_attempts, self.workflow_retry_interval
        )
        attempts = 0
        last_run: LayerRunResult | None = None

        async def attempt() -> LayerRunResult:
            nonlocal attempts, last_run
            attempts += 1
            transitions.append(WorkflowStatus.RUNNING)
            last_run = await self._layers.execute(layers, self._run_task_state)
            if not last_run.succeeded:
                raise WorkflowAttemptFailed(workflow.id, last_run.failed_tasks)
            return last_run

        def on_retry(attempt_number: int, delay: float, error: BaseException) -> None:
            transitions.append(WorkflowStatus.RETRY_PENDING)
            logger.info(
                f"Workflow {workflow.id} retrying after attempt {attempt_number} in {delay:.1f}s"
            )

        error: str | None = None
        try:
            await self._retry.execute(workflow.id, attempt, policy, on_retry=on_retry)
            status = WorkflowStatus.SUCCESS
        except PermanentFailure as e:
            status = WorkflowStatus.FAILED
            error = str(e)
        transitions.append(status)

        if last_run is not None:
            task_results = dict(last_run.task_results)
        else:
            task_results = await self._current_states(workflow)

        return await self._finish(
            workflow,
            run_id,
            status,
            attempts=attempts,
            started=started,
            layers=layers,
            task_results=task_results,
            error=error,
            transitions=transitions,
        )

    async def _run_task_state(self, task_id: str) -> ExecutionState:
        return (await self._tasks.run(task_id)).state

    async def _current_states(self, workflow: WorkflowDefinition) -> dict[str, ExecutionState]:
        states = {}
        for task_id in workflow.task_ids:
            state = await self.store.get_execution_state(task_id)
            states[task_id] = state if state is not None else ExecutionState.initial(task_id)
        return states

    async def _finish(
        self,
        workflow: WorkflowDefinition,
        run_id: str,
        status: WorkflowStatus,
        *,
        attempts: int,
        started: float,
        layers: list[Layer],
        task_results: dict[str, ExecutionState],
        error: str | None,
        transitions: list[WorkflowStatus],
    ) -> WorkflowResult:
        retry_stats: dict[str, RetryState] = {}
        for task_id in workflow.task_ids:
            retry_stats[task_id] = await self._retry.get_stats(task_id)
        retry_stats[workflow.id] = await self._retry.get_stats(workflow.id)

        result = WorkflowResult(
            workflow_id=workflow.id,
            run_id=run_id,
            status=status,
            attempts=attempts,
            duration=time.monotonic() - started,
            task_results=task_results,
            retry_stats=retry_stats,
            layers=layers,
            error=error,
            transitions=transitions,
        )

        if result.succeeded:
            logger.info(
                f"Workflow {workflow.id} completed successfully "
                f"in {result.duration:.1f}s ({attempts} attempt(s))"
            )
        else:
            logger.error(f"Workflow {workflow.id} failed: {error}")

        await self._notify_workflow(workflow, result)
        return result

    async def _notify_workflow(self, workflow: WorkflowDefinition, result: WorkflowResult) -> None:
        summary = "\n".join(
            f"{task_id}: {state.status.value}"
            + (f" (exit code {state.exit_code})" if state.exit_code is not None else "")
            for task_id, state in result.task_results.items()
        )
        notification = Notification(
            entity_type="workflow",
            entity_id=workflow.id,
            entity_name=workflow.name,
            status=result.status.value,
            exit_code=0 if result.succeeded else 1,
            duration=result.duration,
            output=summary,
            error_msg=result.error,
        )
        try:
            await self._notifier.notify(notification)
        except Exception as e:
            logger.warning(f"Failed to send notification for workflow {workflow.id}: {e}")

    # =========================================================================
    # Tasks and state
    # =========================================================================

    async def run_task(self, task_id: str) -> TaskResult:
        """
        Run a single task outside any workflow.

        Raises:
            TaskNotFound: Unknown task id
        """
        return await self._tasks.run(task_id)

    async def cancel_task(self, task_id: str) -> bool:
        return await self._tasks.cancel(task_id)

    async def get_task_status(self, task_id: str) -> ExecutionState | None:
        """Last persisted ExecutionState, or None if the task never ran."""
        return await self.store.get_execution_state(task_id)

    async def get_retry_stats(self, entity_id: str) -> RetryState:
        return await self._retry.get_stats(entity_id)

    async def reset_retry_state(self, entity_id: str) -> bool:
        """Explicit reset: clears attempts and permanent failure of a task or workflow."""
        return await self._retry.reset(entity_id)


__all__ = ["Orchestrator"]
