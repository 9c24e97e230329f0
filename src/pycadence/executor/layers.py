"""
Layered execution.

Runs the layers produced by the dependency resolver: every task of a layer
is launched as its own asyncio task, the layer is a barrier
(``asyncio.gather``), and the next layer starts only when the whole
previous layer is terminal and succeeded.

The executor does not know how a task runs. It is handed a ``run_task``
coroutine function (normally ``TaskRunner.run`` reduced to its final
ExecutionState) and only decides when to call it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

from pycadence.errors import StorageError
from pycadence.executor.retry import describe_error
from pycadence.models import (
    ExecutionState,
    ExecutionStatus,
    LayerRunResult,
    WorkflowStatus,
)
from pycadence.storage.base import StateStore

logger = logging.getLogger(__name__)

RunTask = Callable[[str], Awaitable[ExecutionState]]


class LayeredExecutor:
    """
    Executes layers strictly in order with full concurrency inside a layer.

    All state mutations of layer N are persisted before any task of layer
    N+1 starts. Within a layer there is no ordering.
    """

    def __init__(self, store: StateStore):
        self._store = store

    async def execute(self, layers: Sequence[Sequence[str]], run_task: RunTask) -> LayerRunResult:
        """
        Run every layer once.

        Args:
            layers: Ordered layers of task ids
            run_task: Coroutine function running one task to a terminal
                ExecutionState

        Returns:
            LayerRunResult; tasks of layers that never started stay pending
        """
        task_results = await self._reset_to_pending(layers)
        failed_tasks: list[str] = []
        layers_completed = 0

        for index, layer in enumerate(layers, start=1):
            logger.info(f"Starting layer {index}/{len(layers)}: {', '.join(layer)}")

            outcomes = await asyncio.gather(
                *(run_task(task_id) for task_id in layer),
                return_exceptions=True,
            )

            for task_id, outcome in zip(layer, outcomes):
                if isinstance(outcome, BaseException):
                    if isinstance(outcome, StorageError) or not isinstance(outcome, Exception):
                        raise outcome
                    outcome = await self._record_crash(task_id, outcome)
                task_results[task_id] = outcome
                if outcome.status != ExecutionStatus.SUCCESS:
                    failed_tasks.append(task_id)

            if failed_tasks:
                logger.error(
                    f"Layer {index} failed ({', '.join(failed_tasks)}), "
                    f"skipping {len(layers) - index} remaining layer(s)"
                )
                return LayerRunResult(
                    status=WorkflowStatus.FAILED,
                    task_results=task_results,
                    failed_tasks=failed_tasks,
                    layers_completed=layers_completed,
                )

            layers_completed += 1
            logger.debug(f"Layer {index} completed")

        return LayerRunResult(
            status=WorkflowStatus.SUCCESS,
            task_results=task_results,
            failed_tasks=[],
            layers_completed=layers_completed,
        )

    async def _reset_to_pending(
        self, layers: Sequence[Sequence[str]]
    ) -> dict[str, ExecutionState]:
        states: dict[str, ExecutionState] = {}
        for layer in layers:
            for task_id in layer:
                previous = await self._store.get_execution_state(task_id)
                state = (previous or ExecutionState.initial(task_id)).mark_pending()
                await self._store.put_execution_state(state)
                states[task_id] = state
        return states

    async def _record_crash(self, task_id: str, error: Exception) -> ExecutionState:
        logger.error(f"Task {task_id} raised unexpectedly: {error!r}")
        previous = await self._store.get_execution_state(task_id)
        state = (previous or ExecutionState.initial(task_id)).mark_finished(
            succeeded=False,
            exit_code=None,
            error_msg=describe_error(error),
        )
        await self._store.put_execution_state(state)
        return state


__all__ = ["LayeredExecutor", "RunTask"]
