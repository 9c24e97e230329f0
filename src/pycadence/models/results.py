"""Result records returned by the command runner and the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pycadence.models.retry import RetryState
from pycadence.models.state import ExecutionState
from pycadence.models.status import ExecutionStatus, WorkflowStatus

TIMEOUT_EXIT_CODE = 124
CANCELLED_EXIT_CODE = 130


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command invocation.

    A timeout is reported through ``timed_out`` (with exit code 124), not
    raised.
    """

    exit_code: int
    output: str = ""
    duration: float = 0.0
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


@dataclass(frozen=True)
class TaskResult:
    """Final outcome of ``Orchestrator.run_task``."""

    task_id: str
    status: ExecutionStatus
    exit_code: int | None
    output: str
    error: str | None
    state: ExecutionState
    retry: RetryState
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "error": self.error,
            "duration": round(self.duration, 3),
            "state": self.state.to_dict(),
            "retry": self.retry.to_dict(),
        }


@dataclass(frozen=True)
class LayerRunResult:
    """Aggregate outcome of running every layer once."""

    status: WorkflowStatus
    task_results: dict[str, ExecutionState]
    failed_tasks: list[str] = field(default_factory=list)
    layers_completed: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == WorkflowStatus.SUCCESS


@dataclass(frozen=True)
class WorkflowResult:
    """
    Final outcome of ``Orchestrator.run_workflow``.

    Always carries every task's last status and the retry statistics of
    every task and of the workflow itself, so a run that never started
    (``error`` set, all tasks pending) is distinguishable from one that ran
    and exhausted its retries.
    """

    workflow_id: str
    run_id: str
    status: WorkflowStatus
    attempts: int
    duration: float
    task_results: dict[str, ExecutionState]
    retry_stats: dict[str, RetryState]
    layers: list[tuple[str, ...]] = field(default_factory=list)
    error: str | None = None
    transitions: list[WorkflowStatus] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == WorkflowStatus.SUCCESS

    def task_statuses(self) -> dict[str, ExecutionStatus]:
        return {task_id: state.status for task_id, state in self.task_results.items()}

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "run_id": self.run_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "duration": round(self.duration, 3),
            "error": self.error,
            "layers": [list(layer) for layer in self.layers],
            "transitions": [status.value for status in self.transitions],
            "tasks": {task_id: state.to_dict() for task_id, state in self.task_results.items()},
            "retry_stats": {
                entity_id: state.to_dict() for entity_id, state in self.retry_stats.items()
            },
        }
