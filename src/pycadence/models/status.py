"""Status enumerations for task and workflow execution tracking.

Defines lifecycle states for individual task executions and for whole
workflow runs.
"""

from enum import Enum


class ExecutionStatus(Enum):
    """Status of a single task execution.

    Lifecycle:
        PENDING → RUNNING → SUCCESS/FAILED
        RUNNING → CANCELLED (state-only; the process is not signalled)
    """

    PENDING = "pending"
    """Task has not started in the current run."""

    RUNNING = "running"
    """Task is being executed (possibly between retry attempts)."""

    SUCCESS = "success"
    """Task command exited with status 0."""

    FAILED = "failed"
    """Task exhausted its retries or could not run."""

    CANCELLED = "cancelled"
    """Task was marked cancelled by an operator."""

    @property
    def is_terminal(self) -> bool:
        """Check if this status is terminal (no more work in this run)."""
        return self in (
            ExecutionStatus.SUCCESS,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )

    def __str__(self) -> str:
        return self.value


class WorkflowStatus(Enum):
    """State of one workflow run.

    Lifecycle:
        PENDING → RUNNING → SUCCESS
        PENDING → RUNNING → RETRY_PENDING → RUNNING → ... → FAILED

    A run that cannot start (graph or configuration error, permanent
    failure) goes straight from PENDING to FAILED.
    """

    PENDING = "pending"
    RUNNING = "running"
    RETRY_PENDING = "retry_pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.SUCCESS, WorkflowStatus.FAILED)

    def __str__(self) -> str:
        return self.value
