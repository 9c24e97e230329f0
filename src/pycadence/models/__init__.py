"""Core data models for task and workflow execution.

Defines types for execution state tracking, retry bookkeeping, task and
workflow definitions, and run results.

Design: Dependency-Free Models
These types have no dependencies on executor or storage modules to
prevent circular imports and enable clean layering.
"""

from pycadence.models.definitions import TaskDefinition, TaskRef, WorkflowDefinition
from pycadence.models.results import (
    CANCELLED_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
    CommandResult,
    LayerRunResult,
    TaskResult,
    WorkflowResult,
)
from pycadence.models.retry import RetryPolicy, RetryState
from pycadence.models.state import ExecutionState
from pycadence.models.status import ExecutionStatus, WorkflowStatus

__all__ = [
    "TaskDefinition",
    "TaskRef",
    "WorkflowDefinition",
    "CommandResult",
    "LayerRunResult",
    "TaskResult",
    "WorkflowResult",
    "TIMEOUT_EXIT_CODE",
    "CANCELLED_EXIT_CODE",
    "RetryPolicy",
    "RetryState",
    "ExecutionState",
    "ExecutionStatus",
    "WorkflowStatus",
]
