"""
Error taxonomy for pycadence.

Errors are values: each exception carries the context a caller needs to
decide what to do next, instead of a bare message.

Retry classification:
- ConfigError and its subclasses (unknown task/workflow, malformed
  definition, CycleDetected, MissingDependency) are never retried. They fail
  a run before any task executes.
- CommandFailure / CommandTimeout are retried by the RetryController.
- PermanentFailure is what a caller sees once retries are exhausted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pycadence.models import CommandResult


class CadenceError(Exception):
    """Base class for all pycadence errors."""


# =============================================================================
# Configuration / graph errors (never retried)
# =============================================================================


class ConfigError(CadenceError):
    """Unknown task/workflow or malformed definition."""


class TaskNotFound(ConfigError):
    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class WorkflowNotFound(ConfigError):
    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class MissingDependency(ConfigError):
    """A task depends on an id that is not part of the workflow."""

    def __init__(self, task_id: str, dependency: str):
        super().__init__(f"Task '{task_id}' depends on non-existent task '{dependency}'")
        self.task_id = task_id
        self.dependency = dependency


class CycleDetected(ConfigError):
    """The dependency graph contains at least one cycle.

    Attributes:
        unresolved: Task ids that could not be placed in any layer, in
            declaration order.
    """

    def __init__(self, unresolved: list[str]):
        super().__init__(
            f"Cycle detected in dependency graph; unresolved tasks: {', '.join(unresolved)}"
        )
        self.unresolved = unresolved


# =============================================================================
# Execution errors (retried locally)
# =============================================================================


class CommandFailure(CadenceError):
    """A command exited with a non-zero status."""

    def __init__(self, message: str, result: CommandResult | None = None):
        super().__init__(message)
        self.result = result

    @property
    def exit_code(self) -> int | None:
        return self.result.exit_code if self.result is not None else None


class CommandTimeout(CommandFailure):
    """A command was stopped after exceeding its timeout."""


class WorkflowAttemptFailed(CadenceError):
    """One attempt of a workflow ended with at least one failed task."""

    def __init__(self, workflow_id: str, failed_tasks: list[str]):
        super().__init__(
            f"Workflow {workflow_id} attempt failed; failed tasks: {', '.join(failed_tasks)}"
        )
        self.workflow_id = workflow_id
        self.failed_tasks = failed_tasks


class PermanentFailure(CadenceError):
    """
    Retries for an entity are exhausted.

    Raised either at the end of the attempt that exhausted ``max_attempts``
    (chained from that attempt's error) or immediately, without invoking the
    operation, when the entity is already marked as permanently failed
    (``short_circuited=True``). An explicit reset is required before the
    entity can run again.
    """

    def __init__(
        self,
        entity_id: str,
        attempts: int,
        last_error: str | None,
        short_circuited: bool = False,
    ):
        if short_circuited:
            message = (
                f"Entity {entity_id} has permanent failure status, skipping execution"
                f" (last error: {last_error})"
            )
        else:
            message = f"Entity {entity_id} failed after {attempts} attempts: {last_error}"
        super().__init__(message)
        self.entity_id = entity_id
        self.attempts = attempts
        self.last_error = last_error
        self.short_circuited = short_circuited


# =============================================================================
# Infrastructure errors
# =============================================================================


class LockTimeout(CadenceError):
    """A DirectoryLock could not be acquired within its timeout."""

    def __init__(self, path: str, timeout: float):
        super().__init__(f"Failed to acquire lock on {path} after {timeout}s")
        self.path = path
        self.timeout = timeout


class StorageError(CadenceError):
    """
    State store operation failed.

    Custom exception with context, not generic Exception.
    """


__all__ = [
    "CadenceError",
    "ConfigError",
    "TaskNotFound",
    "WorkflowNotFound",
    "MissingDependency",
    "CycleDetected",
    "CommandFailure",
    "CommandTimeout",
    "WorkflowAttemptFailed",
    "PermanentFailure",
    "LockTimeout",
    "StorageError",
]
