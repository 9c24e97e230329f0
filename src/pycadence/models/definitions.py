"""Task and workflow definitions.

Definitions are parsed once at load time (see ``pycadence.config``) into
these frozen, typed records; nothing downstream looks up fields by string
path.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pycadence.models.retry import RetryPolicy

DEFAULT_WORKFLOW_RETRY = RetryPolicy.with_max_attempts(1)


@dataclass(frozen=True)
class TaskDefinition:
    """
    A runnable task.

    Attributes:
        id: Unique task identifier
        name: Human-readable name (used in notifications)
        command: Shell command line
        working_dir: Directory the command runs in (current dir when None)
        timeout: Seconds before the command is stopped (None = no timeout)
        retry_policy: Per-task retry/backoff settings
        notify_on_success: Send a notification when the task succeeds
        notify_on_failure: Send a notification when the task fails
        description: Free text
    """

    id: str
    name: str
    command: str
    working_dir: str | None = None
    timeout: float | None = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    notify_on_success: bool = False
    notify_on_failure: bool = True
    description: str = ""


@dataclass(frozen=True)
class TaskRef:
    """A task's membership in a workflow, with workflow-scoped dependencies."""

    task_id: str
    dependencies: frozenset[str] = frozenset()


@dataclass(frozen=True)
class WorkflowDefinition:
    """
    An ordered list of tasks with dependencies.

    Declaration order of ``tasks`` is significant: it is the stable order
    used inside each execution layer.
    """

    id: str
    name: str
    tasks: tuple[TaskRef, ...]
    retry_policy: RetryPolicy = DEFAULT_WORKFLOW_RETRY
    description: str = ""

    @property
    def task_ids(self) -> list[str]:
        return [ref.task_id for ref in self.tasks]
