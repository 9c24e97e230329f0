"""Persisted per-task execution state."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from pycadence.models.status import ExecutionStatus
from pycadence.models.timestamps import format_timestamp, parse_timestamp, utcnow


@dataclass(frozen=True)
class ExecutionState:
    """
    Last known execution state of a task.

    Mutated only by the task runner and the layered executor around each
    attempt, always through ``transition`` so ``last_updated`` stays
    accurate. Instances are immutable; every change yields a new record
    that is written back to the state store.

    Attributes:
        task_id: Task identifier
        status: Current lifecycle status
        exit_code: Exit code of the last finished attempt
        start_time: When the task last entered RUNNING
        end_time: When the task last reached a terminal status
        output_ref: Where the last command output was archived (path or None)
        error_msg: Error of the last failed run
        execution_count: How many times the task has entered RUNNING
        last_updated: Time of the last transition
    """

    task_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    exit_code: int | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    output_ref: str | None = None
    error_msg: str | None = None
    execution_count: int = 0
    last_updated: datetime | None = None

    @classmethod
    def initial(cls, task_id: str) -> ExecutionState:
        return cls(task_id=task_id)

    def transition(self, status: ExecutionStatus, **changes: Any) -> ExecutionState:
        """Return a copy moved to ``status`` with the given field changes."""
        return replace(self, status=status, last_updated=utcnow(), **changes)

    def mark_pending(self) -> ExecutionState:
        return self.transition(
            ExecutionStatus.PENDING,
            exit_code=None,
            start_time=None,
            end_time=None,
            error_msg=None,
        )

    def mark_running(self) -> ExecutionState:
        return self.transition(
            ExecutionStatus.RUNNING,
            exit_code=None,
            start_time=utcnow(),
            end_time=None,
            error_msg=None,
            execution_count=self.execution_count + 1,
        )

    def mark_finished(
        self,
        succeeded: bool,
        exit_code: int | None,
        output_ref: str | None = None,
        error_msg: str | None = None,
    ) -> ExecutionState:
        return self.transition(
            ExecutionStatus.SUCCESS if succeeded else ExecutionStatus.FAILED,
            exit_code=exit_code,
            end_time=utcnow(),
            output_ref=output_ref if output_ref is not None else self.output_ref,
            error_msg=None if succeeded else error_msg,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "start_time": format_timestamp(self.start_time),
            "end_time": format_timestamp(self.end_time),
            "output_ref": self.output_ref,
            "error_msg": self.error_msg,
            "execution_count": self.execution_count,
            "last_updated": format_timestamp(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionState:
        return cls(
            task_id=data["task_id"],
            status=ExecutionStatus(data.get("status", "pending")),
            exit_code=data.get("exit_code"),
            start_time=parse_timestamp(data.get("start_time")),
            end_time=parse_timestamp(data.get("end_time")),
            output_ref=data.get("output_ref") or None,
            error_msg=data.get("error_msg") or None,
            execution_count=int(data.get("execution_count") or 0),
            last_updated=parse_timestamp(data.get("last_updated")),
        )
