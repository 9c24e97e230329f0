"""
Notifications about finished tasks and workflows.

The engine emits a ``Notification`` record; delivering it (mail, chat,
pager) is the job of a ``NotificationSink``. The record knows how to render
the subject and body an operator would receive, so every sink formats
messages the same way.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

from pycadence.models.timestamps import utcnow

logger = logging.getLogger(__name__)

SUBJECT_PREFIX = "[pycadence]"
MAX_OUTPUT_LINES = 50


@dataclass(frozen=True)
class Notification:
    """
    Final status of a task or workflow.

    Attributes:
        entity_type: "task" or "workflow"
        entity_id: Task or workflow id
        status: "success" or "failed"
        exit_code: Exit code of the last command (0 for workflows)
        duration: Seconds the run took
        output: Command output, or a per-task summary for workflows
        error_msg: Failure reason, if any
        entity_name: Human-readable name (defaults to the id)
    """

    entity_type: str
    entity_id: str
    status: str
    exit_code: int | None = 0
    duration: float = 0.0
    output: str = ""
    error_msg: str | None = None
    entity_name: str | None = None
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def subject(self) -> str:
        status_text = "SUCCESS" if self.succeeded else "FAILED"
        name = self.entity_name or self.entity_id
        return (
            f"{SUBJECT_PREFIX} {self.entity_type.capitalize()} {status_text}: "
            f"{name} ({self.entity_id})"
        )

    def body(self) -> str:
        """Plain-text message body; output is cut after MAX_OUTPUT_LINES lines."""
        lines = [
            "Task Scheduling System Notification",
            "=====================================",
            "",
            f"Timestamp: {self.timestamp:%Y-%m-%d %H:%M:%S}",
            f"Entity Type: {self.entity_type}",
            f"Entity ID: {self.entity_id}",
            f"Entity Name: {self.entity_name or self.entity_id}",
            f"Status: {self.status}",
            f"Exit Code: {self.exit_code}",
            f"Duration: {self.duration:.1f} seconds",
            "",
        ]

        if self.error_msg:
            lines += ["Error Message:", self.error_msg, ""]

        if self.output:
            output_lines = self.output.splitlines()
            lines.append("Output:")
            lines += output_lines[:MAX_OUTPUT_LINES]
            if len(output_lines) > MAX_OUTPUT_LINES:
                lines += ["", "... (output truncated, see logs for full output)"]
            lines.append("")

        lines += ["---", "This is an automated notification from pycadence."]
        return "\n".join(lines)


class NotificationSink(ABC):
    """
    Delivers notifications.

    A delivery error never changes a run's outcome: the engine logs it and
    continues.
    """

    @abstractmethod
    async def notify(self, notification: Notification) -> None:
        """Deliver one notification."""


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the ``pycadence.notification`` logger."""

    async def notify(self, notification: Notification) -> None:
        level = logging.INFO if notification.succeeded else logging.ERROR
        logger.log(level, notification.subject)
        logger.debug(notification.body())


class NullNotificationSink(NotificationSink):
    """Discards every notification."""

    async def notify(self, notification: Notification) -> None:
        return None


__all__ = [
    "Notification",
    "NotificationSink",
    "LoggingNotificationSink",
    "NullNotificationSink",
]
