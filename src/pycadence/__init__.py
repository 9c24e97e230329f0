"""
Cadence: Dependency-aware task workflow execution for Python

Runs workflows of shell tasks in dependency order, with maximal parallelism
inside each layer, bounded retries with exponential backoff, persisted
execution state and notifications.

Design Pattern: Façade Pattern
This module provides a simplified interface to the pycadence engine,
hiding the wiring of storage, resolution, retries and execution.

Example:
    ```python
    import asyncio
    from pycadence import JsonFileStateStore, Orchestrator, load_repository

    async def main():
        store = JsonFileStateStore("state")
        await store.connect()

        orchestrator = Orchestrator(load_repository("config"), store)
        result = await orchestrator.run_workflow("nightly")
        print(result.status, result.task_statuses())

        await store.close()

    asyncio.run(main())
    ```
"""

# Definitions and settings
from pycadence.config import (
    InMemoryRepository,
    Repository,
    Settings,
    load_repository,
    open_state_store,
)

# Errors
from pycadence.errors import (
    CadenceError,
    CommandFailure,
    CommandTimeout,
    ConfigError,
    CycleDetected,
    LockTimeout,
    MissingDependency,
    PermanentFailure,
    StorageError,
    TaskNotFound,
    WorkflowAttemptFailed,
    WorkflowNotFound,
)

# Execution
from pycadence.executor import (
    DependencyGraph,
    LayeredExecutor,
    Orchestrator,
    RetryController,
    TaskRunner,
    resolve_layers,
)
from pycadence.lock import DirectoryLock

# Core types
from pycadence.models import (
    CommandResult,
    ExecutionState,
    ExecutionStatus,
    RetryPolicy,
    RetryState,
    TaskDefinition,
    TaskRef,
    TaskResult,
    WorkflowDefinition,
    WorkflowResult,
    WorkflowStatus,
)
from pycadence.notification import (
    LoggingNotificationSink,
    Notification,
    NotificationSink,
    NullNotificationSink,
)
from pycadence.runner import CommandRunner, SubprocessCommandRunner

# Storage (Adapter pattern)
from pycadence.storage import InMemoryStateStore, JsonFileStateStore, StateStore

__version__ = "0.1.0"

__all__ = [
    # Core types
    "TaskDefinition",
    "TaskRef",
    "WorkflowDefinition",
    "RetryPolicy",
    "RetryState",
    "ExecutionState",
    "ExecutionStatus",
    "WorkflowStatus",
    "CommandResult",
    "TaskResult",
    "WorkflowResult",
    # Errors
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
    # Definitions and settings
    "Repository",
    "InMemoryRepository",
    "load_repository",
    "Settings",
    "open_state_store",
    # Storage
    "StateStore",
    "InMemoryStateStore",
    "JsonFileStateStore",
    # Execution
    "DependencyGraph",
    "resolve_layers",
    "RetryController",
    "TaskRunner",
    "LayeredExecutor",
    "Orchestrator",
    "CommandRunner",
    "SubprocessCommandRunner",
    # Notifications
    "Notification",
    "NotificationSink",
    "LoggingNotificationSink",
    "NullNotificationSink",
    # Locking
    "DirectoryLock",
]
