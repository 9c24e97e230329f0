"""
Executor module - Runtime engine for task workflows.

This module contains the execution components:
- dag: dependency resolution into execution layers
- retry: retry/backoff controller with persisted attempt counters
- task: single task execution (TaskRunner)
- layers: concurrent layer-by-layer execution (LayeredExecutor)
- orchestrator: workflow state machine and public entry point

Package name "executor" describes what it provides (the execution engine),
not what it contains.
"""

from pycadence.executor.dag import DagSummary, DependencyGraph, Layer, resolve_layers
from pycadence.executor.layers import LayeredExecutor
from pycadence.executor.orchestrator import Orchestrator
from pycadence.executor.retry import RetryController, describe_error
from pycadence.executor.task import TaskRunner

__all__ = [
    # Resolver
    "DependencyGraph",
    "DagSummary",
    "Layer",
    "resolve_layers",
    # Retry
    "RetryController",
    "describe_error",
    # Execution
    "TaskRunner",
    "LayeredExecutor",
    "Orchestrator",
]
