"""
Dependency Graph Resolution

Converts a workflow's task list into ordered execution layers that can run
with maximal parallelism.

**Design Decision Hidden** (Parnas's Information Hiding):
- **"How tasks are grouped for parallel execution"**

Callers hand over a WorkflowDefinition and get back a list of layers; the
in-degree bookkeeping stays inside this module.

**How It Works** (Kahn's algorithm, layered):
1. Every task starts with in-degree = number of its dependencies
2. All tasks with in-degree 0 form the next layer (declaration order)
3. Emitting a task decrements the in-degree of its dependents
4. Repeat until every task is emitted
5. If a round finds nothing to emit while tasks remain, there is a cycle

**Example**:
```python
graph = DependencyGraph.from_workflow(workflow)
layers = graph.layers()
# tasks A, B (deps A), C (deps A, B)  ->  [("A",), ("B",), ("C",)]
print(graph.level_graph())
```
"""

from __future__ import annotations

from dataclasses import dataclass

from pycadence.errors import ConfigError, CycleDetected, MissingDependency
from pycadence.models import WorkflowDefinition

Layer = tuple[str, ...]


class DependencyGraph:
    """
    In-memory dependency graph of one workflow.

    Nodes are task ids; edges run from a dependency to its dependent. The
    graph is validated on construction (unknown ids, duplicates) and checked
    for cycles when layers are computed.

    **Attributes**:
        order: Task ids in declaration order
        dependencies: task id -> set of ids it depends on
    """

    def __init__(self, order: list[str], dependencies: dict[str, frozenset[str]]):
        self.order = order
        self.dependencies = dependencies
        self._dependents: dict[str, list[str]] = {task_id: [] for task_id in order}
        for task_id in order:
            for dep in dependencies[task_id]:
                self._dependents[dep].append(task_id)

    @classmethod
    def from_workflow(cls, workflow: WorkflowDefinition) -> DependencyGraph:
        """
        Build and validate the graph of a workflow.

        **Raises**:
            ConfigError: If a task id is declared twice
            MissingDependency: If a dependency is not part of the workflow
        """
        order: list[str] = []
        dependencies: dict[str, frozenset[str]] = {}

        for ref in workflow.tasks:
            if ref.task_id in dependencies:
                raise ConfigError(
                    f"Workflow '{workflow.id}' declares task '{ref.task_id}' more than once"
                )
            order.append(ref.task_id)
            dependencies[ref.task_id] = frozenset(ref.dependencies)

        for task_id in order:
            # Sorted so the reported missing id does not depend on set ordering
            for dep in sorted(dependencies[task_id]):
                if dep not in dependencies:
                    raise MissingDependency(task_id, dep)

        return cls(order, dependencies)

    def dependents(self, task_id: str) -> list[str]:
        """Tasks that directly depend on ``task_id``, in declaration order."""
        return list(self._dependents[task_id])

    def layers(self) -> list[Layer]:
        """
        Group tasks into execution layers.

        Every task appears in exactly one layer, and each task's layer index
        is strictly greater than the layer index of each of its dependencies.
        Pure: the same graph always yields the same layers.

        **Raises**:
            CycleDetected: If the remaining tasks all wait on each other.
                No partial result is returned.
        """
        in_degree = {task_id: len(self.dependencies[task_id]) for task_id in self.order}
        emitted: set[str] = set()
        layers: list[Layer] = []

        while len(emitted) < len(self.order):
            # Collect every ready task before decrementing, so a task never
            # lands in the same layer as one of its dependencies
            ready = [
                task_id
                for task_id in self.order
                if task_id not in emitted and in_degree[task_id] == 0
            ]

            if not ready:
                unresolved = [task_id for task_id in self.order if task_id not in emitted]
                raise CycleDetected(unresolved)

            for task_id in ready:
                emitted.add(task_id)
                for dependent in self._dependents[task_id]:
                    in_degree[dependent] -= 1

            layers.append(tuple(ready))

        return layers

    def summary(self) -> DagSummary:
        """
        Returns a summary of the graph structure.

        Provides statistics about the graph including:
        - Total number of tasks
        - Number of root nodes (no dependencies)
        - Number of leaf nodes (no dependents)
        - Maximum depth (index of the last layer)

        **Raises**:
            CycleDetected: If the graph is not acyclic
        """
        roots = [task_id for task_id in self.order if not self.dependencies[task_id]]
        leaves = [task_id for task_id in self.order if not self._dependents[task_id]]
        layers = self.layers()

        return DagSummary(
            total_steps=len(self.order),
            root_count=len(roots),
            leaf_count=len(leaves),
            max_depth=max(len(layers) - 1, 0),
            roots=roots,
            leaves=leaves,
        )

    def level_graph(self) -> str:
        """
        Returns a level-based view showing which tasks run in parallel.

        **Example output**:
        ```
        Execution Levels (4 tasks):

        Level 0: [fetch]
                 ↓
        Level 1: [transform] [validate] (2 parallel tasks)
                 ↓
        Level 2: [publish]
        ```
        """
        layers = self.layers()
        output = f"Execution Levels ({len(self.order)} tasks):\n\n"

        for level, tasks in enumerate(layers):
            parallel_note = f" ({len(tasks)} parallel tasks)" if len(tasks) > 1 else ""
            output += f"Level {level}: [{'] ['.join(tasks)}]{parallel_note}\n"
            if level < len(layers) - 1:
                output += "         ↓\n"

        return output


@dataclass
class DagSummary:
    """
    Summary information about a dependency graph.

    **Attributes**:
        total_steps: Total number of tasks in the graph
        root_count: Number of root nodes (tasks with no dependencies)
        leaf_count: Number of leaf nodes (tasks with no dependents)
        max_depth: Maximum depth of the graph
        roots: List of root task IDs
        leaves: List of leaf task IDs
    """

    total_steps: int
    root_count: int
    leaf_count: int
    max_depth: int
    roots: list[str]
    leaves: list[str]


def resolve_layers(workflow: WorkflowDefinition) -> list[Layer]:
    """
    Convert a workflow definition into ordered execution layers.

    **Raises**:
        ConfigError: Duplicate task ids
        MissingDependency: Dependency not in the workflow
        CycleDetected: Dependency cycle
    """
    return DependencyGraph.from_workflow(workflow).layers()


__all__ = [
    "Layer",
    "DependencyGraph",
    "DagSummary",
    "resolve_layers",
]
