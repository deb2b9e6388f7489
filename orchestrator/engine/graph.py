# ============================================================================
# DAG GRAPH VALIDATION
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - Dependency graph construction and validation
# PURPOSE: Reject dangling edges and cycles before any task launches
# CREATED: 13 OCT 2026
# ============================================================================
"""
DAG Graph

Builds the dependency graph of a DagDefinition and validates it.

Features:
- Dependency graph construction (dangling edges rejected)
- Topological sort (Kahn) for ordering
- Cycle path extraction (DFS) so the error names the loop

The validator is stateless - it takes a definition and either returns
its topological order or raises a ValidationError subclass.
"""

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from core.errors import (
    CyclicGraphError,
    MalformedDefinitionError,
    UnknownDependencyError,
)
from core.models import DagDefinition

logger = logging.getLogger(__name__)


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class DependencyGraph:
    """
    Dependency graph for a DAG.

    A -> B means "B depends on A" (A must be satisfied before B starts).
    """
    # Task name -> tasks that depend on it
    forward_edges: Dict[str, List[str]] = field(default_factory=lambda: defaultdict(list))

    # Task name -> tasks it depends on
    backward_edges: Dict[str, List[str]] = field(default_factory=lambda: defaultdict(list))

    # Insertion-ordered task names
    nodes: List[str] = field(default_factory=list)

    def add_node(self, name: str) -> None:
        if name not in self.nodes:
            self.nodes.append(name)

    def add_edge(self, from_node: str, to_node: str) -> None:
        """Add a dependency edge: to_node depends on from_node."""
        self.forward_edges[from_node].append(to_node)
        self.backward_edges[to_node].append(from_node)
        self.add_node(from_node)
        self.add_node(to_node)

    def get_dependencies(self, name: str) -> List[str]:
        """Get tasks that this task depends on."""
        return list(self.backward_edges.get(name, []))

    def get_dependents(self, name: str) -> List[str]:
        """Get tasks that depend on this task."""
        return list(self.forward_edges.get(name, []))


# ============================================================================
# GRAPH BUILDER
# ============================================================================

class GraphBuilder:
    """Builds dependency graph from a DAG definition."""

    def build(self, dag: DagDefinition) -> DependencyGraph:
        """
        Build dependency graph from DAG.

        Raises:
            UnknownDependencyError: a depends_on entry names no task
        """
        graph = DependencyGraph()
        known = set(dag.task_names)

        for task in dag.tasks:
            graph.add_node(task.name)

        for task in dag.tasks:
            for dep in task.depends_on:
                if dep not in known:
                    raise UnknownDependencyError(task.name, dep)
                graph.add_edge(dep, task.name)

        return graph


# ============================================================================
# TOPOLOGICAL SORT / CYCLE DETECTION
# ============================================================================

class TopologicalSorter:
    """Validates DAG structure and provides topological ordering."""

    def validate(self, graph: DependencyGraph) -> Tuple[bool, List[str], Optional[str]]:
        """
        Validate that graph is a DAG (no cycles).

        Returns:
            Tuple of (is_valid, sorted_nodes, error_message)
        """
        in_degree = {node: len(graph.get_dependencies(node)) for node in graph.nodes}

        queue = deque([node for node in graph.nodes if in_degree[node] == 0])
        sorted_nodes = []

        while queue:
            node = queue.popleft()
            sorted_nodes.append(node)

            for dependent in graph.get_dependents(node):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)

        if len(sorted_nodes) != len(graph.nodes):
            remaining = [n for n in graph.nodes if n not in sorted_nodes]
            return False, sorted_nodes, f"Cycle detected involving tasks: {remaining}"

        return True, sorted_nodes, None

    def find_cycle(self, graph: DependencyGraph) -> Optional[List[str]]:
        """
        Return one cycle as a closed path, e.g. ['a', 'b', 'a'], or None.

        Iterative DFS over forward edges with white/grey/black colouring.
        """
        WHITE, GREY, BLACK = 0, 1, 2
        colour = {node: WHITE for node in graph.nodes}

        for start in graph.nodes:
            if colour[start] != WHITE:
                continue
            path: List[str] = [start]
            stack = [iter(graph.get_dependents(start))]
            colour[start] = GREY

            while stack:
                nxt = next(stack[-1], None)
                if nxt is None:
                    colour[path.pop()] = BLACK
                    stack.pop()
                    continue
                if colour[nxt] == GREY:
                    return path[path.index(nxt):] + [nxt]
                if colour[nxt] == WHITE:
                    colour[nxt] = GREY
                    path.append(nxt)
                    stack.append(iter(graph.get_dependents(nxt)))

        return None


# ============================================================================
# DAG VALIDATOR
# ============================================================================

class DagValidator:
    """
    Submit-time validation of a DAG definition.

    Checks for:
    - Structural problems (duplicate names, shared addresses)
    - Dependencies on tasks that do not exist
    - Cycles (including self-dependencies)
    """

    def __init__(self):
        self.graph_builder = GraphBuilder()
        self.topo_sorter = TopologicalSorter()

    def validate(self, dag: DagDefinition) -> List[str]:
        """
        Validate a DAG and return its topological order.

        Raises:
            MalformedDefinitionError, UnknownDependencyError, CyclicGraphError
        """
        errors = dag.validate_structure()
        if errors:
            raise MalformedDefinitionError("; ".join(errors), errors=errors)

        graph = self.graph_builder.build(dag)
        is_valid, order, error = self.topo_sorter.validate(graph)

        if not is_valid:
            cycle = self.topo_sorter.find_cycle(graph) or []
            logger.debug(f"DAG {dag.dag_id} rejected: {error}")
            raise CyclicGraphError(cycle)

        return order


# ============================================================================
# MODULE-LEVEL FUNCTIONS
# ============================================================================

_validator: Optional[DagValidator] = None


def get_validator() -> DagValidator:
    """Get singleton validator instance."""
    global _validator
    if _validator is None:
        _validator = DagValidator()
    return _validator


def validate_dag(dag: DagDefinition) -> List[str]:
    """Validate a DAG; returns topological order or raises ValidationError."""
    return get_validator().validate(dag)


__all__ = [
    "DependencyGraph",
    "GraphBuilder",
    "TopologicalSorter",
    "DagValidator",
    "get_validator",
    "validate_dag",
]
