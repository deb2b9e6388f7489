# ============================================================================
# ORCHESTRATOR ENGINE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - Engine components
# PURPOSE: DAG validation and template resolution
# CREATED: 13 OCT 2026
# ============================================================================
"""
Orchestrator Engine Components

- graph: dependency graph construction, cycle and dangling-edge detection
- templates: Jinja2-based template resolution
"""

from orchestrator.engine.templates import (
    TemplateResolver,
    TemplateContext,
    TaskContext,
    TemplateResolutionError,
    get_resolver,
    resolve_bindings,
)
from orchestrator.engine.graph import (
    DependencyGraph,
    GraphBuilder,
    TopologicalSorter,
    DagValidator,
    get_validator,
    validate_dag,
)

__all__ = [
    # Templates
    "TemplateResolver",
    "TemplateContext",
    "TaskContext",
    "TemplateResolutionError",
    "get_resolver",
    "resolve_bindings",
    # Graph
    "DependencyGraph",
    "GraphBuilder",
    "TopologicalSorter",
    "DagValidator",
    "get_validator",
    "validate_dag",
]
