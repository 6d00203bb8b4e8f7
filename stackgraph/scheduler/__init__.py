"""
Scheduler Components for stackgraph

This package contains the resource graph, the dependency-driven scheduler that
materializes it, and the planner that previews a run.
"""

from .graph import ResourceEdge, ResourceGraph
from .planner import PlanSummary, Planner
from .scheduler import ExecutionReport, NodeFailure, RunStatus, Scheduler

__all__ = [
    "ResourceGraph",
    "ResourceEdge",
    "Scheduler",
    "ExecutionReport",
    "NodeFailure",
    "RunStatus",
    "Planner",
    "PlanSummary",
]
