"""
Plan: preview what a run would do.

Planning walks the graph exactly like a run, but through a dry-run reconciler
that never talks to the provider and never writes state. Outputs of resources
that would be created or replaced are UNKNOWN; outputs of resources that would be
updated or left alone come from recorded state. A dependent whose input is
UNKNOWN is reported as changed.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..logging import get_logger
from ..reconciler import Action, Reconciler
from ..state import StateStore
from .graph import ResourceGraph
from .scheduler import NodeFailure, Scheduler

logger = get_logger(__name__)


@dataclass
class PlanSummary:
    """Actions a run would take, by logical name.

    Replaced resources appear in ``to_replace`` and also in both ``to_create``
    and ``to_delete``.
    """

    to_create: List[str] = field(default_factory=list)
    to_update: List[str] = field(default_factory=list)
    to_delete: List[str] = field(default_factory=list)
    no_op: List[str] = field(default_factory=list)
    to_replace: List[str] = field(default_factory=list)
    changed_fields: Dict[str, List[str]] = field(default_factory=dict)
    failures: List[NodeFailure] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.to_create or self.to_update or self.to_delete)

    def counts(self) -> Dict[str, int]:
        return {
            "create": len(self.to_create) - len(self.to_replace),
            "update": len(self.to_update),
            "replace": len(self.to_replace),
            "delete": len(self.to_delete) - len(self.to_replace),
            "no_op": len(self.no_op),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "to_create": list(self.to_create),
            "to_update": list(self.to_update),
            "to_delete": list(self.to_delete),
            "to_replace": list(self.to_replace),
            "no_op": list(self.no_op),
            "changed_fields": {k: list(v) for k, v in self.changed_fields.items()},
            "failures": [failure.to_dict() for failure in self.failures],
            "counts": self.counts(),
        }


class Planner:
    """Computes a PlanSummary for a graph against recorded state."""

    def __init__(self, store: StateStore, max_in_flight: Optional[int] = None):
        self.store = store
        self.max_in_flight = max_in_flight

    async def plan(self, graph: ResourceGraph) -> PlanSummary:
        reconciler = Reconciler(provider=None, store=self.store, dry_run=True)
        scheduler = Scheduler(graph, reconciler, max_in_flight=self.max_in_flight)
        report = await scheduler.execute()

        summary = PlanSummary(failures=list(report.failed))
        for name in graph.topological_order():
            result = report.results.get(name)
            if result is None:
                continue

            if result.changed_fields:
                summary.changed_fields[name] = list(result.changed_fields)

            if result.action == Action.CREATE:
                summary.to_create.append(name)
            elif result.action == Action.UPDATE:
                summary.to_update.append(name)
            elif result.action == Action.REPLACE:
                summary.to_replace.append(name)
                summary.to_create.append(name)
                summary.to_delete.append(name)
            else:
                summary.no_op.append(name)

        for name in (await reconciler.prune(graph.nodes)).deleted:
            summary.to_delete.append(name)

        logger.info("Plan computed", graph_id=graph.graph_id, **summary.counts())
        return summary
