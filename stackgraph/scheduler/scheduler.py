"""
Graph Scheduler for stackgraph

Walks a ResourceGraph and materializes every node through the reconciler. A node
is dispatched as soon as all of its dependencies are materialized, so independent
branches proceed in parallel up to the executor's in-flight bound. Dependent
nodes are never blocked by unrelated slow nodes.

When a node fails, its outputs fail and every transitive dependent is marked
SKIPPED without being attempted. Independent branches keep going. When the run
is stopped (cancellation, timeout, or a state backend failure), nothing new
starts; work already in flight finishes and is recorded.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..config import get_config
from ..errors import (
    DispatchCancelledError,
    MaterializationFailure,
    OutputError,
    SkippedError,
    StateBackendError,
)
from ..executors.asyncpool import AsyncPoolExecutor
from ..logging import get_logger
from ..output import Output
from ..reconciler import ReconcileResult, Reconciler
from ..resources.resource import NodeState, Resource
from .graph import ResourceGraph

logger = get_logger(__name__)


class RunStatus(str, Enum):
    """Overall outcome of a run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class NodeFailure:
    """A node that failed to materialize, with the action attempted and its cause."""

    name: str
    kind: str
    action: str
    cause: BaseException
    attempts: int = 1

    @property
    def message(self) -> str:
        return str(self.cause)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "action": self.action,
            "attempts": self.attempts,
            "error_type": type(self.cause).__name__,
            "message": self.message,
        }


@dataclass
class ExecutionReport:
    """What happened to every node of one graph walk."""

    status: RunStatus
    materialized: List[str] = field(default_factory=list)
    failed: List[NodeFailure] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    actions: Dict[str, str] = field(default_factory=dict)
    started: List[str] = field(default_factory=list)
    results: Dict[str, ReconcileResult] = field(default_factory=dict)
    stop_reason: Optional[str] = None
    executor_stats: Dict[str, Any] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "materialized": list(self.materialized),
            "failed": [failure.to_dict() for failure in self.failed],
            "skipped": list(self.skipped),
            "actions": dict(self.actions),
            "stop_reason": self.stop_reason,
            "duration_seconds": self.duration_seconds,
            "executor": dict(self.executor_stats),
        }


class Scheduler:
    """
    Dependency-driven scheduler for one ResourceGraph.

    A Scheduler walks its graph once; build a new graph (and scheduler) per run.
    """

    def __init__(
        self,
        graph: ResourceGraph,
        reconciler: Reconciler,
        max_in_flight: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ):
        config = get_config()

        self.graph = graph
        self.reconciler = reconciler
        self.max_in_flight = max_in_flight or config.execution.max_in_flight
        self.timeout_seconds = (
            timeout_seconds
            if timeout_seconds is not None
            else config.execution.run_timeout_seconds
        )

        self._executor: Optional[AsyncPoolExecutor] = None
        self._in_flight: Dict[asyncio.Task, Resource] = {}
        self._dispatched: set = set()
        self._stop_reason: Optional[str] = None
        self._report: Optional[ExecutionReport] = None

    @property
    def stopping(self) -> bool:
        return self._stop_reason is not None

    def cancel(self, reason: str = "run cancelled"):
        """Stop dispatching. In-flight nodes finish; everything else is skipped."""
        if self._stop_reason is None:
            self._stop_reason = reason
            logger.warning(
                "Run stopping",
                graph_id=self.graph.graph_id,
                reason=reason,
                in_flight=len(self._in_flight),
            )
        if self._executor is not None:
            self._executor.stop()

    async def execute(self) -> ExecutionReport:
        """
        Materialize the graph.

        Returns:
            ExecutionReport describing every node's outcome. Node failures are
            reported, not raised.
        """
        if self._report is not None:
            raise RuntimeError(f"Graph {self.graph.graph_id} has already been executed")

        loop = asyncio.get_running_loop()
        started_at = datetime.now(timezone.utc)
        self._report = report = ExecutionReport(status=RunStatus.SUCCEEDED)
        self._executor = AsyncPoolExecutor(self.max_in_flight, name_prefix=self.graph.graph_id)
        if self._stop_reason is not None:
            self._executor.stop()

        order = self.graph.mark_planned()
        deadline = loop.time() + self.timeout_seconds if self.timeout_seconds else None

        logger.info(
            "Graph execution started",
            graph_id=self.graph.graph_id,
            resources=len(order),
            max_in_flight=self.max_in_flight,
            timeout_seconds=self.timeout_seconds,
        )

        try:
            while True:
                if not self.stopping:
                    for node in self.graph.ready_nodes():
                        if node.name not in self._dispatched:
                            self._dispatch(node)

                if not self._in_flight:
                    break

                timeout = None
                if deadline is not None and not self.stopping:
                    timeout = max(deadline - loop.time(), 0.0)

                done, _ = await asyncio.wait(
                    set(self._in_flight), timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )
                if not done:
                    self.cancel(f"run timeout of {self.timeout_seconds}s exceeded")
                    continue

                for task in done:
                    self._settle(self._in_flight.pop(task), task)
        except asyncio.CancelledError:
            self.cancel("run cancelled")
            if self._in_flight:
                await asyncio.wait(set(self._in_flight))
                for task, node in list(self._in_flight.items()):
                    self._settle(node, task)
                self._in_flight.clear()
            self._finish(report, order, started_at)
            raise

        self._finish(report, order, started_at)

        logger.info(
            "Graph execution finished",
            graph_id=self.graph.graph_id,
            status=report.status.value,
            materialized=len(report.materialized),
            failed=len(report.failed),
            skipped=len(report.skipped),
            duration_seconds=round(report.duration_seconds, 3),
        )
        return report

    def _dispatch(self, node: Resource):
        self._dispatched.add(node.name)
        task = self._executor.submit(node.name, lambda: self._materialize(node))
        self._in_flight[task] = node

    async def _materialize(self, node: Resource) -> ReconcileResult:
        node.mark_materializing()
        self._report.started.append(node.name)

        try:
            desired = await Output.all(node.inputs, name=f"{node.name}.inputs").resolve()
        except OutputError as e:
            raise MaterializationFailure(node.name, "resolve", e.root_cause) from e

        return await self.reconciler.reconcile(node, desired)

    def _settle(self, node: Resource, task: asyncio.Task):
        report = self._report

        if task.cancelled():
            self._skip(node, "run cancelled before the node finished")
            return

        error = task.exception()
        if error is None:
            result: ReconcileResult = task.result()
            node.action = result.action.value
            node.resolve_outputs(result.physical_id, result.outputs)
            report.materialized.append(node.name)
            report.actions[node.name] = result.action.value
            report.results[node.name] = result
            logger.debug(
                "Resource materialized",
                resource=node.name,
                action=result.action.value,
                physical_id=result.physical_id,
            )
            return

        if isinstance(error, DispatchCancelledError):
            self._skip(node, self._stop_reason or "run stopped before dispatch")
            return

        if isinstance(error, MaterializationFailure):
            failure = error
        else:
            failure = MaterializationFailure(node.name, node.action or "resolve", error)
            failure.__cause__ = error

        node.fail_outputs(NodeState.FAILED, failure)
        report.failed.append(
            NodeFailure(
                name=node.name,
                kind=node.kind.value,
                action=failure.action,
                cause=failure,
                attempts=failure.attempts,
            )
        )
        if node.action:
            report.actions[node.name] = node.action

        logger.error(
            "Resource failed",
            resource=node.name,
            kind=node.kind.value,
            action=failure.action,
            error=str(failure),
        )

        for name in self.graph.descendants_of(node.name):
            dependent = self.graph[name]
            if not dependent.is_settled and name not in self._dispatched:
                self._skip(dependent, f"dependency {node.name} failed", upstream=failure)

        if isinstance(error, StateBackendError) or isinstance(
            getattr(failure, "cause", None), StateBackendError
        ):
            self.cancel("state backend failure")

    def _skip(self, node: Resource, reason: str, upstream: Optional[BaseException] = None):
        output_error = None
        if upstream is not None:
            output_error = OutputError(upstream, [node.name])
        node.fail_outputs(NodeState.SKIPPED, SkippedError(node.name, reason), output_error)
        self._report.skipped.append(node.name)
        logger.info("Resource skipped", resource=node.name, reason=reason)

    def _finish(self, report: ExecutionReport, order: List[str], started_at: datetime):
        for name in order:
            node = self.graph[name]
            if not node.is_settled:
                self._skip(node, self._stop_reason or "dependency did not materialize")

        if report.failed:
            report.status = RunStatus.FAILED
        elif self._stop_reason is not None and report.skipped:
            report.status = RunStatus.CANCELLED
        else:
            report.status = RunStatus.SUCCEEDED

        report.stop_reason = self._stop_reason
        report.executor_stats = self._executor.get_stats()
        report.duration_seconds = (datetime.now(timezone.utc) - started_at).total_seconds()
