"""
Stack: the composition root.

A stack owns a provider, a state backend and a secret source. ``run`` executes a
program to build a fresh ResourceGraph, loads recorded state once, schedules the
graph, prunes resources that are no longer declared and resolves the program's
exports::

    async def main():
        stack = Stack("dev", SimulatedProvider(), FileStateBackend("state.json"))
        result = await stack.run(program)
        print(result.exported_values["url"])

A program is a plain callable receiving a ``StackContext``. Declaration errors
raised while it runs abort the run before any provider call.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .config import StackGraphConfig, get_config
from .errors import StackGraphError
from .logging import CorrelationContext, get_audit_logger, get_logger
from .output import Output
from .provider import Provider
from .reconciler import Reconciler
from .resources.resource import Resource
from .resources.schema import ResourceKind
from .scheduler.graph import ResourceGraph
from .scheduler.planner import PlanSummary, Planner
from .scheduler.scheduler import ExecutionReport, NodeFailure, RunStatus, Scheduler
from .secrets import RegistryTokenSource, SecretSource
from .state import StateBackend, StateStore

logger = get_logger(__name__)


class StackContext:
    """Explicit builder handed to programs: the graph, exports and secrets."""

    def __init__(self, stack: str, graph: ResourceGraph, secrets: SecretSource):
        self.stack = stack
        self.graph = graph
        self.secrets = secrets
        self.exports: Dict[str, Output] = {}

    def declare(
        self,
        name: str,
        kind: ResourceKind,
        inputs: Optional[Dict[str, Any]] = None,
        depends_on=(),
    ) -> Resource:
        """Declare a resource on the stack's graph."""
        return self.graph.declare(name, kind, inputs, depends_on=depends_on)

    def export(self, name: str, value: Any) -> Output:
        """Publish a value (an Output, or a structure containing Outputs) as a stack output."""
        if name in self.exports:
            raise StackGraphError(f"Export {name} already defined", {"export": name})
        output = value if isinstance(value, Output) else Output.all(value, name=f"export:{name}")
        self.exports[name] = output
        return output


Program = Callable[[StackContext], None]


@dataclass
class RunResult:
    """Outcome of ``Stack.run`` or ``Stack.destroy``."""

    status: RunStatus
    exported_values: Dict[str, Any] = field(default_factory=dict)
    failures: List[NodeFailure] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    actions: Dict[str, str] = field(default_factory=dict)
    deleted: List[str] = field(default_factory=list)
    secret_exports: List[str] = field(default_factory=list)
    report: Optional[ExecutionReport] = None
    run_id: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        """Dictionary form with secret exports redacted."""
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "exported_values": {
                k: ("[secret]" if k in self.secret_exports else v)
                for k, v in self.exported_values.items()
            },
            "failures": [failure.to_dict() for failure in self.failures],
            "skipped": list(self.skipped),
            "actions": dict(self.actions),
            "deleted": list(self.deleted),
        }


class Stack:
    """A named deployment of one program against one provider and one state backend."""

    def __init__(
        self,
        name: str,
        provider: Provider,
        state_backend: StateBackend,
        config: Optional[StackGraphConfig] = None,
        secrets: Optional[SecretSource] = None,
    ):
        self.name = name
        self.provider = provider
        self.state_backend = state_backend
        self.config = config or get_config()
        self.secrets = secrets or RegistryTokenSource(region=self.config.backend.region)
        self.audit = get_audit_logger()

        self._scheduler: Optional[Scheduler] = None

    # ------------------------------------------------------------------
    # Program evaluation
    # ------------------------------------------------------------------

    def build(self, program: Program) -> StackContext:
        """Run a program against a fresh graph and return its context.

        Raises:
            DeclarationError: If the program declares an invalid graph
        """
        context = StackContext(self.name, ResourceGraph(), self.secrets)
        program(context)

        errors = context.graph.validate()
        if errors:
            raise StackGraphError("Resource graph is inconsistent", {"errors": errors})

        logger.debug(
            "Program evaluated",
            stack=self.name,
            resources=len(context.graph),
            exports=sorted(context.exports),
        )
        return context

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def run(self, program: Program) -> RunResult:
        """
        Bring the infrastructure to the state the program declares.

        Node failures are reported in the result, never raised. Declaration and
        state-loading errors are raised before any provider call.
        """
        run_id = str(uuid.uuid4())[:8]
        token = CorrelationContext.set_correlation_id(run_id)
        try:
            return await self._run(program, run_id)
        finally:
            self._scheduler = None
            CorrelationContext.reset(token)

    async def _run(self, program: Program, run_id: str) -> RunResult:
        started_at = datetime.now(timezone.utc)
        context = self.build(program)

        store = StateStore(self.state_backend, self.name)
        store.load()

        self.audit.log_run_event(self.name, "started", resources=len(context.graph))

        reconciler = Reconciler(self.provider, store, retry=self.config.retry, audit=self.audit)
        self._scheduler = Scheduler(
            context.graph,
            reconciler,
            max_in_flight=self.config.execution.max_in_flight,
            timeout_seconds=self.config.execution.run_timeout_seconds,
        )
        report = await self._scheduler.execute()

        result = RunResult(
            status=report.status,
            failures=list(report.failed),
            skipped=list(report.skipped),
            actions=dict(report.actions),
            report=report,
            run_id=run_id,
        )

        if report.succeeded:
            prune = await reconciler.prune(context.graph.nodes)
            result.deleted = prune.deleted
            for name in prune.deleted:
                result.actions[name] = "DELETE"
            for failure in prune.failed:
                record = store.get(failure.node)
                result.failures.append(
                    NodeFailure(
                        name=failure.node,
                        kind=record.kind if record else "",
                        action="DELETE",
                        cause=failure,
                        attempts=failure.attempts,
                    )
                )
            result.skipped.extend(prune.skipped)
            if prune.failed:
                result.status = RunStatus.FAILED

        if result.status == RunStatus.SUCCEEDED:
            self._resolve_exports(context, result)

        self.audit.log_run_event(
            self.name,
            "finished",
            status=result.status.value,
            failures=len(result.failures),
            skipped=len(result.skipped),
            deleted=len(result.deleted),
            duration_seconds=(datetime.now(timezone.utc) - started_at).total_seconds(),
        )
        return result

    def _resolve_exports(self, context: StackContext, result: RunResult):
        for name, output in context.exports.items():
            if output.is_secret:
                result.secret_exports.append(name)
            if output.is_resolved:
                result.exported_values[name] = output.result()
                continue

            cause = (
                output.error.root_cause
                if output.is_failed
                else StackGraphError(f"Export {name} never resolved", {"export": name})
            )
            result.failures.append(
                NodeFailure(name=f"export:{name}", kind="export", action="EXPORT", cause=cause)
            )
            result.status = RunStatus.FAILED

        if result.status != RunStatus.SUCCEEDED:
            result.exported_values = {}

    async def plan(self, program: Program) -> PlanSummary:
        """Preview the actions ``run`` would take. Makes no provider calls and writes nothing."""
        run_id = str(uuid.uuid4())[:8]
        token = CorrelationContext.set_correlation_id(run_id)
        try:
            context = self.build(program)
            store = StateStore(self.state_backend, self.name)
            store.load()
            planner = Planner(store, max_in_flight=self.config.execution.max_in_flight)
            return await planner.plan(context.graph)
        finally:
            CorrelationContext.reset(token)

    async def destroy(self) -> RunResult:
        """Delete every recorded resource, dependents first."""
        return await self.run(_empty_program)

    def cancel(self, reason: str = "cancel requested"):
        """Stop the current run: in-flight nodes finish, nothing new starts."""
        if self._scheduler is not None:
            self._scheduler.cancel(reason)


def _empty_program(context: StackContext):
    return None
