"""
Reconciler: brings one resource to its desired state.

For every node the reconciler compares the resolved desired inputs with the
last-applied inputs in recorded state and picks an action:

* no record                          -> CREATE
* only mutable fields changed        -> UPDATE in place
* an immutable field changed         -> REPLACE (delete the old identity, create a new one)
* nothing changed                    -> NOOP (outputs come from recorded state, no provider call)
* recorded but no longer declared    -> DELETE (prune pass, after all declared nodes)

Every successful provider mutation is written back to recorded state before the
node counts as materialized. A crash between the provider call and that write is
the only window in which state can drift from reality.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from .config import RetryConfig, get_config
from .errors import (
    DeclarationError,
    MaterializationFailure,
    ProviderError,
    TransientProviderError,
)
from .logging import AuditLogger, get_audit_logger, get_logger
from .output import UNKNOWN, contains_unknown
from .provider import Provider, ProviderResult
from .resources.resource import Resource
from .resources.schema import ResourceKind
from .state import ResourceRecord, StateStore, mask_secrets, normalize

logger = get_logger(__name__)


class Action(str, Enum):
    """Reconciliation actions."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    REPLACE = "REPLACE"
    NOOP = "NOOP"
    DELETE = "DELETE"


@dataclass
class Decision:
    """Action chosen for a node, with the fields that motivated it."""

    action: Action
    changed_fields: List[str] = field(default_factory=list)
    replace_fields: List[str] = field(default_factory=list)


@dataclass
class ReconcileResult:
    """Outcome of reconciling one node."""

    name: str
    action: Action
    physical_id: Any
    outputs: Dict[str, Any] = field(default_factory=dict)
    previous_physical_id: Optional[str] = None
    attempts: int = 0
    changed_fields: List[str] = field(default_factory=list)


@dataclass
class PruneReport:
    """Outcome of the prune pass."""

    deleted: List[str] = field(default_factory=list)
    failed: List[MaterializationFailure] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class Reconciler:
    """Decides and applies create, update, replace, no-op and delete actions."""

    def __init__(
        self,
        provider: Optional[Provider],
        store: StateStore,
        retry: Optional[RetryConfig] = None,
        dry_run: bool = False,
        audit: Optional[AuditLogger] = None,
    ):
        if provider is None and not dry_run:
            raise ValueError("A provider is required unless dry_run is set")

        self.provider = provider
        self.store = store
        self.retry = retry or get_config().retry
        self.dry_run = dry_run
        self.audit = audit or get_audit_logger()

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def diff(
        self, resource: Resource, desired_inputs: Dict[str, Any], record: Optional[ResourceRecord]
    ) -> Decision:
        """Compare desired inputs with a record and choose an action."""
        if record is None:
            return Decision(Action.CREATE)

        if record.kind != resource.kind.value:
            return Decision(
                Action.REPLACE, changed_fields=["kind"], replace_fields=["kind"]
            )

        secret = resource.secret_fields
        changed: List[str] = []
        for name in sorted(set(desired_inputs) | set(record.inputs)):
            if name not in desired_inputs or name not in record.inputs:
                changed.append(name)
                continue
            value = desired_inputs[name]
            if contains_unknown(value):
                changed.append(name)
                continue
            applied = mask_secrets({name: value}, secret if name in secret else ())[name]
            if applied != record.inputs[name]:
                changed.append(name)

        if not changed:
            return Decision(Action.NOOP)

        specs = resource.schema.inputs
        replace_fields = [name for name in changed if name in specs and not specs[name].mutable]
        if replace_fields:
            return Decision(Action.REPLACE, changed, replace_fields)
        return Decision(Action.UPDATE, changed)

    def decide(self, resource: Resource, desired_inputs: Dict[str, Any]) -> Decision:
        """Choose an action for a node against the store's recorded state."""
        return self.diff(resource, desired_inputs, self.store.get(resource.name))

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    async def reconcile(self, resource: Resource, desired_inputs: Dict[str, Any]) -> ReconcileResult:
        """
        Reconcile one node.

        Args:
            resource: The node being materialized
            desired_inputs: Its inputs with every Output resolved

        Returns:
            ReconcileResult with the physical identity and output values

        Raises:
            MaterializationFailure: If the provider call fails permanently or
                keeps failing transiently past the retry budget
            StateBackendError: If the result cannot be recorded
        """
        record = self.store.get(resource.name)
        decision = self.diff(resource, desired_inputs, record)
        resource.action = decision.action.value

        logger.info(
            "Reconciling resource",
            resource=resource.name,
            kind=resource.kind.value,
            action=decision.action.value,
            changed_fields=decision.changed_fields,
        )

        if self.dry_run:
            return self._preview(resource, decision, record)

        if decision.action == Action.NOOP:
            self.audit.log_action_event(resource.name, resource.kind.value, "NOOP", "unchanged")
            return ReconcileResult(
                name=resource.name,
                action=Action.NOOP,
                physical_id=record.physical_id,
                outputs=dict(record.outputs),
            )

        try:
            resource.schema.validate_resolved(
                resource.name, desired_inputs, secret_fields=resource.secret_fields
            )
        except DeclarationError as e:
            raise MaterializationFailure(resource.name, decision.action.value, e) from e

        if decision.action == Action.CREATE:
            result, attempts = await self._call(
                resource.name,
                Action.CREATE,
                lambda: self.provider.create(resource.kind, resource.name, desired_inputs),
            )
            previous_id = None
        elif decision.action == Action.UPDATE:
            result, attempts = await self._call(
                resource.name,
                Action.UPDATE,
                lambda: self.provider.update(
                    resource.kind, record.physical_id, dict(record.inputs), desired_inputs
                ),
            )
            previous_id = None
        else:
            result, attempts, previous_id = await self._replace(resource, record, desired_inputs)

        await self.store.record(
            ResourceRecord(
                name=resource.name,
                kind=resource.kind.value,
                physical_id=result.physical_id,
                inputs=mask_secrets(desired_inputs, resource.secret_fields),
                outputs=normalize(result.outputs),
                dependencies=sorted(resource.dependencies),
            )
        )

        self.audit.log_action_event(
            resource.name,
            resource.kind.value,
            decision.action.value,
            "applied",
            physical_id=result.physical_id,
            previous_physical_id=previous_id,
            attempts=attempts,
            changed_fields=decision.changed_fields,
        )

        return ReconcileResult(
            name=resource.name,
            action=decision.action,
            physical_id=result.physical_id,
            outputs=dict(result.outputs),
            previous_physical_id=previous_id,
            attempts=attempts,
            changed_fields=decision.changed_fields,
        )

    async def _replace(
        self, resource: Resource, record: ResourceRecord, desired_inputs: Dict[str, Any]
    ):
        old_kind = ResourceKind(record.kind)
        _, delete_attempts = await self._call(
            resource.name,
            Action.REPLACE,
            lambda: self.provider.delete(old_kind, record.physical_id),
        )
        # The old identity is gone; if the create below fails, the next run creates afresh.
        await self.store.forget(resource.name)

        result, create_attempts = await self._call(
            resource.name,
            Action.REPLACE,
            lambda: self.provider.create(resource.kind, resource.name, desired_inputs),
        )
        return result, delete_attempts + create_attempts, record.physical_id

    def _preview(
        self, resource: Resource, decision: Decision, record: Optional[ResourceRecord]
    ) -> ReconcileResult:
        if decision.action in (Action.CREATE, Action.REPLACE):
            physical_id = UNKNOWN
            outputs = {name: UNKNOWN for name in resource.schema.outputs}
        else:
            physical_id = record.physical_id
            outputs = dict(record.outputs)

        return ReconcileResult(
            name=resource.name,
            action=decision.action,
            physical_id=physical_id,
            outputs=outputs,
            previous_physical_id=record.physical_id if record else None,
            changed_fields=decision.changed_fields,
        )

    async def _call(
        self, node: str, action: Action, operation: Callable[[], Awaitable[ProviderResult]]
    ):
        """Run a provider call, retrying transient errors with exponential backoff."""
        attempts = self.retry.max_attempts

        for attempt in range(1, attempts + 1):
            try:
                return await operation(), attempt
            except TransientProviderError as e:
                if attempt == attempts:
                    logger.error(
                        "Provider call failed after all retries",
                        resource=node,
                        action=action.value,
                        attempts=attempts,
                        error=str(e),
                    )
                    self.audit.log_action_event(node, "", action.value, "failed", error=str(e))
                    raise MaterializationFailure(node, action.value, e, attempts=attempt) from e

                delay = self.retry.backoff_for(attempt)
                logger.warning(
                    "Transient provider error, retrying",
                    resource=node,
                    action=action.value,
                    attempt=attempt,
                    max_attempts=attempts,
                    retry_in_seconds=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)
            except ProviderError as e:
                self.audit.log_action_event(node, "", action.value, "failed", error=str(e))
                raise MaterializationFailure(node, action.value, e, attempts=attempt) from e

        raise AssertionError("unreachable")

    # ------------------------------------------------------------------
    # Prune
    # ------------------------------------------------------------------

    def prune_candidates(self, declared: Iterable[str]) -> List[str]:
        """Recorded resources that are not declared, dependents first."""
        declared = set(declared)
        state = self.store.state
        return state.deletion_order(name for name in state.names() if name not in declared)

    async def prune(self, declared: Iterable[str]) -> PruneReport:
        """
        Delete recorded resources that are no longer declared.

        Deletions run one at a time, dependents before the resources they depend
        on. If a deletion fails, the resources it depends on are kept.
        """
        report = PruneReport()
        candidates = self.prune_candidates(declared)
        if self.dry_run:
            report.deleted = candidates
            return report

        blocked: set = set()
        for name in candidates:
            record = self.store.get(name)
            if name in blocked:
                report.skipped.append(name)
                blocked.update(record.dependencies)
                continue

            try:
                await self._call(
                    name,
                    Action.DELETE,
                    lambda: self.provider.delete(ResourceKind(record.kind), record.physical_id),
                )
            except MaterializationFailure as failure:
                report.failed.append(failure)
                blocked.update(record.dependencies)
                continue

            await self.store.forget(name)
            report.deleted.append(name)
            self.audit.log_action_event(
                name, record.kind, "DELETE", "applied", physical_id=record.physical_id
            )

        logger.info(
            "Prune pass finished",
            deleted=len(report.deleted),
            failed=len(report.failed),
            skipped=len(report.skipped),
        )
        return report
