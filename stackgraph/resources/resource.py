"""
Resource nodes: declared units of desired infrastructure state.
"""

from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Dict, FrozenSet, Optional, Sequence

from ..errors import DeclarationError
from ..output import Output, is_secret_value, referenced_resources
from .schema import KindSchema, ResourceKind, get_schema


class NodeState(Enum):
    """Lifecycle of a resource node within one run."""

    DECLARED = auto()  # Added to the graph
    PLANNED = auto()  # Part of a computed execution order
    MATERIALIZING = auto()  # Dispatched; provider work in progress
    MATERIALIZED = auto()  # Desired state reached, outputs resolved
    FAILED = auto()  # Materialization failed, outputs failed
    SKIPPED = auto()  # Never attempted because a dependency failed or the run stopped


TERMINAL_STATES = frozenset({NodeState.MATERIALIZED, NodeState.FAILED, NodeState.SKIPPED})


class Resource:
    """One declared resource.

    ``inputs`` maps field names to literal values or Outputs (possibly nested in
    lists and dicts). ``outputs`` holds one pending Output per schema output
    field plus ``id``; they are resolved by the scheduler once the resource has
    been materialized.
    """

    def __init__(
        self,
        name: str,
        kind: ResourceKind,
        inputs: Dict[str, Any],
        depends_on: Sequence["Resource"] = (),
        declaration_index: int = 0,
    ):
        if not name:
            raise DeclarationError("<unnamed>", "logical name cannot be empty")

        self.name = name
        self.kind = ResourceKind(kind)
        self.schema: KindSchema = get_schema(self.kind)

        self.schema.validate(name, inputs)
        self.inputs: Dict[str, Any] = self.schema.with_defaults(inputs)
        self.explicit_dependencies: FrozenSet[str] = frozenset(r.name for r in depends_on)
        self.declaration_index = declaration_index

        self.outputs: Dict[str, Output] = {
            field: Output(name=f"{name}.{field}", resources={name})
            for field in self.schema.output_fields
        }

        # Run-time bookkeeping, written only by the scheduler
        self.state = NodeState.DECLARED
        self.action: Optional[str] = None
        self.physical_id: Optional[str] = None
        self.error: Optional[BaseException] = None
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None

    @property
    def id(self) -> Output:
        """Output of the resource's physical identity."""
        return self.outputs["id"]

    def output(self, field: str) -> Output:
        """Output of one schema output field."""
        try:
            return self.outputs[field]
        except KeyError:
            raise DeclarationError(
                self.name,
                f"{self.kind.value} has no output '{field}'",
                available=list(self.outputs),
            ) from None

    @property
    def dependencies(self) -> FrozenSet[str]:
        """Logical names this resource depends on (input references and depends_on)."""
        return referenced_resources(self.inputs) | self.explicit_dependencies

    @property
    def secret_fields(self) -> FrozenSet[str]:
        """Input fields whose values derive from a secret Output."""
        return frozenset(name for name, value in self.inputs.items() if is_secret_value(value))

    @property
    def is_settled(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    def mark_materializing(self):
        self.state = NodeState.MATERIALIZING
        self.started_at = datetime.now(timezone.utc)

    def resolve_outputs(self, physical_id: str, values: Dict[str, Any]):
        """Mark the resource materialized and resolve every output."""
        self.physical_id = physical_id
        self.state = NodeState.MATERIALIZED
        self.finished_at = datetime.now(timezone.utc)

        for field, output in self.outputs.items():
            if field == "id":
                output.set_value(physical_id)
            else:
                output.set_value(values.get(field))

    def fail_outputs(
        self, state: NodeState, error: BaseException, output_error: Optional[BaseException] = None
    ):
        """Mark the resource failed or skipped and fail every pending output.

        ``error`` is recorded on the node. Outputs fail with ``output_error`` when
        given, so a skipped node can hand on the failure that caused the skip.
        """
        self.state = state
        self.error = error
        self.finished_at = datetime.now(timezone.utc)

        for output in self.outputs.values():
            if output.is_pending:
                output.set_error(output_error if output_error is not None else error)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the node to a dictionary representation (secret inputs redacted)."""
        secret = self.secret_fields
        return {
            "name": self.name,
            "kind": self.kind.value,
            "state": self.state.name,
            "action": self.action,
            "physical_id": self.physical_id,
            "dependencies": sorted(self.dependencies),
            "inputs": {
                k: ("[secret]" if k in secret else repr(v)) for k, v in self.inputs.items()
            },
            "error": str(self.error) if self.error else None,
            "duration_seconds": self.duration_seconds,
        }

    def __repr__(self) -> str:
        return f"Resource({self.kind.value}:{self.name} {self.state.name})"
