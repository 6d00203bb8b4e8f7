"""Recorded state: the only durable artifact of a stack.

Recorded state maps each logical name to the physical identity and the
last-applied inputs and outputs of the resource. It is loaded once at the start of
a run and written back after every successful reconciliation. Writes go through
``StateStore``, which serializes them so concurrent node tasks never interleave
partial writes.
"""

import asyncio
import hashlib
import json
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import StateBackendError
from .logging import get_logger

logger = get_logger(__name__)

STATE_VERSION = 1
SECRET_MARKER = "__secret_sha256__"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ResourceRecord(BaseModel):
    """Last-known state of one resource."""

    name: str
    kind: str
    physical_id: str
    inputs: Dict[str, Any] = Field(default_factory=dict)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    dependencies: List[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)


class RecordedState(BaseModel):
    """All resources recorded for one stack."""

    version: int = STATE_VERSION
    stack: str = ""
    serial: int = 0
    resources: Dict[str, ResourceRecord] = Field(default_factory=dict)

    def get(self, name: str) -> Optional[ResourceRecord]:
        return self.resources.get(name)

    def names(self) -> List[str]:
        return list(self.resources)

    def deletion_order(self, names: Iterable[str]) -> List[str]:
        """Order ``names`` so every resource comes before the resources it depends on."""
        pending = set(names)
        order: List[str] = []
        visited: set = set()

        def _visit(name: str):
            if name in visited:
                return
            visited.add(name)
            # Dependents recorded among the pending set are deleted first.
            for other in sorted(pending):
                record = self.resources.get(other)
                if record and name in record.dependencies:
                    _visit(other)
            order.append(name)

        for name in sorted(pending):
            _visit(name)
        return order


# ---------------------------------------------------------------------------
# Value normalization
# ---------------------------------------------------------------------------


def normalize(value: Any) -> Any:
    """JSON round-trip a value so it compares equal to its recorded form."""
    return json.loads(json.dumps(value, sort_keys=True, default=str))


def _reveal(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if hasattr(value, "reveal"):
        return value.reveal()
    return str(value)


def secret_digest(value: Any) -> Dict[str, str]:
    """Recorded stand-in for a secret value."""
    payload = json.dumps(value, sort_keys=True, default=_reveal).encode("utf-8")
    return {SECRET_MARKER: hashlib.sha256(payload).hexdigest()}


def mask_secrets(inputs: Dict[str, Any], secret_fields: Iterable[str]) -> Dict[str, Any]:
    """Normalized copy of ``inputs`` with secret fields replaced by their digest."""
    secret_fields = set(secret_fields)
    return {
        name: (secret_digest(value) if name in secret_fields else normalize(value))
        for name, value in inputs.items()
    }


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class StateBackend(ABC):
    """Durable storage for recorded state."""

    @abstractmethod
    def load(self) -> RecordedState:
        """Load the recorded state (an empty state if none exists yet)."""

    @abstractmethod
    def save(self, state: RecordedState) -> None:
        """Persist the recorded state."""


class MemoryStateBackend(StateBackend):
    """In-process backend, mostly for tests and dry runs."""

    def __init__(self, initial: Optional[RecordedState] = None):
        self._state = initial.model_copy(deep=True) if initial else RecordedState()
        self.save_count = 0
        self.fail_on_save = False

    def load(self) -> RecordedState:
        return self._state.model_copy(deep=True)

    def save(self, state: RecordedState) -> None:
        if self.fail_on_save:
            raise StateBackendError("save", "memory backend configured to fail")
        self._state = state.model_copy(deep=True)
        self.save_count += 1

    @property
    def state(self) -> RecordedState:
        return self._state


class FileStateBackend(StateBackend):
    """JSON file backend. Saves replace the file atomically."""

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> RecordedState:
        if not self.path.exists():
            return RecordedState()
        try:
            data = self.path.read_text(encoding="utf-8")
            state = RecordedState.model_validate_json(data)
        except OSError as e:
            raise StateBackendError("load", str(e), path=str(self.path)) from e
        except ValidationError as e:
            raise StateBackendError(
                "load", f"corrupt state file: {e.error_count()} errors", path=str(self.path)
            ) from e

        if state.version > STATE_VERSION:
            raise StateBackendError(
                "load", f"unsupported state version {state.version}", path=str(self.path)
            )
        return state

    def save(self, state: RecordedState) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.path.name}.", dir=str(self.path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(state.model_dump_json(indent=2))
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StateBackendError("save", str(e), path=str(self.path)) from e


def get_state_backend(kind: str, path: Optional[str] = None) -> StateBackend:
    """Factory for configured state backends."""
    if kind == "memory":
        return MemoryStateBackend()
    if kind == "file":
        return FileStateBackend(path or ".stackgraph/state.json")
    raise ValueError(f"Unknown state backend: {kind}")


# ---------------------------------------------------------------------------
# Serialized access
# ---------------------------------------------------------------------------


class StateStore:
    """Run-scoped view of recorded state with serialized, incremental writes."""

    def __init__(self, backend: StateBackend, stack: str = ""):
        self.backend = backend
        self.stack = stack
        self.state = RecordedState(stack=stack)
        self._lock = asyncio.Lock()
        self.write_count = 0

    def load(self) -> RecordedState:
        """Load state from the backend. Called once per run."""
        try:
            self.state = self.backend.load()
        except StateBackendError:
            raise
        except Exception as e:
            raise StateBackendError("load", str(e)) from e

        if not self.state.stack:
            self.state.stack = self.stack

        logger.info(
            "Recorded state loaded",
            stack=self.stack,
            resources=len(self.state.resources),
            serial=self.state.serial,
        )
        return self.state

    def get(self, name: str) -> Optional[ResourceRecord]:
        return self.state.get(name)

    async def record(self, record: ResourceRecord):
        """Write one resource record and persist the state."""
        async with self._lock:
            previous = self.state.resources.get(record.name)
            if previous is not None:
                record.created_at = previous.created_at
            self.state.resources[record.name] = record
            await self._persist(rollback=lambda: self._restore(record.name, previous))

    async def forget(self, name: str):
        """Remove one resource record and persist the state."""
        async with self._lock:
            previous = self.state.resources.pop(name, None)
            if previous is None:
                return
            await self._persist(rollback=lambda: self._restore(name, previous))

    def _restore(self, name: str, previous: Optional[ResourceRecord]):
        if previous is None:
            self.state.resources.pop(name, None)
        else:
            self.state.resources[name] = previous

    async def _persist(self, rollback):
        self.state.serial += 1
        snapshot = self.state.model_copy(deep=True)
        try:
            await asyncio.to_thread(self.backend.save, snapshot)
        except Exception as e:
            self.state.serial -= 1
            rollback()
            if isinstance(e, StateBackendError):
                raise
            raise StateBackendError("save", str(e)) from e
        self.write_count += 1
