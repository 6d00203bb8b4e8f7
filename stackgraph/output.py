"""
Output: lazily resolved, composable values

An Output stands for a value that may not be known yet, typically an attribute a
provider only reports once a resource exists (a VPC id, a repository URL, an
authorization token). Outputs are single-assignment: each one is resolved or
failed exactly once, after which it never changes.

Composition never blocks. ``map`` and ``combine`` register a continuation on
their sources and immediately return a new pending Output; the continuation runs
at most once, when (and only if) every source resolves successfully. Failures
travel downstream wrapped in an ``OutputError`` that keeps the original error as
its cause and records the names of the Outputs it travelled through.

Every Output also remembers the logical names of the resources it depends on and
whether it carries a secret. Both properties are inherited by derived Outputs;
the first is how the graph builder infers edges, the second keeps secret values
out of logs and recorded state. Derived Outputs also keep their sources, so the
graph builder can tell which resource an input value really came from.
"""

import asyncio
from enum import Enum, auto
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Iterable,
    List,
    Optional,
    Tuple,
    TypeVar,
)

from .errors import OutputAlreadySetError, OutputError, StackGraphError

T = TypeVar("T")
U = TypeVar("U")


class OutputState(Enum):
    """Lifecycle of an Output."""

    PENDING = auto()
    RESOLVED = auto()
    FAILED = auto()


class _Unknown:
    """Placeholder for a value only a provider call could produce (used by plan)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "<unknown>"

    def __reduce__(self):
        return (_Unknown, ())


UNKNOWN = _Unknown()


def contains_unknown(value: Any) -> bool:
    """Check whether a plain structure contains the UNKNOWN placeholder anywhere."""
    if value is UNKNOWN:
        return True
    if isinstance(value, dict):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, (list, tuple, set, frozenset)):
        return any(contains_unknown(v) for v in value)
    return False


class Output(Generic[T]):
    """A single-assignment future value produced by infrastructure materialization."""

    def __init__(
        self,
        name: str = "output",
        resources: Iterable[str] = (),
        secret: bool = False,
        sources: Iterable["Output[Any]"] = (),
    ):
        self.name = name
        self.resources = frozenset(resources)
        self.sources: Tuple["Output[Any]", ...] = tuple(sources)
        self.is_secret = secret

        self._state = OutputState.PENDING
        self._value: Any = None
        self._error: Optional[OutputError] = None
        self._callbacks: List[Callable[["Output[T]"], None]] = []

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_value(cls, value: T, name: str = "literal", secret: bool = False) -> "Output[T]":
        """Lift a plain value into an already resolved Output."""
        output = cls(name=name, secret=secret)
        output.set_value(value)
        return output

    @classmethod
    def secret(cls, value: T, name: str = "secret") -> "Output[T]":
        """Lift a plain value into a resolved secret Output."""
        return cls.from_value(value, name=name, secret=True)

    @staticmethod
    def combine(*outputs: "Output[Any]", name: Optional[str] = None) -> "Output[Tuple[Any, ...]]":
        """Output of the tuple of all ``outputs`` values, in argument order.

        Resolves once every input resolves; fails as soon as any input fails.
        """
        resources = frozenset().union(*(o.resources for o in outputs)) if outputs else frozenset()
        combined: Output[Tuple[Any, ...]] = Output(
            name=name or "combine(" + ", ".join(o.name for o in outputs) + ")",
            resources=resources,
            secret=any(o.is_secret for o in outputs),
            sources=outputs,
        )

        if not outputs:
            combined.set_value(())
            return combined

        remaining = [len(outputs)]

        def _settled(source: "Output[Any]"):
            if not combined.is_pending:
                return
            if source.is_failed:
                combined.set_error(source._error.extended(combined.name))
                return
            remaining[0] -= 1
            if remaining[0] == 0:
                combined.set_value(tuple(o._value for o in outputs))

        for output in outputs:
            output.add_done_callback(_settled)

        return combined

    @staticmethod
    def all(structure: Any, name: Optional[str] = None) -> "Output[Any]":
        """Output of ``structure`` with every embedded Output replaced by its value.

        ``structure`` may be any nesting of dicts, lists and tuples. Plain values
        are kept as they are.
        """
        embedded = collect_outputs(structure)
        combined = Output.combine(*embedded, name=name or "all")
        result: Output[Any] = Output(
            name=combined.name,
            resources=combined.resources,
            secret=combined.is_secret,
            sources=(combined,),
        )

        # Substitution runs even when some values are UNKNOWN, so callers can
        # still tell which fields are known.
        def _substitute(source: "Output[Tuple[Any, ...]]"):
            if source.is_failed:
                result.set_error(source._error)
                return
            by_id = {id(o): v for o, v in zip(embedded, source._value)}
            result.set_value(substitute_outputs(structure, by_id))

        combined.add_done_callback(_substitute)
        return result

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> OutputState:
        return self._state

    @property
    def is_pending(self) -> bool:
        return self._state is OutputState.PENDING

    @property
    def is_resolved(self) -> bool:
        return self._state is OutputState.RESOLVED

    @property
    def is_failed(self) -> bool:
        return self._state is OutputState.FAILED

    @property
    def is_unknown(self) -> bool:
        return self.is_resolved and contains_unknown(self._value)

    @property
    def error(self) -> Optional[OutputError]:
        return self._error

    def result(self) -> T:
        """Return the value without waiting.

        Raises the failure if the Output failed, and ``StackGraphError`` if it is
        still pending.
        """
        if self.is_resolved:
            return self._value
        if self.is_failed:
            raise self._error
        raise StackGraphError(f"Output {self.name} is not resolved yet", {"output": self.name})

    def set_value(self, value: T):
        """Resolve the Output. Allowed exactly once."""
        if not self.is_pending:
            raise OutputAlreadySetError(self.name)
        self._value = value
        self._state = OutputState.RESOLVED
        self._fire()

    def set_error(self, error: BaseException):
        """Fail the Output. Allowed exactly once."""
        if not self.is_pending:
            raise OutputAlreadySetError(self.name)
        if not isinstance(error, OutputError):
            error = OutputError(error)
        self._error = error
        self._state = OutputState.FAILED
        self._fire()

    def add_done_callback(self, callback: Callable[["Output[T]"], None]):
        """Call ``callback(self)`` once the Output settles (immediately if it has)."""
        if self.is_pending:
            self._callbacks.append(callback)
        else:
            callback(self)

    def _fire(self):
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(self)

    async def resolve(self) -> T:
        """Wait until the Output settles, then return its value or raise its failure."""
        if self.is_pending:
            loop = asyncio.get_running_loop()
            waiter = loop.create_future()

            def _wake(_output):
                if not waiter.done():
                    waiter.set_result(None)

            self.add_done_callback(_wake)
            await waiter

        return self.result()

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def map(self, func: Callable[[T], Any], name: Optional[str] = None) -> "Output[Any]":
        """Output of ``func(value)``, computed once this Output resolves.

        ``func`` may return a plain value or another Output, which is flattened.
        It is never called if this Output fails, nor when the value is UNKNOWN
        (the result is then UNKNOWN as well).
        """
        derived: Output[Any] = Output(
            name=name or f"{self.name}.map",
            resources=self.resources,
            secret=self.is_secret,
            sources=(self,),
        )

        def _continue(source: "Output[T]"):
            if source.is_failed:
                derived.set_error(source._error.extended(derived.name))
                return

            if contains_unknown(source._value):
                derived.set_value(UNKNOWN)
                return

            try:
                result = func(source._value)
            except Exception as e:
                derived.set_error(OutputError(e, [derived.name]))
                return

            if isinstance(result, Output):
                derived.is_secret = derived.is_secret or result.is_secret
                result.add_done_callback(derived._adopt)
            else:
                derived.set_value(result)

        self.add_done_callback(_continue)
        return derived

    def _adopt(self, inner: "Output[Any]"):
        if inner.is_failed:
            self.set_error(inner._error.extended(self.name))
        else:
            self.set_value(inner._value)

    def __getitem__(self, key: Any) -> "Output[Any]":
        """Output of ``value[key]``."""
        return self.map(lambda value: value[key], name=f"{self.name}[{key!r}]")

    def __iter__(self):
        raise TypeError(f"Output {self.name} is not iterable; use map() instead")

    def __bool__(self):
        raise TypeError(
            f"Output {self.name} has no truth value before resolution; use map() instead"
        )

    def __repr__(self) -> str:
        if self.is_resolved:
            shown = "[secret]" if self.is_secret else repr(self._value)
            return f"Output({self.name}={shown})"
        if self.is_failed:
            return f"Output({self.name} failed: {self._error})"
        return f"Output({self.name} pending)"


# ---------------------------------------------------------------------------
# Structure helpers
# ---------------------------------------------------------------------------


def collect_outputs(value: Any) -> List[Output]:
    """Every Output embedded in ``value``, depth first, without duplicates."""
    found: Dict[int, Output] = {}

    def _walk(item: Any):
        if isinstance(item, Output):
            found.setdefault(id(item), item)
        elif isinstance(item, dict):
            for v in item.values():
                _walk(v)
        elif isinstance(item, (list, tuple)):
            for v in item:
                _walk(v)

    _walk(value)
    return list(found.values())


def substitute_outputs(value: Any, resolved: Dict[int, Any]) -> Any:
    """Copy of ``value`` with each embedded Output replaced from ``resolved`` (keyed by id)."""
    if isinstance(value, Output):
        return resolved[id(value)]
    if isinstance(value, dict):
        return {k: substitute_outputs(v, resolved) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute_outputs(v, resolved) for v in value]
    if isinstance(value, tuple):
        return tuple(substitute_outputs(v, resolved) for v in value)
    return value


def referenced_resources(value: Any) -> frozenset:
    """Logical names of all resources that Outputs embedded in ``value`` depend on."""
    return frozenset().union(*(o.resources for o in collect_outputs(value)))


def is_secret_value(value: Any) -> bool:
    """Check whether any Output embedded in ``value`` is secret."""
    return any(o.is_secret for o in collect_outputs(value))


def origin_outputs(value: Any) -> List[Output]:
    """Underived Outputs that Outputs embedded in ``value`` were built from.

    Only origins that depend on a resource are returned: these are the outputs a
    resource created when it was declared.
    """
    origins: List[Output] = []
    seen = set()
    pending = collect_outputs(value)
    while pending:
        output = pending.pop()
        if id(output) in seen:
            continue
        seen.add(id(output))
        if output.sources:
            pending.extend(output.sources)
        elif output.resources:
            origins.append(output)
    return origins
