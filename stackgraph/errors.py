"""
Error Definitions for stackgraph

This module defines the exception hierarchy used throughout stackgraph. Errors
fall into four families: declaration errors (fatal, raised before any provider
call), provider errors (transient or permanent), state backend errors (fatal for
the run) and Output errors (failures carried through the async value engine).
"""

from typing import Any, Dict, List, Optional


class StackGraphError(Exception):
    """Base exception class for all stackgraph errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(StackGraphError):
    """Raised when configuration is invalid or inconsistent."""

    def __init__(self, field: str, value: Any, expected: str, **details):
        message = f"Invalid configuration for {field}: got {value}, expected {expected}"

        super().__init__(message, {"field": field, "value": value, "expected": expected, **details})
        self.field = field
        self.value = value
        self.expected = expected


# ---------------------------------------------------------------------------
# Declaration errors
# ---------------------------------------------------------------------------


class DeclarationError(StackGraphError):
    """Raised when a resource declaration is invalid. Always fatal and pre-execution."""

    def __init__(self, resource: str, reason: str, **details):
        message = f"Invalid declaration of {resource}: {reason}"

        super().__init__(message, details)
        self.resource = resource
        self.reason = reason


class CyclicDependencyError(DeclarationError):
    """Raised when a declaration would close a cycle in the dependency graph."""

    def __init__(self, resource: str, cycle: List[str], **details):
        super().__init__(
            resource,
            f"dependency cycle {' -> '.join(cycle)}",
            cycle=cycle,
            **details,
        )
        self.cycle = cycle


class DanglingReferenceError(DeclarationError):
    """Raised when an input references a resource that was never declared."""

    def __init__(self, resource: str, missing: str, **details):
        super().__init__(resource, f"references undeclared resource {missing}", **details)
        self.missing = missing


class DuplicateResourceError(DeclarationError):
    """Raised when a logical name is declared twice."""

    def __init__(self, resource: str, **details):
        super().__init__(resource, "logical name already declared", **details)


class InputValidationError(DeclarationError):
    """Raised when an input violates its kind schema."""

    def __init__(self, resource: str, field: str, value: Any, constraint: str, **details):
        super().__init__(
            resource,
            f"input {field}={value!r} violates constraint '{constraint}'",
            field=field,
            **details,
        )
        self.field = field
        self.value = value
        self.constraint = constraint


# ---------------------------------------------------------------------------
# Provider and materialization errors
# ---------------------------------------------------------------------------


class ProviderError(StackGraphError):
    """Raised by a provider when a create, update or delete call fails."""

    def __init__(self, operation: str, reason: str, transient: bool = False, **details):
        message = f"Provider error during {operation}: {reason}"

        super().__init__(
            message, {"operation": operation, "transient": transient, **details}
        )
        self.operation = operation
        self.reason = reason
        self.transient = transient


class TransientProviderError(ProviderError):
    """A provider failure that may succeed on retry (throttling, timeouts)."""

    def __init__(self, operation: str, reason: str, **details):
        super().__init__(operation, reason, transient=True, **details)


class PermanentProviderError(ProviderError):
    """A provider failure that will not succeed on retry (validation, quota, auth)."""

    def __init__(self, operation: str, reason: str, **details):
        super().__init__(operation, reason, transient=False, **details)


class MaterializationFailure(StackGraphError):
    """Raised when a node could not be brought to its desired state."""

    def __init__(self, node: str, action: str, cause: BaseException, attempts: int = 1, **details):
        message = f"Failed to {action.lower()} {node}: {cause}"

        super().__init__(
            message, {"node": node, "action": action, "attempts": attempts, **details}
        )
        self.node = node
        self.action = action
        self.cause = cause
        self.attempts = attempts


class StateBackendError(StackGraphError):
    """Raised when recorded state cannot be loaded or saved."""

    def __init__(self, operation: str, reason: str, **details):
        message = f"State backend error during {operation}: {reason}"

        super().__init__(message, {"operation": operation, **details})
        self.operation = operation
        self.reason = reason


# ---------------------------------------------------------------------------
# Output errors
# ---------------------------------------------------------------------------


class OutputError(StackGraphError):
    """Failure carried by an Output.

    ``cause`` is always the original error. ``chain`` lists, in order, the names
    of the dependent Outputs the failure travelled through.
    """

    def __init__(self, cause: BaseException, chain: Optional[List[str]] = None):
        chain = list(chain or [])
        message = str(cause)
        if chain:
            message = f"{message} (via {' -> '.join(chain)})"

        super().__init__(message)
        self.cause = cause
        self.chain = chain
        self.__cause__ = cause

    def extended(self, name: str) -> "OutputError":
        """Return a copy of this error with ``name`` appended to the chain."""
        return OutputError(self.cause, self.chain + [name])

    @property
    def root_cause(self) -> BaseException:
        cause = self.cause
        while isinstance(cause, OutputError):
            cause = cause.cause
        return cause


class OutputAlreadySetError(StackGraphError):
    """Raised when an Output is resolved or failed a second time."""

    def __init__(self, name: str):
        super().__init__(f"Output {name} has already been settled", {"output": name})
        self.name = name


class DispatchCancelledError(StackGraphError):
    """Raised inside a unit of work that was queued but never started before a stop."""

    def __init__(self, key: str):
        super().__init__(f"Dispatch of {key} cancelled before start", {"key": key})
        self.key = key


class SkippedError(StackGraphError):
    """Failure assigned to the Outputs of nodes that were never attempted."""

    def __init__(self, node: str, reason: str):
        super().__init__(f"{node} was skipped: {reason}", {"node": node})
        self.node = node
        self.reason = reason


# Convenience functions for common error patterns


def raise_declaration_error(resource: str, reason: str, **details):
    """Raise a declaration error with helpful context."""
    if "cycle" in reason.lower():
        details.setdefault("suggestion", "Remove the explicit depends_on that closes the loop")
    elif "undeclared" in reason.lower():
        details.setdefault("suggestion", "Declare the referenced resource before its dependents")

    raise DeclarationError(resource, reason, **details)


def raise_configuration_error(field: str, value: Any, expected: str, **details):
    """Raise a configuration error with helpful context."""
    suggestions = {
        "max_in_flight": "Set STACKGRAPH_MAX_IN_FLIGHT between 1 and 256",
        "retry_attempts": "Set STACKGRAPH_RETRY_ATTEMPTS to 1 or more",
        "state_backend": "Set STACKGRAPH_STATE_BACKEND to 'file' or 'memory'",
        "log_level": "Use one of DEBUG, INFO, WARNING, ERROR, CRITICAL",
    }

    suggestion = suggestions.get(field.lower())
    if suggestion:
        details["suggestion"] = suggestion

    raise ConfigurationError(field, value, expected, **details)
