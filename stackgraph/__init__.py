"""
stackgraph - declarative infrastructure as a graph of lazily resolved values.

A program declares resources on an explicit builder. Inputs may reference the
outputs of other resources; those references become the edges of a dependency
graph that is materialized in parallel, reconciled against recorded state, and
resolved back into plain exported values.
"""

from .config import StackGraphConfig, get_config, reset_config, set_config
from .errors import (
    ConfigurationError,
    CyclicDependencyError,
    DanglingReferenceError,
    DeclarationError,
    DuplicateResourceError,
    InputValidationError,
    MaterializationFailure,
    OutputError,
    PermanentProviderError,
    ProviderError,
    SkippedError,
    StackGraphError,
    StateBackendError,
    TransientProviderError,
)
from .output import UNKNOWN, Output
from .provider import Provider, ProviderResult, SimulatedProvider
from .reconciler import Action, Reconciler
from .resources import NodeState, Resource, ResourceKind
from .scheduler import ExecutionReport, NodeFailure, PlanSummary, ResourceGraph, RunStatus
from .secrets import RegistryTokenSource, SecretSource, StaticSecretSource
from .stack import RunResult, Stack, StackContext
from .state import FileStateBackend, MemoryStateBackend, RecordedState, StateBackend

__version__ = "0.1.0"

__all__ = [
    "StackGraphConfig",
    "get_config",
    "set_config",
    "reset_config",
    "Output",
    "UNKNOWN",
    "Resource",
    "ResourceKind",
    "NodeState",
    "ResourceGraph",
    "ExecutionReport",
    "NodeFailure",
    "PlanSummary",
    "RunStatus",
    "Action",
    "Reconciler",
    "Provider",
    "ProviderResult",
    "SimulatedProvider",
    "StateBackend",
    "FileStateBackend",
    "MemoryStateBackend",
    "RecordedState",
    "SecretSource",
    "StaticSecretSource",
    "RegistryTokenSource",
    "Stack",
    "StackContext",
    "RunResult",
    "StackGraphError",
    "ConfigurationError",
    "DeclarationError",
    "CyclicDependencyError",
    "DanglingReferenceError",
    "DuplicateResourceError",
    "InputValidationError",
    "ProviderError",
    "TransientProviderError",
    "PermanentProviderError",
    "MaterializationFailure",
    "StateBackendError",
    "OutputError",
    "SkippedError",
]
