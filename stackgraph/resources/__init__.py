"""
Resource kinds, schemas and declaration functions.
"""

from .resource import TERMINAL_STATES, NodeState, Resource
from .schema import SCHEMAS, FieldSpec, KindSchema, ResourceKind, get_schema

__all__ = [
    "Resource",
    "NodeState",
    "TERMINAL_STATES",
    "ResourceKind",
    "KindSchema",
    "FieldSpec",
    "SCHEMAS",
    "get_schema",
]
