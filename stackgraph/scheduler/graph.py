"""
Resource Graph Implementation for stackgraph

This module provides the directed acyclic graph of declared resources. The graph
is built incrementally: each declaration scans its inputs for embedded Outputs and
adds one edge per referenced resource. Cycles are rejected at the offending
insertion, so a bad declaration fails immediately instead of after the whole
program has run.
"""

import heapq
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set

from ..errors import CyclicDependencyError, DanglingReferenceError, DuplicateResourceError
from ..logging import get_logger
from ..output import origin_outputs
from ..resources.resource import NodeState, Resource
from ..resources.schema import ResourceKind

logger = get_logger(__name__)

# DFS colors
_WHITE, _GRAY, _BLACK = 0, 1, 2


@dataclass
class ResourceEdge:
    """Represents an edge (dependency) in the resource graph."""

    from_name: str
    to_name: str
    edge_type: str = "reference"  # "reference" (inferred from inputs) or "explicit"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __hash__(self):
        return hash((self.from_name, self.to_name))

    def __eq__(self, other):
        if not isinstance(other, ResourceEdge):
            return NotImplemented
        return (self.from_name, self.to_name) == (other.from_name, other.to_name)


class ResourceGraph:
    """
    Directed Acyclic Graph of resources, built one declaration at a time.

    A ``ResourceGraph`` is the explicit builder handed to declaration functions;
    there is no process-wide registry. Edge A -> B exists iff an input of B
    references an output of A, or B names A in ``depends_on``.
    """

    def __init__(self, graph_id: Optional[str] = None):
        self.graph_id = graph_id or str(uuid.uuid4())[:8]
        self.nodes: Dict[str, Resource] = {}
        self.edges: Set[ResourceEdge] = set()

        self._dependencies: Dict[str, Set[str]] = {}
        self._dependents: Dict[str, Set[str]] = {}

        self._topological_order: Optional[List[str]] = None

        self.created_at = datetime.now(timezone.utc)

    # ------------------------------------------------------------------
    # Declaration
    # ------------------------------------------------------------------

    def declare(
        self,
        name: str,
        kind: ResourceKind,
        inputs: Optional[Dict[str, Any]] = None,
        depends_on: Sequence[Resource] = (),
    ) -> Resource:
        """
        Declare a resource and register its dependency edges.

        Args:
            name: Logical name, unique within the graph and stable across runs
            kind: Resource kind
            inputs: Input fields; values may be literals or Outputs
            depends_on: Additional resources that must materialize first

        Returns:
            The declared Resource

        Raises:
            DuplicateResourceError: If the logical name is already declared
            InputValidationError: If inputs violate the kind schema
            DanglingReferenceError: If an input references an undeclared resource
            CyclicDependencyError: If the resource references itself
        """
        if name in self.nodes:
            raise DuplicateResourceError(name)

        resource = Resource(
            name, kind, inputs or {}, depends_on, declaration_index=len(self.nodes)
        )

        dependencies = resource.dependencies
        if name in dependencies:
            raise CyclicDependencyError(name, [name, name])

        for dep_name in sorted(dependencies):
            if dep_name not in self.nodes:
                raise DanglingReferenceError(name, dep_name)
        for dep in depends_on:
            if self.nodes.get(dep.name) is not dep:
                raise DanglingReferenceError(name, dep.name, note="declared in another graph")
        for origin in origin_outputs(resource.inputs):
            for dep_name in origin.resources:
                if not any(o is origin for o in self.nodes[dep_name].outputs.values()):
                    raise DanglingReferenceError(
                        name, dep_name, note="output of a resource in another graph"
                    )

        self.nodes[name] = resource
        self._dependencies[name] = set()
        self._dependents[name] = set()

        for dep_name in sorted(dependencies, key=lambda n: self.nodes[n].declaration_index):
            edge_type = "explicit" if dep_name in resource.explicit_dependencies else "reference"
            self._insert_edge(dep_name, name, edge_type)

        self._invalidate_caches()

        logger.debug(
            "Resource declared",
            resource=name,
            kind=resource.kind.value,
            graph_id=self.graph_id,
            dependencies=len(dependencies),
        )

        return resource

    def add_dependency(self, from_name: str, to_name: str):
        """
        Add an explicit edge between two declared resources.

        Args:
            from_name: Resource that must materialize first
            to_name: Resource that depends on it

        Raises:
            DanglingReferenceError: If either resource is not declared
            CyclicDependencyError: If the edge would close a cycle
        """
        for name in (from_name, to_name):
            if name not in self.nodes:
                raise DanglingReferenceError(to_name, name)

        if from_name == to_name:
            raise CyclicDependencyError(to_name, [from_name, to_name])

        self._insert_edge(from_name, to_name, "explicit")
        target = self.nodes[to_name]
        target.explicit_dependencies = target.explicit_dependencies | {from_name}
        self._invalidate_caches()

    def _insert_edge(self, from_name: str, to_name: str, edge_type: str):
        if from_name in self._dependencies[to_name]:
            return

        cycle = self._find_path(to_name, from_name)
        if cycle is not None:
            logger.warning("Dependency would create cycle", from_resource=from_name, to_resource=to_name)
            raise CyclicDependencyError(to_name, cycle + [to_name])

        self.edges.add(ResourceEdge(from_name, to_name, edge_type))
        self._dependencies[to_name].add(from_name)
        self._dependents[from_name].add(to_name)

    def _find_path(self, start: str, goal: str) -> Optional[List[str]]:
        """Path from ``start`` to ``goal`` along dependent edges, found by DFS coloring."""
        color: Dict[str, int] = {}
        stack: List[tuple] = [(start, iter(sorted(self._dependents.get(start, ()))))]
        path: List[str] = [start]
        color[start] = _GRAY

        if start == goal:
            return path

        while stack:
            node, children = stack[-1]
            advanced = False
            for child in children:
                state = color.get(child, _WHITE)
                if child == goal:
                    return path + [child]
                if state == _WHITE:
                    color[child] = _GRAY
                    stack.append((child, iter(sorted(self._dependents.get(child, ())))))
                    path.append(child)
                    advanced = True
                    break
            if not advanced:
                color[node] = _BLACK
                stack.pop()
                path.pop()

        return None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def dependencies_of(self, name: str) -> Set[str]:
        """Direct dependencies of a resource."""
        return set(self._dependencies[name])

    def dependents_of(self, name: str) -> Set[str]:
        """Direct dependents of a resource."""
        return set(self._dependents[name])

    def descendants_of(self, name: str) -> List[str]:
        """All transitive dependents of a resource, in declaration order."""
        seen: Set[str] = set()
        queue = deque(self._dependents[name])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(self._dependents[current])
        return self._in_declaration_order(seen)

    def ancestors_of(self, name: str) -> List[str]:
        """All transitive dependencies of a resource, in declaration order."""
        seen: Set[str] = set()
        queue = deque(self._dependencies[name])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(self._dependencies[current])
        return self._in_declaration_order(seen)

    def is_ready(self, name: str) -> bool:
        """Check if every dependency of a resource is materialized."""
        return all(
            self.nodes[dep].state == NodeState.MATERIALIZED for dep in self._dependencies[name]
        )

    def ready_nodes(self) -> List[Resource]:
        """Unstarted resources whose dependencies are all materialized, in declaration order."""
        return [
            node
            for node in self.nodes.values()
            if node.state in (NodeState.DECLARED, NodeState.PLANNED) and self.is_ready(node.name)
        ]

    def topological_order(self) -> List[str]:
        """
        Get resources in topological order (dependencies before dependents).

        Ties are broken by declaration order, so the result is deterministic.

        Returns:
            List of logical names in topological order
        """
        if self._topological_order is not None:
            return self._topological_order.copy()

        in_degree = {name: len(deps) for name, deps in self._dependencies.items()}

        heap = [
            (self.nodes[name].declaration_index, name)
            for name, degree in in_degree.items()
            if degree == 0
        ]
        heapq.heapify(heap)
        result = []

        while heap:
            _, name = heapq.heappop(heap)
            result.append(name)

            for dependent in self._dependents[name]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(heap, (self.nodes[dependent].declaration_index, dependent))

        # Insertion-time checks keep the graph acyclic; this guards direct edits of the edge maps.
        if len(result) != len(self.nodes):
            remaining = [name for name in self.nodes if name not in set(result)]
            raise CyclicDependencyError(remaining[0], remaining)

        self._topological_order = result
        return result.copy()

    def parallel_levels(self) -> List[List[str]]:
        """
        Get resources grouped by parallel execution levels.

        Returns:
            List of levels; every resource in a level depends only on earlier levels
        """
        levels = []
        remaining = set(self.nodes)

        while remaining:
            current_level = [
                name for name in remaining if not (self._dependencies[name] & remaining)
            ]
            levels.append(self._in_declaration_order(current_level))
            remaining -= set(current_level)

        return levels

    def mark_planned(self):
        """Move every declared resource to PLANNED after computing the execution order."""
        order = self.topological_order()
        for name in order:
            node = self.nodes[name]
            if node.state == NodeState.DECLARED:
                node.state = NodeState.PLANNED
        return order

    def validate(self) -> List[str]:
        """
        Validate the graph for consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        for name, deps in self._dependencies.items():
            for dep in deps:
                if dep not in self.nodes:
                    errors.append(f"Resource {name} depends on missing resource {dep}")
                elif ResourceEdge(dep, name) not in self.edges:
                    errors.append(f"Missing edge for dependency {dep} -> {name}")

        for edge in self.edges:
            if edge.from_name not in self.nodes:
                errors.append(f"Edge references missing resource {edge.from_name}")
            if edge.to_name not in self.nodes:
                errors.append(f"Edge references missing resource {edge.to_name}")

        try:
            self.topological_order()
        except CyclicDependencyError as e:
            errors.append(str(e))

        return errors

    def statistics(self) -> Dict[str, Any]:
        """Get statistics about the graph."""
        stats: Dict[str, Any] = {
            "total_resources": len(self.nodes),
            "total_edges": len(self.edges),
        }
        for state in NodeState:
            stats[f"{state.name.lower()}_resources"] = sum(
                1 for node in self.nodes.values() if node.state == state
            )

        if self.nodes:
            levels = self.parallel_levels()
            stats.update(
                {
                    "parallel_levels": len(levels),
                    "max_parallel_resources": max(len(level) for level in levels),
                    "max_dependencies_per_resource": max(
                        len(deps) for deps in self._dependencies.values()
                    ),
                }
            )

        return stats

    def to_dict(self) -> Dict[str, Any]:
        """Convert the graph to a dictionary representation."""
        return {
            "graph_id": self.graph_id,
            "created_at": self.created_at.isoformat(),
            "nodes": {name: node.to_dict() for name, node in self.nodes.items()},
            "edges": [
                {"from": edge.from_name, "to": edge.to_name, "edge_type": edge.edge_type}
                for edge in sorted(self.edges, key=lambda e: (e.from_name, e.to_name))
            ],
            "statistics": self.statistics(),
        }

    def _in_declaration_order(self, names) -> List[str]:
        return sorted(names, key=lambda n: self.nodes[n].declaration_index)

    def _invalidate_caches(self):
        self._topological_order = None

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, name: str) -> bool:
        return name in self.nodes

    def __getitem__(self, name: str) -> Resource:
        return self.nodes[name]

    def __iter__(self) -> Iterator[Resource]:
        return iter(self.nodes.values())
