"""Dependency graph for stack assembly.

Records ordering edges between named nodes (resources, or whole stacks)
and computes traversal orderings for create (dependencies first) and
destroy (dependents first). Edges that would close a cycle are rejected
at link time, so the graph is a DAG at every point.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from common import CycleDetected, DuplicateName

logger = logging.getLogger(__name__)

N = TypeVar('N')


@dataclass(frozen=True)
class DependencyEdge(Generic[N]):
    """Directed edge: source must be Ready before target begins provisioning."""
    source: N
    target: N

    def __repr__(self) -> str:
        return f"DependencyEdge({_name_of(self.source)} -> {_name_of(self.target)})"


def _name_of(node: Any) -> str:
    return node if isinstance(node, str) else node.name


class DependencyGraph(Generic[N]):
    """Directed acyclic graph over named nodes.

    Nodes are any objects with a ``name`` attribute. Insertion order is kept
    so that orderings are stable across runs.

    Provides ordered traversal for lifecycle operations:
    - create_order(): dependencies before dependents (Kahn)
    - destroy_order(): dependents before dependencies
    """

    def __init__(self) -> None:
        self._nodes: dict[str, N] = {}
        self._successors: dict[str, list[str]] = {}
        self._predecessors: dict[str, list[str]] = {}
        self._edges: list[tuple[str, str]] = []

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def add_node(self, node: N) -> N:
        """Register a node.

        Raises:
            DuplicateName: If a node with the same name exists
        """
        name = _name_of(node)
        if name in self._nodes:
            raise DuplicateName(f"'{name}' is already declared")
        self._nodes[name] = node
        self._successors[name] = []
        self._predecessors[name] = []
        return node

    def get_node(self, name: str) -> N:
        """Get a node by name.

        Raises:
            KeyError: If node name not found
        """
        return self._nodes[name]

    @property
    def nodes(self) -> list[N]:
        return list(self._nodes.values())

    @property
    def edges(self) -> list[DependencyEdge[N]]:
        """Edges in the order they were linked."""
        return [DependencyEdge(self._nodes[src], self._nodes[dst]) for src, dst in self._edges]

    def link(self, source: Any, target: Any) -> Optional[DependencyEdge[N]]:
        """Add an edge source -> target.

        Linking an edge that already exists is a no-op and returns None.

        Raises:
            KeyError: If either endpoint is not registered
            CycleDetected: If the edge would close a cycle (graph unchanged)
        """
        src, dst = _name_of(source), _name_of(target)
        for name in (src, dst):
            if name not in self._nodes:
                raise KeyError(f"'{name}' is not declared")

        if src == dst:
            raise CycleDetected(f"'{src}' cannot depend on itself", path=[src, src])

        if dst in self._successors[src]:
            return None

        # An existing path target ~> source would close the loop
        path = self.find_path(dst, src)
        if path is not None:
            cycle = path + [dst]
            raise CycleDetected(
                f"Linking '{src}' -> '{dst}' would create a cycle: {' -> '.join(cycle)}",
                path=cycle,
            )

        self._successors[src].append(dst)
        self._predecessors[dst].append(src)
        self._edges.append((src, dst))
        logger.debug(f"Linked {src} -> {dst}")
        return DependencyEdge(self._nodes[src], self._nodes[dst])

    def find_path(self, start: str, goal: str) -> Optional[list[str]]:
        """Return a path of node names from start to goal, or None (iterative DFS)."""
        if start == goal:
            return [start]
        stack: list[tuple[str, list[str]]] = [(start, [start])]
        seen = {start}
        while stack:
            current, path = stack.pop()
            for nxt in self._successors.get(current, []):
                if nxt == goal:
                    return path + [nxt]
                if nxt not in seen:
                    seen.add(nxt)
                    stack.append((nxt, path + [nxt]))
        return None

    def predecessors(self, name: str) -> list[N]:
        return [self._nodes[n] for n in self._predecessors[name]]

    def successors(self, name: str) -> list[N]:
        return [self._nodes[n] for n in self._successors[name]]

    def descendants(self, name: str) -> list[N]:
        """All nodes reachable from name, in BFS order."""
        result: list[N] = []
        seen = {name}
        queue: deque[str] = deque(self._successors[name])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            result.append(self._nodes[current])
            queue.extend(self._successors[current])
        return result

    def ancestors(self, name: str) -> list[N]:
        """All nodes that can reach name, in BFS order."""
        result: list[N] = []
        seen = {name}
        queue: deque[str] = deque(self._predecessors[name])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            result.append(self._nodes[current])
            queue.extend(self._predecessors[current])
        return result

    def create_order(self) -> list[N]:
        """Return nodes with every edge's source before its target.

        Kahn's algorithm; among nodes that are ready at the same time the
        earlier-declared one comes first.

        Raises:
            CycleDetected: If no topological order exists
        """
        position = {name: i for i, name in enumerate(self._nodes)}
        remaining = {name: len(preds) for name, preds in self._predecessors.items()}
        ready = sorted((n for n, count in remaining.items() if count == 0), key=position.__getitem__)

        ordered: list[str] = []
        while ready:
            current = ready.pop(0)
            ordered.append(current)
            released = []
            for nxt in self._successors[current]:
                remaining[nxt] -= 1
                if remaining[nxt] == 0:
                    released.append(nxt)
            if released:
                ready = sorted(ready + released, key=position.__getitem__)

        if len(ordered) != len(self._nodes):
            stuck = [n for n in self._nodes if n not in set(ordered)]
            raise CycleDetected(
                f"No provisioning order exists; cycle among: {', '.join(stuck)}",
                path=stuck,
            )
        return [self._nodes[n] for n in ordered]

    def destroy_order(self) -> list[N]:
        """Return nodes in destruction order (dependents before dependencies).

        Reverse of create_order.
        """
        return list(reversed(self.create_order()))
