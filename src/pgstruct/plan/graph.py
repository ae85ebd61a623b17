"""Dependency graph with a deterministic topological sort."""

import heapq
from typing import Callable, Generic, Hashable, Iterable, TypeVar

from pgstruct.exceptions import UnresolvableDependencyCycle

Node = TypeVar("Node", bound=Hashable)


class DependencyGraph(Generic[Node]):
    """Directed graph where an edge ``a -> b`` means "a must happen before b"."""

    def __init__(self, nodes: Iterable[Node] = ()):
        self._successors: dict[Node, set[Node]] = {}
        self._in_degree: dict[Node, int] = {}
        for node in nodes:
            self.add_node(node)

    def __len__(self) -> int:
        return len(self._successors)

    def __contains__(self, node: object) -> bool:
        return node in self._successors

    def add_node(self, node: Node) -> None:
        if node not in self._successors:
            self._successors[node] = set()
            self._in_degree[node] = 0

    def add_edge(self, before: Node, after: Node) -> None:
        """Record that ``before`` must come before ``after``.

        Self-edges and duplicate edges are ignored. Both nodes must already be
        in the graph.
        """
        if before == after:
            return
        if before not in self._successors or after not in self._successors:
            raise KeyError(f"Unknown node in edge {before!r} -> {after!r}")
        if after in self._successors[before]:
            return
        self._successors[before].add(after)
        self._in_degree[after] += 1

    def successors(self, node: Node) -> set[Node]:
        return set(self._successors[node])

    def order(
        self,
        key: Callable[[Node], tuple],
        label: Callable[[Node], str] = str,
    ) -> list[Node]:
        """Return every node in dependency order.

        Uses Kahn's algorithm with a priority queue: among the nodes whose
        predecessors are all done, the one with the smallest ``key`` comes
        next, so the result is deterministic.

        Raises:
            UnresolvableDependencyCycle: If some nodes can never become ready.
                ``participants`` lists their labels, sorted.
        """
        in_degree = dict(self._in_degree)
        positions = {node: position for position, node in enumerate(self._successors)}
        ready = [
            (key(node), positions[node], node)
            for node in self._successors
            if in_degree[node] == 0
        ]
        heapq.heapify(ready)
        result: list[Node] = []

        while ready:
            _, _, node = heapq.heappop(ready)
            result.append(node)
            for successor in self._successors[node]:
                in_degree[successor] -= 1
                if in_degree[successor] == 0:
                    heapq.heappush(
                        ready, (key(successor), positions[successor], successor)
                    )

        if len(result) != len(self._successors):
            stuck = self._cycle_members(set(self._successors) - set(result))
            raise UnresolvableDependencyCycle(sorted(label(node) for node in stuck))

        return result

    def _cycle_members(self, remaining: set[Node]) -> set[Node]:
        """Strip nodes that are only blocked by a cycle, not part of one."""
        members = set(remaining)
        changed = True
        while changed:
            changed = False
            for node in list(members):
                if not self._successors[node] & members:
                    members.discard(node)
                    changed = True
        return members
