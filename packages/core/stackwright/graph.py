"""Dependency grapher — orders resources by explicit and inferred dependencies."""

from __future__ import annotations

import heapq
import logging
from collections.abc import Iterable, Mapping

from stackwright.errors import CyclicDependencyError

logger = logging.getLogger(__name__)


class DependencyGraph:
    """Directed graph where an edge ``A -> B`` means B depends on A (A must exist first).

    Node order is significant: it breaks ties so that every ordering the
    graph produces is deterministic and follows declaration order.
    """

    def __init__(self, nodes: Iterable[str], dependencies: Mapping[str, Iterable[str]] | None = None):
        self._nodes: list[str] = list(dict.fromkeys(nodes))
        self._index = {node: i for i, node in enumerate(self._nodes)}
        self._deps: dict[str, set[str]] = {node: set() for node in self._nodes}
        self._dependents: dict[str, set[str]] = {node: set() for node in self._nodes}
        for node, deps in (dependencies or {}).items():
            if node not in self._index:
                continue
            for dep in deps:
                self.add_edge(dep, node)

    @classmethod
    def from_resolved(cls, resolved) -> DependencyGraph:
        """Graph over the included resources of a ResolvedTemplate."""
        resources = resolved.resources
        return cls(resources, {lid: res.dependencies for lid, res in resources.items()})

    def add_edge(self, dependency: str, dependent: str) -> None:
        """Record that ``dependent`` needs ``dependency``; edges to unknown nodes are ignored."""
        if dependency not in self._index or dependent not in self._index or dependency == dependent:
            return
        self._deps[dependent].add(dependency)
        self._dependents[dependency].add(dependent)

    @property
    def nodes(self) -> list[str]:
        return list(self._nodes)

    def __contains__(self, node: str) -> bool:
        return node in self._index

    def __len__(self) -> int:
        return len(self._nodes)

    def edges(self) -> list[tuple[str, str]]:
        return sorted(
            ((dep, node) for node, deps in self._deps.items() for dep in deps),
            key=lambda e: (self._index[e[1]], self._index[e[0]]),
        )

    def dependencies_of(self, node: str) -> set[str]:
        return set(self._deps[node])

    def dependents_of(self, node: str) -> set[str]:
        return set(self._dependents[node])

    def ancestors_of(self, node: str) -> set[str]:
        """Everything ``node`` transitively depends on."""
        return self._walk(node, self._deps)

    @staticmethod
    def _walk(start: str, adjacency: dict[str, set[str]]) -> set[str]:
        seen: set[str] = set()
        stack = list(adjacency[start])
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(adjacency[current] - seen)
        return seen

    def topological_order(self) -> list[str]:
        """Kahn's algorithm; ties go to the earliest declared node.

        Raises CyclicDependencyError (never returns a truncated order).
        """
        remaining = {node: len(deps) for node, deps in self._deps.items()}
        ready = [(self._index[n], n) for n, count in remaining.items() if count == 0]
        heapq.heapify(ready)
        order: list[str] = []
        while ready:
            _, node = heapq.heappop(ready)
            order.append(node)
            for dependent in self._dependents[node]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, (self._index[dependent], dependent))
        if len(order) != len(self._nodes):
            raise CyclicDependencyError(self._find_cycle({n for n, c in remaining.items() if c > 0}))
        return order

    def reverse_topological_order(self) -> list[str]:
        return list(reversed(self.topological_order()))

    def waves(self) -> list[list[str]]:
        """Groups of nodes whose dependencies are all in earlier groups."""
        depth: dict[str, int] = {}
        for node in self.topological_order():
            depth[node] = 1 + max((depth[d] for d in self._deps[node]), default=-1)
        grouped: dict[int, list[str]] = {}
        for node in self._nodes:
            grouped.setdefault(depth[node], []).append(node)
        return [grouped[level] for level in sorted(grouped)]

    def _find_cycle(self, candidates: set[str]) -> list[str]:
        """Return one cycle (first node repeated at the end) among ``candidates``."""
        start = min(candidates, key=self._index.__getitem__)
        path: list[str] = []
        on_path: set[str] = set()
        visited: set[str] = set()

        def visit(node: str) -> list[str] | None:
            path.append(node)
            on_path.add(node)
            visited.add(node)
            for dep in sorted(self._deps[node] & candidates, key=self._index.__getitem__):
                if dep in on_path:
                    cycle = path[path.index(dep) :] + [dep]
                    return list(reversed(cycle))
                if dep not in visited:
                    found = visit(dep)
                    if found:
                        return found
            path.pop()
            on_path.discard(node)
            return None

        for node in [start, *sorted(candidates - {start}, key=self._index.__getitem__)]:
            if node not in visited:
                cycle = visit(node)
                if cycle:
                    logger.debug("Dependency cycle: %s", cycle)
                    return cycle
        return sorted(candidates, key=self._index.__getitem__)
