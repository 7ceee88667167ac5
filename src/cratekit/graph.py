# Copyright 2026 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0

"""Crate graph across every workspace in the repository.

Nodes are packages; an edge ``P -> Q`` exists iff ``P`` declares a
dependency on ``Q`` and ``Q`` is itself in the graph. Dependencies on
crates from a registry outside the repository never become edges.

Key Concepts (ELI5)::

    ┌─────────────────────────┬─────────────────────────────────────────────┐
    │ Concept                 │ ELI5 Explanation                            │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Edge                    │ "P needs Q". Only drawn when Q lives in    │
    │                         │ this repository too.                        │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Dependants              │ The reverse arrows: who needs me.           │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Reverse closure         │ Everything that needs me, directly or via   │
    │                         │ others. These retest when I change.         │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Tolerated edge          │ A dev-only path dependency with no         │
    │                         │ registry. cargo allows cycles through it,   │
    │                         │ so cycle checks and ordering skip it.       │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Levels                  │ Kahn's algorithm in waves: level 0 has no  │
    │                         │ in-repo deps, level 1 needs only level 0.  │
    └─────────────────────────┴─────────────────────────────────────────────┘

Edge Direction::

    api ──→ core ←── worker
    edges['api'] = ['core']
    reverse_edges['core'] = ['api', 'worker']

Usage::

    from cratekit.graph import CrateGraph, ensure_acyclic, topo_levels

    graph = CrateGraph.build(discovery.packages)
    ensure_acyclic(graph)
    for level, names in enumerate(topo_levels(graph)):
        print(level, names)
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field

from cratekit.errors import E, CrateKitError
from cratekit.logging import get_logger
from cratekit.workspace import Dependency, Package

logger = get_logger(__name__)


@dataclass
class CrateGraph:
    """Directed graph over the repository's packages.

    Attributes:
        packages: Package by name.
        edges: Dependent to sorted in-graph dependencies.
        reverse_edges: Dependency to sorted dependants.
        declarations: Every manifest entry behind an edge, keyed by
            ``(dependent, dependency)``.
    """

    packages: dict[str, Package] = field(default_factory=dict)
    edges: dict[str, list[str]] = field(default_factory=dict)
    reverse_edges: dict[str, list[str]] = field(default_factory=dict)
    declarations: dict[tuple[str, str], list[Dependency]] = field(default_factory=dict)

    @classmethod
    def build(cls, packages: Iterable[Package], *, ignore_dev_dependencies: bool = False) -> CrateGraph:
        """Build the graph from discovered packages.

        Args:
            packages: Packages from :func:`~cratekit.workspace.discover_packages`.
            ignore_dev_dependencies: Drop ``dev`` kind declarations.
        """
        graph = cls()
        pkgs = list(packages)
        for pkg in pkgs:
            graph.packages[pkg.name] = pkg
            graph.edges[pkg.name] = []
            graph.reverse_edges[pkg.name] = []

        for pkg in pkgs:
            for dep in pkg.dependencies:
                if dep.name not in graph.packages or dep.name == pkg.name:
                    continue
                if ignore_dev_dependencies and dep.kind == 'dev':
                    continue
                key = (pkg.name, dep.name)
                if key not in graph.declarations:
                    graph.edges[pkg.name].append(dep.name)
                    graph.reverse_edges[dep.name].append(pkg.name)
                    graph.declarations[key] = []
                graph.declarations[key].append(dep)

        for name in graph.edges:
            graph.edges[name].sort()
            graph.reverse_edges[name].sort()

        logger.debug(
            'built_crate_graph',
            packages=len(graph.packages),
            edges=len(graph.declarations),
        )
        return graph

    @property
    def names(self) -> list[str]:
        """Sorted package names."""
        return sorted(self.packages)

    def __len__(self) -> int:
        return len(self.packages)

    def __contains__(self, name: object) -> bool:
        return name in self.packages

    def _require(self, name: str) -> None:
        if name not in self.packages:
            raise CrateKitError(
                code=E.GRAPH_UNKNOWN_PACKAGE,
                message=f"Package '{name}' is not in the crate graph",
                hint="Run 'cratekit dependencies' to list known packages.",
            )

    def dependencies(self, name: str) -> list[str]:
        """Direct in-graph dependencies of ``name``, sorted."""
        self._require(name)
        return list(self.edges[name])

    def dependants(self, name: str) -> list[str]:
        """Packages that directly depend on ``name``, sorted."""
        self._require(name)
        return list(self.reverse_edges[name])

    def is_tolerated(self, dependent: str, dependency: str) -> bool:
        """Whether every declaration behind the edge is a local dev-only path dependency."""
        decls = self.declarations.get((dependent, dependency), [])
        return bool(decls) and all(d.is_local_dev for d in decls)

    def strict_dependencies(self, name: str) -> list[str]:
        """Dependencies that must exist before ``name`` can be built or published."""
        return [dep for dep in self.dependencies(name) if not self.is_tolerated(name, dep)]

    def transitive_dependencies(self, name: str) -> set[str]:
        """All dependencies of ``name``, direct or indirect (BFS)."""
        self._require(name)
        visited: set[str] = set()
        queue: deque[str] = deque(self.edges[name])
        while queue:
            current = queue.popleft()
            if current in visited or current == name:
                continue
            visited.add(current)
            queue.extend(self.edges[current])
        return visited

    def reverse_closure(self, names: Iterable[str]) -> list[str]:
        """Seeds plus everything that transitively depends on them, sorted.

        Names that are not in the graph are ignored.
        """
        visited: set[str] = set()
        queue: deque[str] = deque(n for n in names if n in self.packages)
        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            queue.extend(self.reverse_edges[current])
        return sorted(visited)


def detect_cycles(graph: CrateGraph) -> list[list[str]]:
    """Find dependency cycles with a three-colour DFS.

    Tolerated edges (local dev-only path dependencies) are skipped:
    cargo accepts a crate using its own dependant in tests.

    Returns:
        One list per cycle, first element repeated at the end. Empty if
        the graph is acyclic.
    """
    _white, _gray, _black = 0, 1, 2
    color: dict[str, int] = {name: _white for name in graph.packages}
    parent: dict[str, str | None] = {name: None for name in graph.packages}
    cycles: list[list[str]] = []

    def _dfs(node: str) -> None:
        color[node] = _gray
        for neighbor in graph.edges.get(node, []):
            if graph.is_tolerated(node, neighbor):
                continue
            if color[neighbor] == _gray:
                cycle = [neighbor]
                current = node
                while current != neighbor:
                    cycle.append(current)
                    p = parent.get(current)
                    if p is None:
                        break
                    current = p
                cycle.append(neighbor)
                cycle.reverse()
                cycles.append(cycle)
            elif color[neighbor] == _white:
                parent[neighbor] = node
                _dfs(neighbor)
        color[node] = _black

    for name in sorted(graph.packages):
        if color[name] == _white:
            _dfs(name)

    if cycles:
        logger.warning('cycles_detected', count=len(cycles))
    return cycles


def ensure_acyclic(graph: CrateGraph) -> None:
    """Raise ``CK-GRAPH-CYCLE-DETECTED`` if :func:`detect_cycles` finds any."""
    cycles = detect_cycles(graph)
    if cycles:
        rendered = ['  →  '.join(c) for c in cycles]
        raise CrateKitError(
            code=E.GRAPH_CYCLE_DETECTED,
            message=f'Circular dependencies detected: {rendered}',
            hint='Break the cycle, or make the back edge a dev-only path dependency.',
        )


def topo_levels(graph: CrateGraph) -> list[list[str]]:
    """Group package names into dependency levels (Kahn's algorithm).

    Tolerated edges do not constrain the order.

    Raises:
        CrateKitError: If the graph contains a cycle.
    """
    in_degree = {name: len(graph.strict_dependencies(name)) for name in graph.packages}
    queue = sorted(name for name, degree in in_degree.items() if degree == 0)
    levels: list[list[str]] = []
    processed = 0

    while queue:
        levels.append(queue)
        processed += len(queue)
        following: list[str] = []
        for name in queue:
            for dependent in graph.reverse_edges[name]:
                if graph.is_tolerated(dependent, name):
                    continue
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    following.append(dependent)
        queue = sorted(following)

    if processed != len(graph.packages):
        ensure_acyclic(graph)

    logger.debug('topo_levels', levels=len(levels), packages=processed)
    return levels


__all__ = [
    'CrateGraph',
    'detect_cycles',
    'ensure_acyclic',
    'topo_levels',
]
