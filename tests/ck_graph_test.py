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

"""Tests for cratekit.graph."""

from __future__ import annotations

from pathlib import Path

import pytest
from cratekit.errors import E, CrateKitError
from cratekit.graph import CrateGraph, detect_cycles, ensure_acyclic, topo_levels
from cratekit.workspace import Dependency, Package


def _pkg(name: str, *deps: Dependency, path: str | None = None) -> Package:
    rel = path or f'crates/{name}'
    return Package(
        name=name,
        version='0.1.0',
        workspace='ws',
        workspace_path=Path('/repo'),
        manifest_path=Path('/repo') / rel / 'Cargo.toml',
        path=rel,
        dependencies=list(deps),
    )


def _dep(name: str, kind: str = 'normal', *, path: str | None = '../x', registry: str | None = None) -> Dependency:
    return Dependency(name=name, kind=kind, path=path, registry=registry)


class TestBuild:
    """Tests for CrateGraph.build()."""

    def test_edges_only_inside_repo(self) -> None:
        """External crates never become nodes or edges."""
        graph = CrateGraph.build([_pkg('api', _dep('core'), _dep('serde', path=None)), _pkg('core')])
        assert graph.edges == {'api': ['core'], 'core': []}, f'got {graph.edges}'
        assert graph.names == ['api', 'core'], f'got {graph.names}'

    def test_dependants_are_reverse_of_dependencies(self) -> None:
        """Q in P.dependants iff P in Q.dependencies."""
        packages = [
            _pkg('api', _dep('core'), _dep('util')),
            _pkg('worker', _dep('core')),
            _pkg('core', _dep('util')),
            _pkg('util'),
        ]
        graph = CrateGraph.build(packages)
        for p in graph.names:
            expected = sorted(q for q in graph.names if p in graph.dependencies(q))
            assert graph.dependants(p) == expected, f'{p}: {graph.dependants(p)} != {expected}'
        assert len(graph) == 4, f'got {len(graph)}'

    def test_duplicate_declarations_one_edge(self) -> None:
        """normal + dev on the same crate is one edge with two declarations."""
        graph = CrateGraph.build([_pkg('api', _dep('core'), _dep('core', 'dev')), _pkg('core')])
        assert graph.edges['api'] == ['core'], f'got {graph.edges}'
        assert len(graph.declarations[('api', 'core')]) == 2

    def test_ignore_dev_dependencies(self) -> None:
        """Dev edges are dropped on request."""
        graph = CrateGraph.build([_pkg('api', _dep('core', 'dev')), _pkg('core')], ignore_dev_dependencies=True)
        assert graph.edges['api'] == [], f'got {graph.edges}'

    def test_unknown_package(self) -> None:
        """Asking for a missing node raises."""
        with pytest.raises(CrateKitError) as exc_info:
            CrateGraph.build([]).dependencies('ghost')
        assert exc_info.value.code is E.GRAPH_UNKNOWN_PACKAGE


class TestClosures:
    """Tests for transitive walks."""

    def test_transitive_dependencies(self) -> None:
        """BFS over dependencies."""
        graph = CrateGraph.build([_pkg('a', _dep('b')), _pkg('b', _dep('c')), _pkg('c'), _pkg('d')])
        assert graph.transitive_dependencies('a') == {'b', 'c'}, f'got {graph.transitive_dependencies("a")}'

    def test_reverse_closure(self) -> None:
        """Seeds plus their dependants, unknown seeds ignored."""
        graph = CrateGraph.build([_pkg('a', _dep('b')), _pkg('b', _dep('c')), _pkg('c'), _pkg('d')])
        assert graph.reverse_closure(['c', 'ghost']) == ['a', 'b', 'c'], f'got {graph.reverse_closure(["c"])}'


class TestCycles:
    """Tests for cycle detection and ordering."""

    def test_cycle_detected(self) -> None:
        """a -> b -> a is reported."""
        graph = CrateGraph.build([_pkg('a', _dep('b')), _pkg('b', _dep('a'))])
        cycles = detect_cycles(graph)
        assert cycles == [['a', 'b', 'a']], f'got {cycles}'
        with pytest.raises(CrateKitError) as exc_info:
            ensure_acyclic(graph)
        assert exc_info.value.code is E.GRAPH_CYCLE_DETECTED

    def test_local_dev_cycle_tolerated(self) -> None:
        """A dev-only path back edge does not count."""
        graph = CrateGraph.build([_pkg('a', _dep('b')), _pkg('b', _dep('a', 'dev'))])
        assert graph.is_tolerated('b', 'a') is True
        assert detect_cycles(graph) == []
        assert topo_levels(graph) == [['b'], ['a']], f'got {topo_levels(graph)}'

    def test_registry_dev_cycle_not_tolerated(self) -> None:
        """A dev back edge through a registry is a real cycle."""
        graph = CrateGraph.build([_pkg('a', _dep('b')), _pkg('b', _dep('a', 'dev', registry='internal'))])
        assert detect_cycles(graph) != []

    def test_levels(self) -> None:
        """Kahn's algorithm groups by depth."""
        graph = CrateGraph.build(
            [_pkg('api', _dep('core')), _pkg('worker', _dep('core')), _pkg('core', _dep('util')), _pkg('util')]
        )
        assert topo_levels(graph) == [['util'], ['core'], ['api', 'worker']], f'got {topo_levels(graph)}'

    def test_levels_raise_on_cycle(self) -> None:
        """Ordering a cyclic graph raises."""
        graph = CrateGraph.build([_pkg('a', _dep('b')), _pkg('b', _dep('a'))])
        with pytest.raises(CrateKitError):
            topo_levels(graph)
