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

"""Change detection: which packages did a diff touch?

Each changed file (old and new path for renames) is attributed to the
*most specific* package whose directory contains it::

    crates/api/sub/src/lib.rs
        crates/api/sub   ← depth 3, wins
        crates/api       ← depth 2
        .                ← depth 0, matches everything, checked last

A changed ``rust-toolchain.toml`` marks every package: the compiler
itself moved.

:func:`apply_changes` then propagates the direct hits through the crate
graph's reverse edges into ``dependencies_changed``.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from cratekit.backends.vcs import VCS, FileChange
from cratekit.diff_strategy import DiffStrategy
from cratekit.graph import CrateGraph
from cratekit.logging import get_logger
from cratekit.workspace import Package

if TYPE_CHECKING:
    from cratekit.check_workspace import Result

logger = get_logger(__name__)

TOOLCHAIN_FILE = 'rust-toolchain.toml'


def path_depth(path: str) -> int:
    """Number of components in a repo-relative directory; ``.`` is 0."""
    if path in ('', '.'):
        return 0
    return len([part for part in path.split('/') if part])


def owns(prefix: str, file_path: str) -> bool:
    """Whether ``file_path`` lies under the package directory ``prefix``."""
    if prefix in ('', '.'):
        return True
    prefix = prefix.rstrip('/')
    return file_path == prefix or file_path.startswith(prefix + '/')


def attribute_changes(changes: Iterable[FileChange], packages: Iterable[Package]) -> set[str]:
    """Map changed files onto the names of the packages that own them."""
    ordered = sorted(packages, key=lambda p: (-path_depth(p.path), p.path))
    changed: set[str] = set()
    for change in changes:
        for file_path in change.paths:
            if file_path.rsplit('/', 1)[-1] == TOOLCHAIN_FILE:
                changed.update(p.name for p in ordered)
                continue
            for pkg in ordered:
                if owns(pkg.path, file_path):
                    changed.add(pkg.name)
                    break
    return changed


async def changed_packages(vcs: VCS, strategy: DiffStrategy, packages: Iterable[Package]) -> list[str]:
    """Names of the packages touched between the strategy's two revisions.

    Non-explicit strategies also count staged and unstaged edits.

    Raises:
        CrateKitError: ``CK-VCS-REVISION-NOT-FOUND`` if a revision is unknown.
    """
    base, head = await strategy.git_commits(vcs)
    changes = list(await vcs.diff_trees(base, head))
    if strategy.includes_worktree:
        changes.extend(await vcs.diff_staged())
        changes.extend(await vcs.diff_unstaged())
    changed = sorted(attribute_changes(changes, packages))
    logger.info('changed_packages', strategy=str(strategy), base=base[:12], head=head[:12], changed=changed)
    return changed


def apply_changes(results: Iterable[Result], changed: Iterable[str], graph: CrateGraph) -> None:
    """Set ``changed``, ``dependencies_changed`` and ``perform_test`` on ``results``.

    A package is ``dependencies_changed`` when anything it transitively
    depends on changed.
    """
    direct = set(changed)
    downstream = set(graph.reverse_closure(direct)) - direct
    for result in results:
        result.changed = result.changed or result.package in direct
        result.dependencies_changed = result.dependencies_changed or result.package in downstream
        result.perform_test = result.changed or result.dependencies_changed


__all__ = [
    'TOOLCHAIN_FILE',
    'apply_changes',
    'attribute_changes',
    'changed_packages',
    'owns',
    'path_depth',
]
