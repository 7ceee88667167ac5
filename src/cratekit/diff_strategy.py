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

"""Selection of the two revisions that change detection compares.

Key Concepts (ELI5)::

    ┌──────────────────────┬────────────────────────────────────────────────┐
    │ Strategy             │ Compares                                       │
    ├──────────────────────┼────────────────────────────────────────────────┤
    │ Explicit(base, head) │ exactly the two given commits (CI on a PR)     │
    ├──────────────────────┼────────────────────────────────────────────────┤
    │ LocalChanges         │ HEAD~ vs HEAD, plus staged and unstaged edits  │
    │                      │ (HEAD vs HEAD when there is no parent)         │
    ├──────────────────────┼────────────────────────────────────────────────┤
    │ WorktreeVsBranch(b)  │ b vs HEAD, plus staged and unstaged edits      │
    ├──────────────────────┼────────────────────────────────────────────────┤
    │ All                  │ resolved like LocalChanges; callers ignore the │
    │                      │ ``changed`` flags and act on everything        │
    └──────────────────────┴────────────────────────────────────────────────┘

Resolution order for :func:`resolve_strategy`::

    --strategy / $STRATEGY given ─────────────► that strategy
    base and head SHAs both given ────────────► Explicit(base, head)
    branch given, no SHA at all ──────────────► WorktreeVsBranch(branch)
    anything else (incl. only one SHA) ───────► LocalChanges
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from cratekit.backends.vcs import VCS
from cratekit.errors import E, CrateKitError
from cratekit.logging import get_logger

log = get_logger('cratekit.diff_strategy')

ENV_HEAD = 'PULL_PULL_SHA'
ENV_BASE = 'PULL_BASE_SHA'
ENV_BRANCH = 'COMPARE_BRANCH'
ENV_STRATEGY = 'STRATEGY'


@dataclass(frozen=True)
class DiffStrategy:
    """Base class for the revision-pair strategies."""

    @property
    def includes_worktree(self) -> bool:
        """Whether staged and unstaged edits are part of the diff."""
        return True

    @property
    def compares(self) -> bool:
        """``False`` when callers should treat every package as changed."""
        return True

    async def git_commits(self, vcs: VCS) -> tuple[str, str]:
        """Resolve to ``(base, head)`` full commit ids, ``HEAD~`` vs ``HEAD``."""
        head = await vcs.rev_parse('HEAD')
        if await vcs.has_revision('HEAD~'):
            return await vcs.rev_parse('HEAD~'), head
        log.debug('no_parent_commit', head=head)
        return head, head

    @staticmethod
    def parse(text: str) -> DiffStrategy:
        """Parse the display form back into a strategy.

        Accepts ``all``, ``local-changes``, ``branch:<name>`` and
        ``<base>..<head>``.

        Raises:
            CrateKitError: If ``text`` matches none of the forms.
        """
        value = text.strip()
        if value == 'all':
            return All()
        if value in ('local-changes', 'local'):
            return LocalChanges()
        if value.startswith('branch:') and len(value) > len('branch:'):
            return WorktreeVsBranch(value[len('branch:') :])
        base, sep, head = value.partition('..')
        if sep and base and head:
            return Explicit(base=base, head=head)
        raise CrateKitError(
            code=E.CONFIG_INVALID_VALUE,
            message=f"Unknown diff strategy '{text}'",
            hint="Use 'all', 'local-changes', 'branch:<name>' or '<base>..<head>'.",
        )


@dataclass(frozen=True)
class LocalChanges(DiffStrategy):
    """Last commit plus uncommitted edits."""

    def __str__(self) -> str:
        return 'local-changes'


@dataclass(frozen=True)
class All(DiffStrategy):
    """Run everything; revisions still resolve like :class:`LocalChanges`."""

    @property
    def compares(self) -> bool:
        return False

    def __str__(self) -> str:
        return 'all'


@dataclass(frozen=True)
class WorktreeVsBranch(DiffStrategy):
    """Compare a branch against ``HEAD`` and the working tree."""

    branch: str

    async def git_commits(self, vcs: VCS) -> tuple[str, str]:
        return await vcs.rev_parse(self.branch), await vcs.rev_parse('HEAD')

    def __str__(self) -> str:
        return f'branch:{self.branch}'


@dataclass(frozen=True)
class Explicit(DiffStrategy):
    """Compare two given commits; the working tree is ignored."""

    base: str
    head: str

    @property
    def includes_worktree(self) -> bool:
        return False

    async def git_commits(self, vcs: VCS) -> tuple[str, str]:
        return await vcs.rev_parse(self.base), await vcs.rev_parse(self.head)

    def __str__(self) -> str:
        return f'{self.base}..{self.head}'


def resolve_strategy(
    *,
    strategy: str | None = None,
    base: str | None = None,
    head: str | None = None,
    branch: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> DiffStrategy:
    """Pick a strategy from CLI values, falling back to the environment.

    Args:
        strategy: Explicit strategy text; wins over everything else.
        base: Base SHA (``$PULL_BASE_SHA``).
        head: Head SHA (``$PULL_PULL_SHA``).
        branch: Branch to compare against (``$COMPARE_BRANCH``).
        environ: Environment mapping, defaults to :data:`os.environ`.

    Returns:
        The selected :class:`DiffStrategy`.
    """
    env = os.environ if environ is None else environ
    strategy = strategy or env.get(ENV_STRATEGY) or None
    base = base or env.get(ENV_BASE) or None
    head = head or env.get(ENV_HEAD) or None
    branch = branch or env.get(ENV_BRANCH) or None

    if strategy:
        selected = DiffStrategy.parse(strategy)
    elif base and head:
        selected = Explicit(base=base, head=head)
    elif branch and not base and not head:
        selected = WorktreeVsBranch(branch)
    else:
        if base or head:
            log.warning('partial_revision_pair_ignored', base=base, head=head)
        selected = LocalChanges()
    log.debug('diff_strategy', strategy=str(selected))
    return selected


__all__ = [
    'All',
    'DiffStrategy',
    'Explicit',
    'LocalChanges',
    'WorktreeVsBranch',
    'resolve_strategy',
]
