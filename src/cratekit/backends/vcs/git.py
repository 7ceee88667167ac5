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

"""Git VCS backend for cratekit.

The :class:`GitCLIBackend` implements the :class:`VCS` protocol by
delegating to ``git`` via :func:`run_command`.

All methods are async; blocking subprocess calls are dispatched to
``asyncio.to_thread()`` to avoid blocking the event loop.

Paths are reported relative to the backend root (``git diff --relative``),
so a root below the git top-level still yields package-relative prefixes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

from cratekit.backends._run import CommandResult, run_command
from cratekit.errors import E, CrateKitError
from cratekit.logging import get_logger

log = get_logger('cratekit.backends.git')


@dataclass(frozen=True)
class FileChange:
    """One changed file in a diff.

    Attributes:
        status: Git status letter (``A``, ``M``, ``D``, ``R``, ``C``, ``T``).
        old_path: Path before the change (``None`` for additions).
        new_path: Path after the change (``None`` for deletions).
    """

    status: str
    old_path: str | None
    new_path: str | None

    @property
    def paths(self) -> list[str]:
        """Old and new paths, without duplicates or gaps."""
        out: list[str] = []
        for p in (self.old_path, self.new_path):
            if p is not None and p not in out:
                out.append(p)
        return out


def parse_name_status(output: str) -> list[FileChange]:
    """Parse ``git diff --name-status -z`` output.

    Renames and copies carry two paths (``R100\\0old\\0new\\0``); every
    other status carries one.
    """
    fields = output.split('\0')
    changes: list[FileChange] = []
    i = 0
    while i < len(fields):
        status = fields[i]
        if not status:
            i += 1
            continue
        letter = status[0]
        if letter in ('R', 'C'):
            changes.append(FileChange(letter, fields[i + 1], fields[i + 2]))
            i += 3
            continue
        path = fields[i + 1]
        if letter == 'A':
            changes.append(FileChange(letter, None, path))
        elif letter == 'D':
            changes.append(FileChange(letter, path, None))
        else:
            changes.append(FileChange(letter, path, path))
        i += 2
    return changes


class GitCLIBackend:
    """Default :class:`~cratekit.backends.vcs.VCS` implementation using ``git``.

    Args:
        repo_root: Path to the repository root (or a directory inside it).
    """

    def __init__(self, repo_root: Path) -> None:
        """Initialize with the repository root path."""
        self._root = repo_root

    @property
    def root(self) -> Path:
        """Repository root the backend operates on."""
        return self._root

    def _git(self, *args: str) -> CommandResult:
        """Run a git command synchronously (called via to_thread)."""
        return run_command(['git', *args], cwd=self._root)

    async def _git_ok(self, *args: str) -> CommandResult:
        result = await asyncio.to_thread(self._git, *args)
        if not result.ok:
            raise CrateKitError(
                code=E.VCS_COMMAND_FAILED,
                message=f'git {" ".join(args)} failed: {result.stderr.strip()}',
            )
        return result

    async def rev_parse(self, rev: str) -> str:
        """Resolve a revision to its full commit id."""
        result = await asyncio.to_thread(self._git, 'rev-parse', '--verify', '--quiet', f'{rev}^{{commit}}')
        if not result.ok or not result.stdout.strip():
            raise CrateKitError(
                code=E.VCS_REVISION_NOT_FOUND,
                message=f"Revision '{rev}' not found in {self._root}",
                hint='Fetch more history or check the --base-rev/--head-rev values.',
            )
        return result.stdout.strip()

    async def has_revision(self, rev: str) -> bool:
        """Return ``True`` if ``rev`` resolves to a commit."""
        result = await asyncio.to_thread(self._git, 'rev-parse', '--verify', '--quiet', f'{rev}^{{commit}}')
        return result.ok

    async def diff_trees(self, base: str, head: str) -> list[FileChange]:
        """Return files that differ between ``base`` and ``head``."""
        if base == head:
            return []
        result = await self._git_ok('diff', '--name-status', '-z', '-M', '--relative', base, head)
        changes = parse_name_status(result.stdout)
        log.debug('diff_trees', base=base, head=head, files=len(changes))
        return changes

    async def diff_staged(self) -> list[FileChange]:
        """Return changes between ``HEAD`` and the index."""
        result = await self._git_ok('diff', '--cached', '--name-status', '-z', '-M', '--relative')
        return parse_name_status(result.stdout)

    async def diff_unstaged(self) -> list[FileChange]:
        """Return changes between the index and the working tree."""
        result = await self._git_ok('diff', '--name-status', '-z', '-M', '--relative')
        return parse_name_status(result.stdout)

    async def show_file(self, rev: str, path: str) -> str | None:
        """Return the content of ``path`` at ``rev``, or ``None`` if absent."""
        result = await asyncio.to_thread(self._git, 'show', f'{rev}:./{path}')
        if not result.ok:
            return None
        return result.stdout

    async def current_ref(self) -> str:
        """Branch checked out now, or the commit id when ``HEAD`` is detached."""
        result = await asyncio.to_thread(self._git, 'symbolic-ref', '--quiet', '--short', 'HEAD')
        if result.ok and result.stdout.strip():
            return result.stdout.strip()
        return await self.rev_parse('HEAD')

    async def checkout(self, rev: str) -> None:
        """Check out ``rev``."""
        await self._git_ok('checkout', '--quiet', rev)
        log.debug('checkout', rev=rev)


__all__ = [
    'FileChange',
    'GitCLIBackend',
    'parse_name_status',
]
