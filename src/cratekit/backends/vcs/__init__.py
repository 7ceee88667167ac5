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

"""VCS protocol for cratekit.

The :class:`VCS` protocol covers what the resolver and the lockfile
fixer need from version control: resolve revisions, diff trees, read a
file at a revision, and check out a revision. The implementation is
:class:`~cratekit.backends.vcs.git.GitCLIBackend` (``git`` CLI).
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from cratekit.backends.vcs.git import FileChange as FileChange, GitCLIBackend as GitCLIBackend

__all__ = [
    'FileChange',
    'GitCLIBackend',
    'VCS',
]


@runtime_checkable
class VCS(Protocol):
    """Protocol for version control operations.

    All methods are async: implementations shell out and must not block
    the event loop.
    """

    @property
    def root(self) -> Path:
        """Repository root the backend operates on."""
        ...

    async def rev_parse(self, rev: str) -> str:
        """Resolve ``rev`` (short SHA, branch, ``HEAD~``) to a full commit id.

        Raises:
            CrateKitError: ``CK-VCS-REVISION-NOT-FOUND`` if it does not exist.
        """
        ...

    async def has_revision(self, rev: str) -> bool:
        """Return ``True`` if ``rev`` resolves to a commit."""
        ...

    async def diff_trees(self, base: str, head: str) -> list[FileChange]:
        """Return the files whose content differs between two commits."""
        ...

    async def diff_staged(self) -> list[FileChange]:
        """Return changes between ``HEAD`` and the index."""
        ...

    async def diff_unstaged(self) -> list[FileChange]:
        """Return changes between the index and the working tree."""
        ...

    async def show_file(self, rev: str, path: str) -> str | None:
        """Return ``path`` (relative to :attr:`root`) at ``rev``, or ``None``."""
        ...

    async def current_ref(self) -> str:
        """Branch checked out now, or the commit id when ``HEAD`` is detached."""
        ...

    async def checkout(self, rev: str) -> None:
        """Check out ``rev`` in the working tree."""
        ...
