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

"""Async file I/O helpers.

Lockfiles, manifests and reports are read and written through
``aiofiles`` so pipelines never block the event loop. Files are opened
with ``newline=''``: line endings are passed through untouched, which
keeps rewritten lockfiles byte-identical outside the edited lines.
"""

from __future__ import annotations

from pathlib import Path

import aiofiles
import aiofiles.os

from cratekit.errors import E, CrateKitError


async def read_file(path: Path) -> str:
    """Read a UTF-8 text file asynchronously via aiofiles."""
    try:
        async with aiofiles.open(path, encoding='utf-8', newline='') as f:
            return await f.read()
    except OSError as exc:
        raise CrateKitError(
            code=E.WORKSPACE_PARSE_ERROR,
            message=f'Failed to read {path}: {exc}',
            hint=f'Check that {path} exists and is readable.',
        ) from exc


async def read_optional(path: Path) -> str | None:
    """Like :func:`read_file`, but ``None`` when the file does not exist."""
    if not await aiofiles.os.path.isfile(path):
        return None
    return await read_file(path)


async def write_file(path: Path, content: str) -> None:
    """Write a UTF-8 text file asynchronously, creating parent directories."""
    try:
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        async with aiofiles.open(path, mode='w', encoding='utf-8', newline='') as f:
            await f.write(content)
    except OSError as exc:
        raise CrateKitError(
            code=E.WORKSPACE_PARSE_ERROR,
            message=f'Failed to write {path}: {exc}',
            hint=f'Check file permissions for {path}.',
        ) from exc


async def remove_file(path: Path) -> None:
    """Delete ``path`` if it exists."""
    try:
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.remove(path)
    except OSError as exc:
        raise CrateKitError(
            code=E.WORKSPACE_PARSE_ERROR,
            message=f'Failed to remove {path}: {exc}',
        ) from exc


async def restore_file(path: Path, content: str | None) -> None:
    """Put ``path`` back to ``content``; ``None`` means the file must not exist."""
    if content is None:
        await remove_file(path)
    else:
        await write_file(path, content)


__all__ = [
    'read_file',
    'read_optional',
    'remove_file',
    'restore_file',
    'write_file',
]
