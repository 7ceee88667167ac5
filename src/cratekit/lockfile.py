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

"""Lockfile fixer.

Brings every workspace's ``Cargo.lock`` in line with its manifests, or,
in check mode, verifies that nothing needs fixing.

Algorithm (per workspace)::

    .no_cargo_lock present? ──yes──► skip
            │ no
            ▼
    capture original Cargo.lock (or its absence)
            │
            ▼  base revision given?
    checkout base ─► read lock ─► checkout head ─► write base lock
            │
            ▼
    cargo update --workspace
            │
            ▼  check mode?
    compare with original ─► differs? restore original, CK-LOCKFILE-DRIFT

A lockfile absent before and after is fine. One that appears or
disappears counts as drift. Check mode never leaves a modified lockfile
behind.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

from cratekit._io import read_optional, restore_file
from cratekit.backends.script import ScriptOutput, ScriptRunner, execute_script
from cratekit.backends.vcs import VCS, GitCLIBackend
from cratekit.errors import E, CrateKitError
from cratekit.logging import get_logger
from cratekit.workspace import discover_workspaces

logger = get_logger(__name__)

NO_LOCK_SENTINEL = '.no_cargo_lock'
LOCKFILE = 'Cargo.lock'
UPDATE_COMMAND = 'cargo update --workspace'


async def fix_workspace_lockfile(
    repo_root: Path,
    workspace: Path,
    *,
    base_rev: str | None = None,
    head_rev: str | None = None,
    check: bool = False,
    vcs: VCS | None = None,
    runner: ScriptRunner = execute_script,
    env: Mapping[str, str] | None = None,
) -> ScriptOutput:
    """Fix (or verify) one workspace's lockfile.

    Args:
        repo_root: Repository root, for revision checkouts.
        workspace: Workspace directory holding ``Cargo.lock``.
        base_rev: Start from the lockfile as it was at this revision.
        head_rev: Revision to return to after reading the base lockfile;
            the branch (or commit) checked out on entry by default. It is
            resolved before the base checkout moves ``HEAD``.
        check: Fail instead of leaving a modified lockfile.
        vcs: Backend for checkouts; git in ``repo_root`` by default.
        runner: Script runner for ``cargo update``.
        env: Extra environment for ``cargo update``.

    Returns:
        The ``cargo update`` output.

    Raises:
        CrateKitError: ``CK-LOCKFILE-UPDATE-FAILED`` when ``cargo update``
            fails; ``CK-LOCKFILE-DRIFT`` in check mode when the lockfile
            would change.
    """
    if (workspace / NO_LOCK_SENTINEL).exists():
        logger.info('lockfile_skipped', workspace=str(workspace))
        return ScriptOutput(stdout='', stderr='', success=True)

    lock_path = workspace / LOCKFILE
    original = await read_optional(lock_path)

    if base_rev is not None:
        vcs = vcs or GitCLIBackend(repo_root)
        head = await vcs.current_ref() if head_rev is None else await vcs.rev_parse(head_rev)
        await vcs.checkout(base_rev)
        try:
            base_content = await read_optional(lock_path)
        finally:
            await vcs.checkout(head)
        await restore_file(lock_path, base_content)
        logger.debug('lockfile_reset_to_base', workspace=str(workspace), base=base_rev)

    output = await runner(UPDATE_COMMAND, cwd=workspace, env=env, log_level='debug')
    if not output.success:
        if check:
            await restore_file(lock_path, original)
        raise CrateKitError(
            code=E.LOCKFILE_UPDATE_FAILED,
            message=f'`{UPDATE_COMMAND}` failed in {workspace}: {output.stderr.strip()}',
        )

    if check:
        updated = await read_optional(lock_path)
        if updated != original:
            await restore_file(lock_path, original)
            logger.warning('lockfile_drift', workspace=str(workspace))
            raise CrateKitError(
                code=E.LOCKFILE_DRIFT,
                message=f'cargo update modified {LOCKFILE} in check mode ({workspace})',
                hint=f'Run `cratekit fix-lock-files` and commit the updated {LOCKFILE}.',
            )
    logger.info('lockfile_checked' if check else 'lockfile_fixed', workspace=str(workspace))
    return output


async def fix_lock_files(
    repo_root: Path,
    *,
    base_rev: str | None = None,
    head_rev: str | None = None,
    check: bool = False,
    vcs: VCS | None = None,
    runner: ScriptRunner = execute_script,
    env: Mapping[str, str] | None = None,
) -> list[Path]:
    """Run :func:`fix_workspace_lockfile` on every workspace.

    Every workspace is processed even after a drift; the drifted ones are
    reported together.

    Returns:
        The workspaces that were processed.

    Raises:
        CrateKitError: ``CK-LOCKFILE-DRIFT`` naming every drifted workspace,
            or the first ``CK-LOCKFILE-UPDATE-FAILED``.
    """
    vcs = vcs or (GitCLIBackend(repo_root) if base_rev is not None else None)
    processed: list[Path] = []
    drifted: list[Path] = []
    for workspace in discover_workspaces(repo_root):
        try:
            await fix_workspace_lockfile(
                repo_root,
                workspace,
                base_rev=base_rev,
                head_rev=head_rev,
                check=check,
                vcs=vcs,
                runner=runner,
                env=env,
            )
        except CrateKitError as exc:
            if exc.code is not E.LOCKFILE_DRIFT:
                raise
            drifted.append(workspace)
        processed.append(workspace)
    if drifted:
        names = ', '.join(w.relative_to(repo_root).as_posix() for w in drifted)
        raise CrateKitError(
            code=E.LOCKFILE_DRIFT,
            message=f'cargo update modified {LOCKFILE} in check mode: {names}',
            hint=f'Run `cratekit fix-lock-files` and commit the updated {LOCKFILE} files.',
        )
    return processed


__all__ = [
    'NO_LOCK_SENTINEL',
    'UPDATE_COMMAND',
    'fix_lock_files',
    'fix_workspace_lockfile',
]
