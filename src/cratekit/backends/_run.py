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

"""Synchronous subprocess helper for short tool invocations.

Quick, bounded calls (``git rev-parse``, ``git diff``, ``cargo metadata``)
go through :func:`run_command`. Long-running, streamed work such as the
test steps uses :mod:`cratekit.backends.script` instead.

- Every invocation is logged with its working directory.
- ``env`` is merged over the current environment; ``env_remove`` drops
  inherited keys (e.g. stale ``CARGO_REGISTRIES_*`` settings).

Key Concepts (ELI5)::

    ┌─────────────────────┬────────────────────────────────────────────────┐
    │ Concept             │ ELI5 Explanation                               │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ run_command         │ Runs one program and waits for it. Like       │
    │                     │ asking git a question and writing down the    │
    │                     │ answer.                                        │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ CommandResult       │ The receipt: exit code, output, and how long  │
    │                     │ it took.                                       │
    └─────────────────────┴────────────────────────────────────────────────┘
"""

from __future__ import annotations

import os
import subprocess  # noqa: S404 - subprocess is the core purpose of this module
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from cratekit.logging import get_logger

log = get_logger('cratekit.backends.run')

DEFAULT_TIMEOUT_SECONDS = 300


@dataclass(frozen=True)
class CommandResult:
    """Result of a subprocess invocation.

    Attributes:
        command: The command that was executed (as a list of strings).
        return_code: Process exit code (0 = success).
        stdout: Captured standard output.
        stderr: Captured standard error.
        duration: Wall-clock duration in milliseconds.
        env_overrides: Extra environment passed to the child.
    """

    command: list[str]
    return_code: int
    stdout: str = ''
    stderr: str = ''
    duration: float = 0.0
    env_overrides: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the command exited with status 0."""
        return self.return_code == 0

    @property
    def command_str(self) -> str:
        """The command as a single shell-style string."""
        return ' '.join(self.command)


def child_env(
    env: dict[str, str] | None = None,
    env_remove: Iterable[str] = (),
) -> dict[str, str] | None:
    """Build a child environment, or ``None`` to inherit unchanged."""
    removed = set(env_remove)
    if not env and not removed:
        return None
    merged = {k: v for k, v in os.environ.items() if k not in removed}
    merged.update(env or {})
    return merged


def run_command(
    cmd: list[str],
    *,
    cwd: Path | str | None = None,
    env: dict[str, str] | None = None,
    env_remove: Iterable[str] = (),
    timeout: int = DEFAULT_TIMEOUT_SECONDS,
    check: bool = False,
) -> CommandResult:
    """Execute a command and capture its output.

    Args:
        cmd: Command and arguments.
        cwd: Working directory for the command.
        env: Extra environment variables (merged with the current env).
        env_remove: Inherited variables to drop before merging ``env``.
        timeout: Seconds before the process is killed.
        check: Raise :class:`subprocess.CalledProcessError` on failure.

    Returns:
        A :class:`CommandResult`.

    Raises:
        subprocess.CalledProcessError: If ``check=True`` and the command
            exits non-zero.
        subprocess.TimeoutExpired: If the command exceeds ``timeout``.
    """
    cmd_str = ' '.join(cmd)
    log.debug('run_command', cmd=cmd_str, cwd=str(cwd or '.'))

    start = time.monotonic()
    try:
        result = subprocess.run(  # noqa: S603 - trusted inputs from backends
            cmd,
            cwd=cwd,
            env=child_env(env, env_remove),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        log.error('command_timeout', cmd=cmd_str, timeout=timeout)
        raise

    duration = (time.monotonic() - start) * 1000
    cmd_result = CommandResult(
        command=cmd,
        return_code=result.returncode,
        stdout=result.stdout,
        stderr=result.stderr,
        duration=duration,
        env_overrides=env or {},
    )

    if result.returncode != 0:
        log.debug('command_failed', cmd=cmd_str, return_code=result.returncode, stderr=result.stderr[:500])
        if check:
            raise subprocess.CalledProcessError(result.returncode, cmd, output=result.stdout, stderr=result.stderr)
    else:
        log.debug('command_ok', cmd=cmd_str, duration=duration)

    return cmd_result


__all__ = [
    'CalledProcessError',
    'CommandResult',
    'DEFAULT_TIMEOUT_SECONDS',
    'TimeoutExpired',
    'child_env',
    'run_command',
]

# Re-export subprocess exceptions so consumers don't import subprocess.
CalledProcessError = subprocess.CalledProcessError
TimeoutExpired = subprocess.TimeoutExpired
