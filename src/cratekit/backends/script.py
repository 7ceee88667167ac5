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

"""Async shell script runner.

Every ``cargo``/``docker`` step that can print a lot of output runs
through :class:`Script`. The child's stdout and stderr are drained by two
concurrent reader tasks: OS pipe buffers are bounded, and a child blocked
writing to a full stderr pipe never closes stdout.

Lifecycle::

    Script('cargo test').current_dir(pkg).env('DATABASE_URL', url)
        │
        ▼ spawn()
    ┌───────────────────────────────────────────────────────────┐
    │ bash -c 'set -o errexit -o nounset -o pipefail\n<cmd>'     │
    │ NO_COLOR=true                                              │
    │   stdout ──► reader task ──► lines (+ optional live log)   │
    │   stderr ──► reader task ──► lines (+ optional live log)   │
    └───────────────────────────────────────────────────────────┘
        │                                │
        ▼ wait()                         ▼ kill()
    ScriptOutput(stdout, stderr, success)

Line order is preserved within each stream, not across the two.

Usage::

    from cratekit.backends.script import Script, run_script

    output = await Script('cargo fmt -- --check').current_dir(path).execute()
    if not output.success:
        print(output.stderr)

    # Multi-line scripts run line by line and stop at the first failure.
    output = await run_script('make db\\nmake seed', cwd=path)
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from cratekit.backends._run import child_env
from cratekit.logging import get_logger, level_method

log = get_logger('cratekit.backends.script')

SHELL = 'bash'
SHELL_OPTIONS = ('errexit', 'nounset', 'pipefail')

# Upper bound for a single output line; cargo can print very long lines.
_STREAM_LIMIT = 1 << 20


@dataclass(frozen=True)
class ScriptOutput:
    """Collected output of a finished script.

    Attributes:
        stdout: Captured stdout, one ``\\n``-terminated entry per line.
        stderr: Captured stderr, one ``\\n``-terminated entry per line.
        success: ``True`` iff the child exited with status 0.
    """

    stdout: str
    stderr: str
    success: bool

    @classmethod
    def from_error(cls, message: str) -> ScriptOutput:
        """Synthetic output for a script that could not be started."""
        return cls(stdout='error', stderr=message, success=False)

    def combine(self, other: ScriptOutput) -> ScriptOutput:
        """Append ``other``'s output; the verdict is ``other``'s."""
        return ScriptOutput(
            stdout=self.stdout + other.stdout,
            stderr=self.stderr + other.stderr,
            success=other.success,
        )


async def _drain(
    stream: asyncio.StreamReader,
    lines: list[str],
    *,
    stream_name: str,
    level: str | None,
) -> None:
    emit = level_method(log, level) if level else None
    while True:
        try:
            raw = await stream.readline()
        except ValueError:
            # Line longer than the stream limit: take what is buffered.
            raw = await stream.read(_STREAM_LIMIT)
        if not raw:
            break
        line = raw.decode('utf-8', errors='replace').rstrip('\r\n')
        lines.append(line + '\n')
        if emit is not None:
            emit(f' | {line}', stream=stream_name)


class ScriptTask:
    """Handle on a running script.

    Created by :meth:`Script.spawn`. Call :meth:`wait` to collect the
    output, or :meth:`kill` to terminate the child early.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process | None,
        *,
        command: str,
        timeout: float | None = None,
        stdout_level: str | None = None,
        stderr_level: str | None = None,
        spawn_error: str = '',
    ) -> None:
        """Start the pipe readers for ``process``."""
        self.command = command
        self._process = process
        self._timeout = timeout
        self._spawn_error = spawn_error
        self._stdout: list[str] = []
        self._stderr: list[str] = []
        self._killed = False
        self._timed_out = False
        self._readers: list[asyncio.Task[None]] = []
        if process is not None:
            assert process.stdout is not None and process.stderr is not None  # noqa: S101 - pipes requested in spawn
            self._readers = [
                asyncio.create_task(_drain(process.stdout, self._stdout, stream_name='stdout', level=stdout_level)),
                asyncio.create_task(_drain(process.stderr, self._stderr, stream_name='stderr', level=stderr_level)),
            ]

    @property
    def pid(self) -> int | None:
        """Child process id, or ``None`` if the spawn failed."""
        return self._process.pid if self._process is not None else None

    async def kill(self) -> None:
        """Terminate the child and wait for both pipe readers to finish."""
        if self._process is None:
            return
        if self._process.returncode is None:
            self._killed = True
            try:
                self._process.kill()
            except ProcessLookupError:
                pass
        await self._process.wait()
        await asyncio.gather(*self._readers)

    async def wait(self) -> ScriptOutput:
        """Wait for the child to exit and return its collected output."""
        if self._process is None:
            return ScriptOutput.from_error(self._spawn_error)
        try:
            if self._timeout is not None:
                await asyncio.wait_for(self._process.wait(), self._timeout)
            else:
                await self._process.wait()
        except TimeoutError:
            self._timed_out = True
            log.warning('script_timeout', command=self.command, timeout=self._timeout)
            await self.kill()
        await asyncio.gather(*self._readers)

        stderr = ''.join(self._stderr)
        if self._timed_out:
            stderr += f'script timed out after {self._timeout}s\n'
        success = self._process.returncode == 0 and not self._killed
        return ScriptOutput(stdout=''.join(self._stdout), stderr=stderr, success=success)


class Script:
    """Builder for a shell command run under ``bash -c``.

    Setters return ``self`` so calls can be chained.

    Args:
        command: Shell text to run. May contain pipes and redirections.
    """

    def __init__(self, command: str) -> None:
        """Initialize with the command text."""
        self.command = command
        self._cwd: Path | None = None
        self._env: dict[str, str] = {}
        self._env_remove: set[str] = set()
        self._xtrace = False
        self._timeout: float | None = None
        self._stdout_level: str | None = None
        self._stderr_level: str | None = None

    def current_dir(self, path: Path | str | None) -> Script:
        """Run the command in ``path``."""
        self._cwd = Path(path) if path is not None else None
        return self

    def env(self, key: str, value: str) -> Script:
        """Set one environment variable for the child."""
        self._env[key] = value
        return self

    def envs(self, values: Mapping[str, str]) -> Script:
        """Set several environment variables for the child."""
        self._env.update(values)
        return self

    def blacklist_env(self, keys: Iterable[str]) -> Script:
        """Drop inherited environment variables before spawning."""
        self._env_remove.update(keys)
        return self

    def xtrace(self, enabled: bool = True) -> Script:
        """Echo each command as bash runs it."""
        self._xtrace = enabled
        return self

    def timeout(self, seconds: float | None) -> Script:
        """Kill the child after ``seconds`` and record a failure."""
        self._timeout = seconds
        return self

    def log_stdout(self, level: str | None) -> Script:
        """Log every stdout line at ``level`` while collecting it."""
        self._stdout_level = level
        return self

    def log_stderr(self, level: str | None) -> Script:
        """Log every stderr line at ``level`` while collecting it."""
        self._stderr_level = level
        return self

    def wrapped(self) -> str:
        """Return the shell text actually passed to ``bash -c``."""
        options = list(SHELL_OPTIONS)
        if self._xtrace:
            options.append('xtrace')
        flags = ' '.join(f'-o {opt}' for opt in options)
        return f'set {flags}\n{self.command}'

    async def spawn(self) -> ScriptTask:
        """Start the child and return a :class:`ScriptTask` handle.

        Spawn failures (missing shell, bad working directory) are not
        raised; the returned task's :meth:`~ScriptTask.wait` reports them.
        """
        env = child_env({**self._env, 'NO_COLOR': 'true'}, self._env_remove)
        log.debug('script_spawn', command=self.command, cwd=str(self._cwd or '.'))
        try:
            process = await asyncio.create_subprocess_exec(
                SHELL,
                '-c',
                self.wrapped(),
                cwd=self._cwd,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_STREAM_LIMIT,
            )
        except OSError as exc:
            log.warning('script_spawn_failed', command=self.command, error=str(exc))
            return ScriptTask(None, command=self.command, spawn_error=str(exc))
        return ScriptTask(
            process,
            command=self.command,
            timeout=self._timeout,
            stdout_level=self._stdout_level,
            stderr_level=self._stderr_level,
        )

    async def execute(self) -> ScriptOutput:
        """Spawn the command and wait for its output."""
        task = await self.spawn()
        return await task.wait()


class ScriptRunner(Protocol):
    """Callable that runs one shell command and returns its output.

    Components take a runner instead of building :class:`Script`
    directly so tests can substitute a recording fake.
    """

    async def __call__(
        self,
        command: str,
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        env_remove: Iterable[str] = (),
        log_level: str | None = None,
        timeout: float | None = None,
    ) -> ScriptOutput:
        """Run ``command`` and return its output."""
        ...


async def execute_script(
    command: str,
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    env_remove: Iterable[str] = (),
    log_level: str | None = None,
    timeout: float | None = None,
) -> ScriptOutput:
    """Default :class:`ScriptRunner` backed by :class:`Script`."""
    return await (
        Script(command)
        .current_dir(cwd)
        .envs(env or {})
        .blacklist_env(env_remove)
        .log_stdout(log_level)
        .log_stderr(log_level)
        .timeout(timeout)
        .execute()
    )


async def run_script(
    script: str,
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    runner: ScriptRunner = execute_script,
) -> ScriptOutput:
    """Run a multi-line script one line at a time.

    Empty lines are skipped. Output accumulates across lines and the run
    stops at the first failing line.
    """
    total = ScriptOutput(stdout='', stderr='', success=True)
    for line in script.split('\n'):
        line = line.strip()
        if not line:
            continue
        total = total.combine(await runner(line, cwd=cwd, env=env))
        if not total.success:
            break
    return total


__all__ = [
    'SHELL',
    'Script',
    'ScriptOutput',
    'ScriptRunner',
    'ScriptTask',
    'execute_script',
    'run_script',
]
