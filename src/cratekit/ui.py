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

"""Progress display for per-package work.

The probe phase of ``check-workspace``, the test pipelines and the
publish walk all report per-package stage changes to an observer. On a
TTY the observer is a Rich Live table; in CI it is one structured log
line per transition; in tests it does nothing.

Architecture::

    check_workspace / orchestrator / publish
    ┌────────────────────────────┐   on_stage    ┌────────────────────┐
    │ per-package coroutine      │──────────────▶│ ProgressObserver   │
    └────────────────────────────┘               └─────────┬──────────┘
                                                           │
                             ┌─────────────────────────────┼─────────────────┐
                             │                             │                 │
                     ┌───────┴───────┐             ┌───────┴──────┐   ┌──────┴───────┐
                     │ RichProgress  │             │ LogProgress  │   │ NullProgress │
                     │  (TTY)        │             │  (CI)        │   │  (tests)     │
                     └───────────────┘             └──────────────┘   └──────────────┘

Usage::

    from cratekit.ui import Stage, create_progress

    with create_progress(enabled=True) as ui:
        ui.init_packages(['api', 'core'])
        ui.on_stage('core', Stage.RUNNING)
        ui.on_stage('core', Stage.DONE)
"""

from __future__ import annotations

import sys
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import TracebackType

from rich.console import Console
from rich.live import Live
from rich.table import Table
from rich.text import Text

from cratekit.logging import get_logger

logger = get_logger(__name__)


class Stage(str, Enum):
    """Where a package is in its pipeline."""

    WAITING = 'waiting'
    RUNNING = 'running'
    DONE = 'done'
    FAILED = 'failed'
    SKIPPED = 'skipped'
    BLOCKED = 'blocked'


_STAGE_DISPLAY: dict[Stage, tuple[str, str]] = {
    Stage.WAITING: ('⏳', 'dim'),
    Stage.RUNNING: ('🔨', 'yellow'),
    Stage.DONE: ('✅', 'green'),
    Stage.FAILED: ('❌', 'red bold'),
    Stage.SKIPPED: ('⏭️ ', 'dim'),
    Stage.BLOCKED: ('🚫', 'red dim'),
}

_TERMINAL_STAGES = frozenset({Stage.DONE, Stage.FAILED, Stage.SKIPPED, Stage.BLOCKED})


@dataclass
class _Row:
    name: str
    stage: Stage = Stage.WAITING
    start_time: float | None = None
    end_time: float | None = None
    detail: str = ''

    @property
    def elapsed_str(self) -> str:
        if self.start_time is None:
            return '-'
        end = self.end_time if self.end_time is not None else time.monotonic()
        elapsed = end - self.start_time
        if elapsed < 60:
            return f'{elapsed:.1f}s'
        return f'{int(elapsed // 60)}m{elapsed % 60:.0f}s'

    def move(self, stage: Stage) -> None:
        self.stage = stage
        if stage is Stage.RUNNING and self.start_time is None:
            self.start_time = time.monotonic()
        if stage in _TERMINAL_STAGES:
            self.end_time = time.monotonic()


class ProgressObserver:
    """Receives per-package stage transitions. Every hook is a no-op."""

    def __enter__(self) -> ProgressObserver:
        """Enter context manager."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context manager."""

    def init_packages(self, names: Sequence[str]) -> None:
        """Register the packages that will report."""

    def on_stage(self, name: str, stage: Stage, detail: str = '') -> None:
        """A package moved to ``stage``."""

    def on_complete(self) -> None:
        """Every package reached a terminal stage."""


class NullProgress(ProgressObserver):
    """No-op observer for tests and ``--no-progress``."""


@dataclass
class LogProgress(ProgressObserver):
    """One structured log line per stage transition."""

    title: str = 'progress'
    _rows: dict[str, _Row] = field(default_factory=dict)

    def init_packages(self, names: Sequence[str]) -> None:
        """Register packages."""
        for name in names:
            self._rows[name] = _Row(name)

    def on_stage(self, name: str, stage: Stage, detail: str = '') -> None:
        """Log the transition."""
        row = self._rows.setdefault(name, _Row(name))
        row.move(stage)
        row.detail = detail
        logger.info('stage_change', title=self.title, package=name, stage=stage.value, elapsed=row.elapsed_str)

    def on_complete(self) -> None:
        """Log a summary of terminal stages."""
        counts = {s.value: sum(1 for r in self._rows.values() if r.stage is s) for s in _TERMINAL_STAGES}
        logger.info('progress_complete', title=self.title, total=len(self._rows), **counts)


@dataclass
class RichProgress(ProgressObserver):
    """Rich Live table for interactive terminals."""

    title: str = 'progress'
    _rows: dict[str, _Row] = field(default_factory=dict)
    _console: Console = field(default_factory=lambda: Console(stderr=True))
    _live: Live | None = field(default=None, repr=False)

    def __enter__(self) -> RichProgress:
        """Start the live display."""
        self._live = Live(self._render(), console=self._console, refresh_per_second=4, transient=False)
        self._live.__enter__()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Stop the live display after a final render."""
        if self._live is not None:
            self._live.update(self._render())
            self._live.__exit__(exc_type, exc_val, exc_tb)
            self._live = None

    def init_packages(self, names: Sequence[str]) -> None:
        """Register packages in display order."""
        for name in names:
            self._rows[name] = _Row(name)
        self._refresh()

    def on_stage(self, name: str, stage: Stage, detail: str = '') -> None:
        """Update a row and redraw."""
        row = self._rows.setdefault(name, _Row(name))
        row.move(stage)
        row.detail = detail
        self._refresh()

    def on_complete(self) -> None:
        """Final redraw."""
        self._refresh()

    def _refresh(self) -> None:
        if self._live is not None:
            self._live.update(self._render())

    def _render(self) -> Table:
        done = sum(1 for r in self._rows.values() if r.stage in _TERMINAL_STAGES)
        table = Table(title=f'{self.title} ({done}/{len(self._rows)})', title_justify='left', expand=False)
        table.add_column('', width=2)
        table.add_column('Package', style='bold')
        table.add_column('Stage')
        table.add_column('Time', justify='right')
        table.add_column('Detail', style='dim', overflow='ellipsis', max_width=60)
        for row in self._rows.values():
            icon, style = _STAGE_DISPLAY[row.stage]
            table.add_row(icon, row.name, Text(row.stage.value, style=style), row.elapsed_str, row.detail)
        return table


def create_progress(*, enabled: bool = True, title: str = 'progress', force_tty: bool | None = None) -> ProgressObserver:
    """Pick the observer for the environment.

    Args:
        enabled: ``False`` always returns :class:`NullProgress`.
        title: Label shown in the table and log lines.
        force_tty: Override TTY detection.
    """
    if not enabled:
        return NullProgress()
    is_tty = force_tty if force_tty is not None else sys.stderr.isatty()
    if is_tty:
        return RichProgress(title=title)
    return LogProgress(title=title)


__all__ = [
    'LogProgress',
    'NullProgress',
    'ProgressObserver',
    'RichProgress',
    'Stage',
    'create_progress',
]
