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

"""Tests for cratekit.ui."""

from __future__ import annotations

from cratekit.ui import LogProgress, NullProgress, RichProgress, Stage, create_progress


class TestCreateProgress:
    """Tests for observer selection."""

    def test_disabled(self) -> None:
        """Disabled progress is a no-op observer."""
        assert isinstance(create_progress(enabled=False), NullProgress)

    def test_tty(self) -> None:
        """A terminal gets the live table."""
        assert isinstance(create_progress(force_tty=True), RichProgress)

    def test_not_tty(self) -> None:
        """Without a terminal, transitions are logged."""
        observer = create_progress(force_tty=False, title='tests')
        assert isinstance(observer, LogProgress)
        assert observer.title == 'tests'


class TestLogProgress:
    """Tests for the logging observer."""

    def test_rows_follow_stages(self) -> None:
        """Rows start waiting and record the latest stage."""
        observer = LogProgress()
        observer.init_packages(['a', 'b'])
        observer.on_stage('a', Stage.RUNNING)
        observer.on_stage('a', Stage.DONE, 'ok')
        observer.on_stage('c', Stage.SKIPPED)
        assert observer._rows['a'].stage is Stage.DONE
        assert observer._rows['a'].detail == 'ok'
        assert observer._rows['b'].stage is Stage.WAITING
        assert observer._rows['b'].elapsed_str == '-'
        assert 'c' in observer._rows, 'unknown packages get a row on first report'
        observer.on_complete()


class TestRichProgress:
    """Tests for the table observer."""

    def test_render_counts_terminal_rows(self) -> None:
        """The title counts packages in a terminal stage."""
        observer = RichProgress(title='publish')
        observer.init_packages(['a', 'b', 'c'])
        observer.on_stage('a', Stage.FAILED)
        observer.on_stage('b', Stage.BLOCKED)
        observer.on_stage('c', Stage.RUNNING)
        table = observer._render()
        assert table.title == 'publish (2/3)', f'got {table.title}'
        assert table.row_count == 3
