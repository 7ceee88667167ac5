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

"""JUnit XML reports.

The test orchestrator and the publish walk record one test case per step
and write a standard JUnit document CI systems can render::

    <testsuites>
      <testsuite name="Mandatory ws - api - 0.1.0" tests="3" failures="1" ...>
        <testcase name="api  1/6 │ cargo fmt ..." time="1.204">
          <system-out>...</system-out>
        </testcase>
        <testcase name="api  2/6 │ cargo check ..." time="9.870">
          <failure type="required" message="cargo check ..."/>
        </testcase>
        <testcase name="api  3/6 │ cargo clippy ..."><skipped/></testcase>
      </testsuite>
    </testsuites>
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from xml.etree.ElementTree import Element, SubElement, indent, tostring

from cratekit._io import write_file


class Outcome(str, Enum):
    """Verdict of one test case."""

    SUCCESS = 'success'
    FAILURE = 'failure'
    SKIPPED = 'skipped'


@dataclass
class TestCase:
    """One recorded step.

    Attributes:
        name: Display name.
        time: Duration in seconds.
        outcome: Verdict.
        failure_type: ``required`` or ``optional`` for failures.
        message: Failure message.
        stdout: Captured standard output.
        stderr: Captured standard error.
    """

    __test__ = False  # not a pytest class

    name: str
    time: float = 0.0
    outcome: Outcome = Outcome.SUCCESS
    failure_type: str = ''
    message: str = ''
    stdout: str = ''
    stderr: str = ''

    @classmethod
    def success(cls, name: str, time: float) -> TestCase:
        """A passing case."""
        return cls(name=name, time=time)

    @classmethod
    def failure(cls, name: str, time: float, failure_type: str, message: str) -> TestCase:
        """A failing case."""
        return cls(name=name, time=time, outcome=Outcome.FAILURE, failure_type=failure_type, message=message)

    @classmethod
    def skipped(cls, name: str) -> TestCase:
        """A case that never ran."""
        return cls(name=name, outcome=Outcome.SKIPPED)

    def with_output(self, stdout: str, stderr: str) -> TestCase:
        """Attach captured output and return ``self``."""
        self.stdout = stdout
        self.stderr = stderr
        return self


@dataclass
class TestSuite:
    """A named group of cases."""

    __test__ = False  # not a pytest class

    name: str
    timestamp: datetime.datetime = field(default_factory=lambda: datetime.datetime.now(datetime.UTC))
    cases: list[TestCase] = field(default_factory=list)

    def add(self, case: TestCase) -> None:
        """Append a case."""
        self.cases.append(case)

    def count(self, outcome: Outcome) -> int:
        """Number of cases with ``outcome``."""
        return sum(1 for c in self.cases if c.outcome is outcome)

    @property
    def time(self) -> float:
        """Total duration of the cases."""
        return sum(c.time for c in self.cases)


@dataclass
class JUnitReport:
    """An ordered collection of suites."""

    suites: list[TestSuite] = field(default_factory=list)

    def add(self, suite: TestSuite) -> None:
        """Append a suite."""
        self.suites.append(suite)

    def extend(self, other: JUnitReport) -> None:
        """Append every suite of ``other``."""
        self.suites.extend(other.suites)

    @property
    def failures(self) -> int:
        """Failed cases across all suites."""
        return sum(s.count(Outcome.FAILURE) for s in self.suites)

    @property
    def time(self) -> float:
        """Cumulated duration of every case."""
        return sum(s.time for s in self.suites)

    def to_element(self) -> Element:
        """Build the ``<testsuites>`` tree."""
        root = Element('testsuites')
        for suite_id, suite in enumerate(self.suites):
            node = SubElement(
                root,
                'testsuite',
                id=str(suite_id),
                name=suite.name,
                tests=str(len(suite.cases)),
                failures=str(suite.count(Outcome.FAILURE)),
                skipped=str(suite.count(Outcome.SKIPPED)),
                errors='0',
                time=f'{suite.time:.3f}',
                timestamp=suite.timestamp.strftime('%Y-%m-%dT%H:%M:%S'),
            )
            for case in suite.cases:
                case_node = SubElement(node, 'testcase', name=case.name, time=f'{case.time:.3f}')
                if case.outcome is Outcome.FAILURE:
                    SubElement(case_node, 'failure', type=case.failure_type, message=case.message)
                elif case.outcome is Outcome.SKIPPED:
                    SubElement(case_node, 'skipped')
                if case.stdout:
                    SubElement(case_node, 'system-out').text = case.stdout
                if case.stderr:
                    SubElement(case_node, 'system-err').text = case.stderr
        return root

    def to_xml(self) -> str:
        """Serialize with an XML declaration."""
        root = self.to_element()
        indent(root)
        return '<?xml version="1.0" encoding="utf-8"?>\n' + tostring(root, encoding='unicode') + '\n'

    async def write(self, path: Path) -> None:
        """Write the report, creating parent directories."""
        await write_file(path, self.to_xml())


__all__ = [
    'JUnitReport',
    'Outcome',
    'TestCase',
    'TestSuite',
]
