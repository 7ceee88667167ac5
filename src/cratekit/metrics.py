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

"""Test run metrics.

Counters and histograms are created lazily on the ``cratekit`` meter.
Without an OpenTelemetry SDK configured the API hands out no-op
instruments, so recording is always safe.

Metrics Defined:
    - rust_tests_workspace: whole run (counter + duration histogram)
    - rust_tests_member: one package pipeline (counter + histogram)
    - rust_tests_test: one step (counter + histogram)
    - rust_tests_changed: packages tested because they changed (counter)

Attributes: ``workspace``, ``package``, ``version``, ``status`` and, for
steps, ``test_command``.
"""

from __future__ import annotations

from opentelemetry import metrics

from cratekit.logging import get_logger

logger = get_logger(__name__)

meter = metrics.get_meter('cratekit')

_counter_cache: dict[str, metrics.Counter] = {}
_histogram_cache: dict[str, metrics.Histogram] = {}


def _get_counter(name: str, desc: str) -> metrics.Counter:
    if name not in _counter_cache:
        _counter_cache[name] = meter.create_counter(name, description=desc, unit='1')
    return _counter_cache[name]


def _get_histogram(name: str, desc: str) -> metrics.Histogram:
    if name not in _histogram_cache:
        _histogram_cache[name] = meter.create_histogram(name, description=desc, unit='s')
    return _histogram_cache[name]


def _member_attributes(workspace: str, package: str, version: str) -> dict[str, str]:
    return {'workspace': workspace, 'package': package, 'version': version}


def record_step(
    *,
    workspace: str,
    package: str,
    version: str,
    command: str,
    status: str,
    duration: float,
) -> None:
    """Record one test step; ``status`` is ``PASS``, ``FAIL`` or ``SKIPPED``."""
    attributes = {**_member_attributes(workspace, package, version), 'test_command': command, 'status': status}
    _get_counter('rust_tests_test', 'Test steps run').add(1, attributes)
    _get_histogram('rust_tests_test', 'Test step duration').record(duration, attributes)


def record_member(*, workspace: str, package: str, version: str, success: bool, duration: float) -> None:
    """Record one finished package pipeline."""
    attributes = {
        **_member_attributes(workspace, package, version),
        'status': 'success' if success else 'failed',
    }
    _get_counter('rust_tests_member', 'Package pipelines run').add(1, attributes)
    _get_histogram('rust_tests_member', 'Package pipeline duration').record(duration, attributes)


def record_changed(*, workspace: str, package: str, version: str) -> None:
    """Count a package tested because the diff touched it."""
    _get_counter('rust_tests_changed', 'Packages tested because they changed').add(
        1, _member_attributes(workspace, package, version)
    )


def record_workspace(*, success: bool, duration: float) -> None:
    """Record the whole test run."""
    attributes = {'status': 'success' if success else 'failed'}
    _get_counter('rust_tests_workspace', 'Test runs').add(1, attributes)
    _get_histogram('rust_tests_workspace', 'Test run duration').record(duration, attributes)
    logger.debug('workspace_metrics_recorded', **attributes, duration=round(duration, 2))


__all__ = [
    'meter',
    'record_changed',
    'record_member',
    'record_step',
    'record_workspace',
]
