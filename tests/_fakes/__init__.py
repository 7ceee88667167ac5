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

"""Shared test fakes for cratekit.

Provides reusable fake implementations of the VCS protocol, the script
runner, ``cargo metadata`` and the remote probes so that individual test
modules don't need to duplicate boilerplate classes.

Usage::

    from tests._fakes import FakeRunner, FakeVCS, package_entry

    runner = FakeRunner(fail=['cargo clippy'])
    vcs = FakeVCS(diffs={('base', 'head'): [FileChange('M', 'a/src/lib.rs', 'a/src/lib.rs')]})
"""

from tests._fakes._metadata import (
    FakeMetadataReader as FakeMetadataReader,
    dep as dep,
    package_entry as package_entry,
    write_manifest as write_manifest,
)
from tests._fakes._probes import (
    FakeBlobStore as FakeBlobStore,
    FakeCargoProbe as FakeCargoProbe,
    FakeNpmProbe as FakeNpmProbe,
    FakeOciProbe as FakeOciProbe,
    fake_probes as fake_probes,
)
from tests._fakes._runner import OK as OK, FakeRunner as FakeRunner, RunnerCall as RunnerCall
from tests._fakes._vcs import FakeVCS as FakeVCS

__all__ = [
    'OK',
    'FakeBlobStore',
    'FakeCargoProbe',
    'FakeMetadataReader',
    'FakeNpmProbe',
    'FakeOciProbe',
    'FakeRunner',
    'FakeVCS',
    'RunnerCall',
    'dep',
    'fake_probes',
    'package_entry',
    'write_manifest',
]
