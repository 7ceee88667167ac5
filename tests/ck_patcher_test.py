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

"""Tests for cratekit.patcher: moving crates between registries."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from cratekit.config import CRATES_IO, RegistryConfig, Registries
from cratekit.errors import E, CrateKitError
from cratekit.patcher import (
    CRATES_IO_LOCK_SOURCE,
    index_file_path,
    lock_source,
    lookup_checksum,
    manifests_under,
    patch_crate,
    replace_registry,
    set_publish_registry,
)

from tests._fakes import write_manifest

R1 = 'https://r1.example.com/index'
R2 = 'https://r2.example.com/index'

LOCK = f"""\
# This file is automatically @generated by Cargo.
version = 3

[[package]]
name = "app"
version = "0.1.0"
dependencies = [
 "crate-test",
 "serde",
]

[[package]]
name = "crate-test"
version = "0.2.2"
source = "registry+{R1}"
checksum = "c1"

[[package]]
name = "serde"
version = "1.0.0"
source = "registry+https://github.com/rust-lang/crates.io-index"
checksum = "s1"
"""

APP_MANIFEST = """\
[package]
name = "app"   # the app
version = "0.1.0"

[dependencies]
crate-test = { version = "0.2.2", registry = "r1" }
serde = "1"
"""


def _index(root: Path, name: str, *entries: dict[str, object]) -> Path:
    path = root / index_file_path(name)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(''.join(json.dumps(e) + '\n' for e in entries), encoding='utf-8')
    return root


def _repo(root: Path) -> Path:
    write_manifest(root, '[workspace]\nmembers = ["crates/*"]\n')
    write_manifest(root / 'crates' / 'app', APP_MANIFEST)
    write_manifest(root / 'target' / 'package' / 'app', APP_MANIFEST)
    (root / 'Cargo.lock').write_text(LOCK, encoding='utf-8')
    return root / 'crates' / 'app'


def _registries(root: Path, local_index: Path | None) -> Registries:
    return Registries(
        {
            'r1': RegistryConfig(name='r1', index=R1),
            'r2': RegistryConfig(name='r2', index=R2, local_index=local_index),
        },
        cwd=root,
        environ={'CARGO_HOME': str(root / '.cargo-home')},
    )


def _snapshot(root: Path) -> dict[Path, bytes]:
    return {p: p.read_bytes() for p in sorted(root.rglob('*')) if p.is_file()}


class TestHelpers:
    """Tests for the pure helpers."""

    @pytest.mark.parametrize(
        ('name', 'expected'),
        [
            ('a', '1/a'),
            ('ab', '2/ab'),
            ('abc', '3/a/abc'),
            ('Serde', 'se/rd/serde'),
            ('crate-test', 'cr/at/crate-test'),
        ],
    )
    def test_index_file_path(self, name: str, expected: str) -> None:
        """Index layout by name length."""
        assert index_file_path(name).as_posix() == expected

    def test_lock_source(self) -> None:
        """crates.io uses its git index id; prefixed indexes pass through."""
        assert lock_source(RegistryConfig(name=CRATES_IO)) == CRATES_IO_LOCK_SOURCE
        assert lock_source(RegistryConfig(name='r', index=R1)) == f'registry+{R1}'
        assert lock_source(RegistryConfig(name='r', index='sparse+https://x/')) == 'sparse+https://x/'
        assert lock_source(RegistryConfig(name='r')) is None

    def test_replace_registry_only_source(self) -> None:
        """Other registries and look-alike keys are left alone."""
        text = 'a = { registry = "r1" }\nb = { registry="r1" }\nc = { registry = "r10" }\n'
        assert replace_registry(text, 'r1', 'r2') == (
            'a = { registry = "r2" }\nb = { registry = "r2" }\nc = { registry = "r10" }\n'
        )

    def test_manifests_under_skips_target(self, tmp_path: Path) -> None:
        """Build output is not scanned."""
        _repo(tmp_path)
        found = [p.relative_to(tmp_path).as_posix() for p in manifests_under(tmp_path)]
        assert found == ['Cargo.toml', 'crates/app/Cargo.toml'], f'got {found}'


class TestLookupChecksum:
    """Tests for lookup_checksum()."""

    @pytest.mark.asyncio()
    async def test_found(self, tmp_path: Path) -> None:
        """The matching release's cksum is returned."""
        index = _index(tmp_path, 'crate-test', {'vers': '0.2.1', 'cksum': 'old'}, {'vers': '0.2.2', 'cksum': 'c2'})
        assert await lookup_checksum(index, 'crate-test', '0.2.2') == 'c2'

    @pytest.mark.asyncio()
    async def test_yanked(self, tmp_path: Path) -> None:
        """A yanked release cannot be used."""
        index = _index(tmp_path, 'crate-test', {'vers': '0.2.2', 'cksum': 'c2', 'yanked': True})
        with pytest.raises(CrateKitError) as exc_info:
            await lookup_checksum(index, 'crate-test', '0.2.2')
        assert exc_info.value.code is E.PATCH_YANKED

    @pytest.mark.asyncio()
    async def test_missing(self, tmp_path: Path) -> None:
        """No release, or no index file at all."""
        index = _index(tmp_path, 'crate-test', {'vers': '0.1.0', 'cksum': 'x'})
        for name in ('crate-test', 'other'):
            with pytest.raises(CrateKitError) as exc_info:
                await lookup_checksum(index, name, '0.2.2')
            assert exc_info.value.code is E.PATCH_CHECKSUM_NOT_FOUND


class TestSetPublishRegistry:
    """Tests for set_publish_registry()."""

    @pytest.mark.asyncio()
    async def test_keeps_formatting(self, tmp_path: Path) -> None:
        """Comments survive and publish is set."""
        manifest = write_manifest(tmp_path, APP_MANIFEST)
        await set_publish_registry(manifest, 'r2')
        text = manifest.read_text(encoding='utf-8')
        assert 'name = "app"   # the app' in text
        assert 'publish = ["r2"]' in text

    @pytest.mark.asyncio()
    async def test_virtual_manifest_rejected(self, tmp_path: Path) -> None:
        """A manifest without [package] cannot be patched."""
        manifest = write_manifest(tmp_path, '[workspace]\nmembers = []\n')
        with pytest.raises(CrateKitError) as exc_info:
            await set_publish_registry(manifest, 'r2')
        assert exc_info.value.code is E.PATCH_MANIFEST_INVALID


class TestPatchCrate:
    """Tests for patch_crate()."""

    @pytest.mark.asyncio()
    async def test_moves_registry(self, tmp_path: Path) -> None:
        """Manifests and the lock point at r2 with r2's checksum; nothing else changes."""
        repo = tmp_path / 'repo'
        crate = _repo(repo)
        index = _index(tmp_path / 'index', 'crate-test', {'vers': '0.2.2', 'cksum': 'c2'})
        await patch_crate(crate, repo, 'r1', 'r2', _registries(repo, index))

        manifest = (crate / 'Cargo.toml').read_text(encoding='utf-8')
        assert 'registry = "r1"' not in manifest
        assert 'crate-test = { version = "0.2.2", registry = "r2" }' in manifest
        assert 'publish = ["r2"]' in manifest
        untouched = (repo / 'target' / 'package' / 'app' / 'Cargo.toml').read_text(encoding='utf-8')
        assert untouched == APP_MANIFEST

        expected = LOCK.replace(
            f'source = "registry+{R1}"\nchecksum = "c1"',
            f'source = "registry+{R2}"\nchecksum = "c2"',
        )
        assert (repo / 'Cargo.lock').read_text(encoding='utf-8') == expected
        assert f'registry+{R1}' not in expected

    @pytest.mark.asyncio()
    async def test_crlf_preserved(self, tmp_path: Path) -> None:
        """Line endings of rewritten lines are kept."""
        repo = tmp_path / 'repo'
        crate = _repo(repo)
        (repo / 'Cargo.lock').write_bytes(LOCK.replace('\n', '\r\n').encode())
        index = _index(tmp_path / 'index', 'crate-test', {'vers': '0.2.2', 'cksum': 'c2'})
        await patch_crate(crate, repo, 'r1', 'r2', _registries(repo, index))
        data = (repo / 'Cargo.lock').read_bytes()
        assert b'checksum = "c2"\r\n' in data
        assert b'\n' not in data.replace(b'\r\n', b'')

    @pytest.mark.asyncio()
    async def test_same_registry_is_noop(self, tmp_path: Path) -> None:
        """source == target leaves every byte alone."""
        repo = tmp_path / 'repo'
        crate = _repo(repo)
        before = _snapshot(repo)
        await patch_crate(crate, repo, 'r1', 'r1', _registries(repo, None))
        assert _snapshot(repo) == before

    @pytest.mark.asyncio()
    async def test_index_missing(self, tmp_path: Path) -> None:
        """Moving stanzas needs a local index for checksums."""
        repo = tmp_path / 'repo'
        crate = _repo(repo)
        with pytest.raises(CrateKitError) as exc_info:
            await patch_crate(crate, repo, 'r1', 'r2', _registries(repo, None))
        assert exc_info.value.code is E.PATCH_INDEX_MISSING
        assert (repo / 'Cargo.lock').read_text(encoding='utf-8') == LOCK

    @pytest.mark.asyncio()
    async def test_unconfigured_target(self, tmp_path: Path) -> None:
        """A target registry without an index cannot be written to the lock."""
        repo = tmp_path / 'repo'
        crate = _repo(repo)
        with pytest.raises(CrateKitError) as exc_info:
            await patch_crate(crate, repo, 'r1', 'nowhere', _registries(repo, None))
        assert exc_info.value.code is E.REGISTRY_NOT_CONFIGURED
