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

"""Tests for cratekit.check_workspace: the publish-eligibility engine."""

from __future__ import annotations

import datetime
import json
from pathlib import Path
from typing import Any

import httpx
import pytest
from cratekit.backends.registry.oci import DockerCredentials, RegistryAuth
from cratekit.backends.vcs import FileChange
from cratekit.check_workspace import (
    CheckOptions,
    CheckResults,
    Result,
    check_cargo,
    check_workspace,
    ci_runner,
    default_probes,
    release_channel_for,
    tag_allows,
)
from cratekit.config import Registries
from cratekit.diff_strategy import All, Explicit
from cratekit.errors import E, CrateKitError
from cratekit.metadata import ReleaseChannel

from tests._fakes import (
    FakeBlobStore,
    FakeCargoProbe,
    FakeMetadataReader,
    FakeOciProbe,
    FakeVCS,
    dep,
    fake_probes,
    package_entry,
    write_manifest,
)

ROOT_WORKSPACE = '[workspace]\nmembers = ["crates/*"]\n'
TODAY = datetime.date(2024, 1, 11)


def _cargo(**cargo: Any) -> dict[str, Any]:  # noqa: ANN401 - metadata values
    return {'cratekit': {'publish': {'cargo': cargo}}}


async def _check(
    root: Path,
    entries: list[dict[str, Any]],
    options: CheckOptions,
    *,
    environ: dict[str, str] | None = None,
    vcs: FakeVCS | None = None,
    **probes: Any,  # noqa: ANN401 - forwarded fakes
) -> CheckResults:
    write_manifest(root, ROOT_WORKSPACE)
    return await check_workspace(
        root,
        options,
        vcs=vcs or FakeVCS(root),
        registries=Registries(cwd=root, environ={'CARGO_HOME': str(root / '.cargo-home')}),
        probes=fake_probes(**probes),
        reader=FakeMetadataReader({root: entries}),
        environ=environ or {},
        today=TODAY,
    )


class TestHelpers:
    """Tests for channel, tag and runner helpers."""

    def test_release_channel_from_option(self) -> None:
        """The option wins; unknown values fall back to nightly."""
        assert release_channel_for('api', 'Beta', 'refs/tags/api-prod') is ReleaseChannel.BETA
        assert release_channel_for('api', 'weird', None) is ReleaseChannel.NIGHTLY

    def test_release_channel_from_tag(self) -> None:
        """refs/tags/{pkg}-{channel} selects the channel; companions follow."""
        assert release_channel_for('api', None, 'refs/tags/api-prod-1.0') is ReleaseChannel.PROD
        assert release_channel_for('api_launcher', None, 'refs/tags/api-alpha') is ReleaseChannel.ALPHA
        assert release_channel_for('api', None, 'refs/heads/main') is ReleaseChannel.NIGHTLY

    def test_tag_allows(self) -> None:
        """Branches allow everything; tags only the tagged package."""
        assert tag_allows('api', None) is True
        assert tag_allows('api', 'refs/heads/main') is True
        assert tag_allows('api_installer', 'refs/tags/api-beta') is True
        assert tag_allows('worker', 'refs/tags/api-beta') is False

    def test_ci_runner(self) -> None:
        """Dots become dashes."""
        assert ci_runner('1.88') == 'rust-1-88-scale-set'


class TestDefaultProbes:
    """Tests for default_probes()."""

    @pytest.mark.asyncio()
    async def test_shared_client(self, tmp_path: Path) -> None:
        """Every HTTP probe of a run sends through the one client given."""
        registries = Registries(cwd=tmp_path, environ={'CARGO_HOME': str(tmp_path / '.cargo-home')})
        options = CheckOptions(
            check_publish=True,
            skip_docker=True,
            binary_store_s3_endpoint='http://m',
            binary_store_s3_bucket='bins',
        )
        async with httpx.AsyncClient() as client:
            probes = default_probes(options, registries, environ={'HOME': str(tmp_path)}, client=client)
            cargo = probes.cargo('crates.io')
            assert cargo is probes.cargo('crates.io'), 'cargo probes are cached per registry'
            shared = [cargo, probes.oci, probes.npm, probes.blob]
            owners = [type(p).__name__ for p in shared if p._client is not client]  # noqa: SLF001
            assert owners == [], f'not sharing the client: {owners}'


class TestCheckCargo:
    """Tests for check_cargo() intent rules."""

    def _result(self, version: str = '0.1.0', publish: bool | None = None) -> Result:
        result = Result(workspace='ws', workspace_path=Path('/repo'), package='api', version=version, path='api')
        result.publish_detail.cargo.publish = publish
        result.publish_detail.cargo.registries = ['internal']
        return result

    @pytest.mark.asyncio()
    async def test_forced_new_crate(self) -> None:
        """Unset publish follows force when the crate is not on the registry."""
        forced = self._result()
        await check_cargo(forced, fake_probes(FakeCargoProbe()), force=True)
        assert forced.publish_detail.cargo.publish is True
        assert forced.publish_detail.cargo.registries_publish == {'internal': True}

        unforced = self._result()
        await check_cargo(unforced, fake_probes(FakeCargoProbe()), force=False)
        assert unforced.publish_detail.cargo.publish is False

    @pytest.mark.asyncio()
    async def test_explicit_false_beats_force(self) -> None:
        """publish = false is never overridden."""
        probe = FakeCargoProbe()
        result = self._result(publish=False)
        await check_cargo(result, fake_probes(probe), force=True)
        assert result.publish_detail.cargo.publish is False
        assert probe.calls == [], 'no probe without intent'

    @pytest.mark.asyncio()
    async def test_dev_version(self) -> None:
        """Versions ending in dev never publish."""
        result = self._result(version='0.2.0-dev', publish=True)
        await check_cargo(result, fake_probes(FakeCargoProbe()), force=True)
        assert result.publish_detail.cargo.publish is False

    @pytest.mark.asyncio()
    async def test_already_published(self) -> None:
        """An existing version is not published again."""
        result = self._result(publish=True)
        await check_cargo(result, fake_probes(FakeCargoProbe([('api', '0.1.0')])), force=False)
        assert result.publish_detail.cargo.publish is False


class TestCheckWorkspace:
    """End-to-end tests for check_workspace()."""

    @pytest.mark.asyncio()
    async def test_manifest_publish_false(self, tmp_path: Path) -> None:
        """A manifest with publish = false stays unpublished under force."""
        entries = [package_entry(tmp_path, 'crates/api', 'api', publish=[], metadata=_cargo(registries=['internal']))]
        results = await _check(
            tmp_path, entries, CheckOptions(check_publish=True, force_cargo=True), cargo=FakeCargoProbe()
        )
        assert results.members['api'].publish_detail.cargo.publish is False
        assert results.members['api'].publish is False

    @pytest.mark.asyncio()
    async def test_backfeed_to_dependencies(self, tmp_path: Path) -> None:
        """Registries of a dependant reach its dependencies."""
        entries = [
            package_entry(
                tmp_path,
                'crates/api',
                'api',
                dependencies=[dep('core', path='../core')],
                metadata=_cargo(publish=True, registries=['internal']),
            ),
            package_entry(tmp_path, 'crates/core', 'core', metadata=_cargo(publish=True)),
        ]
        probes = {'internal': FakeCargoProbe([('api', '0.1.0')])}
        results = await _check(tmp_path, entries, CheckOptions(check_publish=True), cargo=probes)
        core = results.members['core']
        assert core.publish_detail.cargo.registries == ['internal'], f'got {core.publish_detail.cargo.registries}'
        assert core.publish_detail.cargo.publish is True
        assert results.members['api'].publish is False
        api_dep = results.members['api'].dependencies[0]
        assert api_dep.package == 'core'
        assert api_dep.publishable is True
        assert results.members['core'].dependants == ['api']

    @pytest.mark.asyncio()
    async def test_allow_public_adds_crates_io(self, tmp_path: Path) -> None:
        """allow_public publishes to crates.io as well."""
        entries = [package_entry(tmp_path, 'crates/api', 'api', metadata=_cargo(publish=True, allow_public=True))]
        results = await _check(tmp_path, entries, CheckOptions(check_publish=True), cargo=FakeCargoProbe())
        assert results.members['api'].publish_detail.cargo.registries_publish == {'crates.io': True}

    @pytest.mark.asyncio()
    async def test_docker_manifest_unknown(self, tmp_path: Path) -> None:
        """A missing image with intent publishes, using configured auth."""
        metadata = {'cratekit': {'publish': {'docker': {'publish': True, 'repository': 'reg.io'}}}}
        entries = [package_entry(tmp_path, 'crates/api', 'api', version='1.2.3', metadata=metadata)]
        oci = FakeOciProbe()
        creds = DockerCredentials({'reg.io': RegistryAuth.basic('u', 'p')})
        results = await _check(tmp_path, entries, CheckOptions(check_publish=True), oci=oci, credentials=creds)
        assert results.members['api'].publish_detail.docker.publish is True
        assert oci.calls == [('reg.io', 'api', '1.2.3', RegistryAuth.basic('u', 'p'))], f'got {oci.calls}'

    @pytest.mark.asyncio()
    async def test_docker_without_repository(self, tmp_path: Path) -> None:
        """Docker intent with no repository anywhere is recorded as an error."""
        metadata = {'cratekit': {'publish': {'docker': {'publish': True}}}}
        entries = [package_entry(tmp_path, 'crates/api', 'api', metadata=metadata)]
        results = await _check(tmp_path, entries, CheckOptions(check_publish=True))
        docker = results.members['api'].publish_detail.docker
        assert docker.publish is False
        assert docker.error is not None and 'no repository' in docker.error
        assert [e.code for e in results.errors] == [E.PUBLISH_MISSING_REPOSITORY]

    @pytest.mark.asyncio()
    async def test_probe_error_raised_with_fail_unit_error(self, tmp_path: Path) -> None:
        """fail_unit_error turns a recorded error into a failure."""
        metadata = {'cratekit': {'publish': {'docker': {'publish': True, 'repository': 'reg.io'}}}}
        entries = [package_entry(tmp_path, 'crates/api', 'api', metadata=metadata)]
        oci = FakeOciProbe(error=CrateKitError(code=E.REGISTRY_AUTH_FAILED, message='denied'))
        with pytest.raises(CrateKitError) as exc_info:
            await _check(tmp_path, entries, CheckOptions(check_publish=True, fail_unit_error=True), oci=oci)
        assert exc_info.value.code is E.REGISTRY_AUTH_FAILED

    @pytest.mark.asyncio()
    async def test_binary_nightly(self, tmp_path: Path) -> None:
        """Nightly binaries get a day-stamped version and a channel suffix."""
        metadata = {
            'cratekit': {
                'publish': {
                    'binary': {
                        'publish': True,
                        'name': 'Tool',
                        'targets': ['x86_64-unknown-linux-gnu', 'x86_64-pc-windows-msvc'],
                    }
                }
            }
        }
        entries = [package_entry(tmp_path, 'crates/tool', 'tool', version='1.0.0', metadata=metadata)]
        existing = [
            'tool/nightly/tool-x86_64-unknown-linux-gnu-1.88-v1.0.0.10',
            'tool/nightly/tool-x86_64-pc-windows-msvc-1.88-v1.0.0.10.exe',
        ]
        results = await _check(tmp_path, entries, CheckOptions(check_publish=True), blob=FakeBlobStore(existing))
        binary = results.members['tool'].publish_detail.binary
        assert binary.rc_version == '1.0.0.10', f'got {binary.rc_version}'
        assert binary.name == 'Tool Nightly', f'got {binary.name}'
        assert binary.blob_dir == 'tool/nightly'
        assert binary.publish is False, 'every target already uploaded'

    @pytest.mark.asyncio()
    async def test_tag_gating(self, tmp_path: Path) -> None:
        """On a tag, other packages lose every intent before probing."""
        entries = [
            package_entry(tmp_path, 'crates/api', 'api', metadata=_cargo(publish=True, registries=['internal'])),
            package_entry(tmp_path, 'crates/worker', 'worker', metadata=_cargo(publish=True, registries=['internal'])),
        ]
        probe = FakeCargoProbe()
        results = await _check(
            tmp_path,
            entries,
            CheckOptions(check_publish=True),
            environ={'GITHUB_REF': 'refs/tags/api-beta'},
            cargo=probe,
        )
        assert results.members['api'].publish is True
        assert results.members['api'].publish_detail.release_channel is ReleaseChannel.BETA
        assert results.members['worker'].publish is False
        assert probe.calls == [('api', '0.1.0')], f'got {probe.calls}'

    @pytest.mark.asyncio()
    async def test_whitelist_and_blacklist(self, tmp_path: Path) -> None:
        """Only listed packages are reported."""
        entries = [package_entry(tmp_path, f'crates/{n}', n) for n in ('a', 'b', 'c')]
        results = await _check(tmp_path, entries, CheckOptions(whitelist=['a', 'b'], blacklist=['b']))
        assert list(results.members) == ['a'], f'got {list(results.members)}'

    @pytest.mark.asyncio()
    async def test_cycle_is_fatal(self, tmp_path: Path) -> None:
        """A normal dependency cycle aborts the check."""
        entries = [
            package_entry(tmp_path, 'crates/a', 'a', dependencies=[dep('b', path='../b')]),
            package_entry(tmp_path, 'crates/b', 'b', dependencies=[dep('a', path='../a')]),
        ]
        with pytest.raises(CrateKitError) as exc_info:
            await _check(tmp_path, entries, CheckOptions())
        assert exc_info.value.code is E.GRAPH_CYCLE_DETECTED

    @pytest.mark.asyncio()
    async def test_change_detection(self, tmp_path: Path) -> None:
        """Changed packages and their dependants are tested."""
        entries = [
            package_entry(tmp_path, 'crates/core', 'core'),
            package_entry(tmp_path, 'crates/api', 'api', dependencies=[dep('core', path='../core')]),
            package_entry(tmp_path, 'crates/docs', 'docs'),
        ]
        vcs = FakeVCS(
            tmp_path,
            revisions={'main': 'a' * 40, 'HEAD': 'h' * 40},
            diffs={('a' * 40, 'h' * 40): [FileChange('M', 'crates/core/src/lib.rs', 'crates/core/src/lib.rs')]},
        )
        options = CheckOptions(check_changed=True, strategy=Explicit('main', 'HEAD'))
        results = await _check(tmp_path, entries, options, vcs=vcs)
        flags = {n: (r.changed, r.dependencies_changed, r.perform_test) for n, r in results.members.items()}
        assert flags == {
            'api': (False, True, True),
            'core': (True, False, True),
            'docs': (False, False, False),
        }, f'got {flags}'

    @pytest.mark.asyncio()
    async def test_all_strategy(self, tmp_path: Path) -> None:
        """All marks every package without diffing."""
        entries = [package_entry(tmp_path, 'crates/a', 'a')]
        vcs = FakeVCS(tmp_path)
        results = await _check(tmp_path, entries, CheckOptions(check_changed=True, strategy=All()), vcs=vcs)
        assert results.members['a'].perform_test is True
        assert vcs.diff_calls == []

    @pytest.mark.asyncio()
    async def test_json_output(self, tmp_path: Path) -> None:
        """to_json is keyed by package and can hide dependencies."""
        entries = [package_entry(tmp_path, 'crates/a', 'a')]
        results = await _check(tmp_path, entries, CheckOptions(hide_dependencies=True))
        data = json.loads(results.to_json())
        assert set(data) == {'a'}
        assert 'dependencies' not in data['a']
        assert data['a']['publish_detail']['ci_runner'] == 'rust-1-88-scale-set'
        assert data['a']['publish_detail']['release_channel'] == 'nightly'
