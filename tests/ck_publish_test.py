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

"""Tests for cratekit.publish: the publish DAG walk."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from cratekit.backends.script import ScriptOutput
from cratekit.check_workspace import Result, ResultDependency
from cratekit.config import RegistryConfig, Registries
from cratekit.publish import JUNIT_FILENAME, PublishOptions, PublishRunResult, PublishStatus, publish_all

from tests._fakes import OK, FakeRunner, RunnerCall, write_manifest

INDEX = 'https://internal.example.com/index'


def _registries(root: Path) -> Registries:
    return Registries(
        {'internal': RegistryConfig(name='internal', index=INDEX, token='tok')},
        cwd=root,
        environ={'CARGO_HOME': str(root / '.cargo-home')},
    )


def _result(
    root: Path,
    name: str,
    *deps: str,
    registries: dict[str, bool] | None = None,
    docker: bool = False,
    dev_deps: tuple[str, ...] = (),
) -> Result:
    write_manifest(root / 'crates' / name, name=name)
    result = Result(
        workspace='ws',
        workspace_path=root,
        package=name,
        version='0.1.0',
        path=f'crates/{name}',
        dependencies=[ResultDependency(package=d, version='^0.1.0') for d in deps]
        + [ResultDependency(package=d, version='*', kind='dev', path=f'../{d}') for d in dev_deps],
    )
    cargo = result.publish_detail.cargo
    cargo.registries_publish = {'internal': True} if registries is None else registries
    cargo.publish = any(cargo.registries_publish.values())
    result.publish_detail.docker.publish = docker
    result.publish_detail.docker.repository = 'reg.io/team' if docker else None
    result.publish = cargo.publish or docker
    return result


async def _publish(
    root: Path, results: dict[str, Result], runner: FakeRunner, **kw: object
) -> PublishRunResult:
    options = PublishOptions(artifacts=root / 'artifacts', **kw)  # type: ignore[arg-type]
    return await publish_all(results, options, repo_root=root, registries=_registries(root), runner=runner)


class TestPublishStatus:
    """Tests for PublishStatus."""

    @pytest.mark.asyncio()
    async def test_wait_for(self) -> None:
        """Waiters wake when dependencies settle; a False poisons."""
        status = PublishStatus(['a', 'b'], settled=['c'])
        waiter = asyncio.ensure_future(status.wait_for(['a', 'b', 'c', 'unknown']))
        await asyncio.sleep(0)
        assert not waiter.done()
        await status.record('a', True)
        await status.record('b', False)
        assert await waiter is False
        assert status.snapshot() == {'c': True, 'a': True, 'b': False}


class TestPublishAll:
    """Tests for publish_all()."""

    @pytest.mark.asyncio()
    async def test_dependency_order_and_command(self, tmp_path: Path) -> None:
        """A dependency publishes before its dependant, with the registry environment."""
        results = {'api': _result(tmp_path, 'api', 'core'), 'core': _result(tmp_path, 'core')}
        runner = FakeRunner()
        run = await _publish(tmp_path, results, runner, job_limit=2)
        assert run.success is True
        assert [c.cwd for c in runner.calls] == [tmp_path / 'crates/core', tmp_path / 'crates/api']
        call = runner.calls[0]
        assert call.command == 'cargo publish --registry internal --allow-dirty'
        assert call.env['CARGO_REGISTRIES_INTERNAL_INDEX'] == INDEX
        assert call.env['CARGO_REGISTRIES_INTERNAL_TOKEN'] == 'tok'
        assert 'GIT_SSH_COMMAND' in call.env_remove

    @pytest.mark.asyncio()
    async def test_manifest_patched_during_publish(self, tmp_path: Path) -> None:
        """cargo sees publish = [internal]; afterwards the crate points back at the main registry."""
        manifest = tmp_path / 'crates' / 'core' / 'Cargo.toml'
        seen: list[str] = []

        def on_publish(call: RunnerCall) -> ScriptOutput:
            seen.append(manifest.read_text(encoding='utf-8'))
            return OK

        runner = FakeRunner([('cargo publish', on_publish)])
        results = {'core': _result(tmp_path, 'core')}
        await _publish(tmp_path, results, runner)
        assert 'publish = ["internal"]' in seen[0]
        assert 'publish = ["crates.io"]' in manifest.read_text(encoding='utf-8')

    @pytest.mark.asyncio()
    async def test_failure_poisons_dependants(self, tmp_path: Path) -> None:
        """api never runs when core fails; both are reported failed."""
        results = {'api': _result(tmp_path, 'api', 'core'), 'core': _result(tmp_path, 'core')}
        runner = FakeRunner(fail=['cargo publish'])
        run = await _publish(tmp_path, results, runner)
        assert run.success is False
        assert run.failed == ['api', 'core']
        assert run.outcomes['api'].poisoned is True
        assert len(runner.calls) == 1

    @pytest.mark.asyncio()
    async def test_unpublished_dependency_does_not_block(self, tmp_path: Path) -> None:
        """Dependencies that are not due count as settled."""
        core = _result(tmp_path, 'core', registries={})
        results = {'api': _result(tmp_path, 'api', 'core'), 'core': core}
        run = await _publish(tmp_path, results, FakeRunner())
        assert run.success is True
        assert list(run.outcomes) == ['api']

    @pytest.mark.asyncio()
    async def test_dev_cycle_does_not_deadlock(self, tmp_path: Path) -> None:
        """A local dev back edge is not waited on."""
        results = {
            'api': _result(tmp_path, 'api', 'core'),
            'core': _result(tmp_path, 'core', dev_deps=('api',)),
        }
        run = await asyncio.wait_for(
            _publish(tmp_path, results, FakeRunner()),
            timeout=5,
        )
        assert run.success is True

    @pytest.mark.asyncio()
    async def test_docker_commands(self, tmp_path: Path) -> None:
        """Cargo first, then build, tag and push both tags."""
        results = {'api': _result(tmp_path, 'api', docker=True)}
        runner = FakeRunner()
        await _publish(tmp_path, results, runner)
        dockerfile = tmp_path / 'crates' / 'api' / 'Dockerfile'
        assert runner.commands == [
            'cargo publish --registry internal --allow-dirty',
            f'docker build -t reg.io/team/api:0.1.0 -f {dockerfile} .',
            'docker tag reg.io/team/api:0.1.0 reg.io/team/api:latest',
            'docker push reg.io/team/api:0.1.0',
            'docker push reg.io/team/api:latest',
        ], f'got {runner.commands}'

    @pytest.mark.asyncio()
    async def test_dry_run(self, tmp_path: Path) -> None:
        """Dry runs add --dry-run and skip docker entirely."""
        results = {'api': _result(tmp_path, 'api', docker=True)}
        runner = FakeRunner()
        run = await _publish(tmp_path, results, runner, dry_run=True)
        assert run.success is True
        assert runner.commands == ['cargo publish --registry internal --allow-dirty --dry-run']

    @pytest.mark.asyncio()
    async def test_unconfigured_registry(self, tmp_path: Path) -> None:
        """A registry without an index fails that target without running cargo."""
        results = {'api': _result(tmp_path, 'api', registries={'elsewhere': True})}
        runner = FakeRunner()
        run = await _publish(tmp_path, results, runner)
        assert run.success is False
        assert runner.calls == []
        assert 'missing index' in run.outcomes['api'].targets[0].stderr

    @pytest.mark.asyncio()
    async def test_junit_report(self, tmp_path: Path) -> None:
        """One suite per package; undue targets are skipped cases."""
        results = {'api': _result(tmp_path, 'api')}
        run = await _publish(tmp_path, results, FakeRunner())
        assert run.junit_path == tmp_path / 'artifacts' / JUNIT_FILENAME
        suite = run.report.suites[0]
        assert suite.name == 'ws - api - 0.1.0'
        assert [c.outcome.value for c in suite.cases] == ['success', 'skipped']
