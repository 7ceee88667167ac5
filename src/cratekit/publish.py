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

"""Publish DAG walk.

Publishes every package whose check marked it for publishing, as soon as
its in-repository dependencies are settled, with at most ``job_limit``
packages working at once.

Key Concepts (ELI5)::

    ┌─────────────────────┬────────────────────────────────────────────────┐
    │ Concept             │ ELI5 Explanation                               │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ PublishStatus       │ A scoreboard: package -> True, False, or       │
    │                     │ "not decided yet". Waiters sleep on a          │
    │                     │ condition until their deps are decided.        │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Poisoning           │ A dependency scored False means we score       │
    │                     │ False too, without running anything.           │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Semaphore           │ Only job_limit packages publish at a time.     │
    │                     │ Waiting for deps happens outside the window.   │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Patch and restore   │ Before publishing to registry R the crate is   │
    │                     │ patched to R, and patched back afterwards.     │
    └─────────────────────┴────────────────────────────────────────────────┘

Per package::

    for each registry R with registries_publish[R]:
        patch main -> R ──► cargo publish --registry R --allow-dirty ──► patch R -> main
    docker build ──► docker tag :latest ──► docker push :version ──► docker push :latest

The first failing target stops the rest of that package.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from cratekit.backends.script import ScriptOutput, ScriptRunner, execute_script
from cratekit.check_workspace import Result
from cratekit.config import CRATES_IO, Registries, blacklisted_keys, registry_env
from cratekit.errors import CrateKitError
from cratekit.junit import JUnitReport, TestCase, TestSuite
from cratekit.logging import get_logger
from cratekit.patcher import patch_crate
from cratekit.ui import NullProgress, ProgressObserver, Stage

logger = get_logger(__name__)

JUNIT_FILENAME = 'junit.publish.xml'
SSH_ENV = ('GIT_SSH_COMMAND', 'SSH_AUTH_SOCK')


class PublishStatus:
    """``package -> bool | None`` map shared by the publish tasks.

    ``None`` means undecided. Packages that are not being published start
    out as ``True`` so dependants never wait on them.
    """

    def __init__(self, undecided: Iterable[str], settled: Iterable[str] = ()) -> None:
        """Create the map with ``undecided`` packages pending."""
        self._status: dict[str, bool | None] = dict.fromkeys(settled, True)
        self._status.update(dict.fromkeys(undecided))
        self._lock = asyncio.Lock()
        self._decided = asyncio.Condition(self._lock)

    def get(self, name: str) -> bool | None:
        """Current value; unknown packages count as ``True``."""
        return self._status.get(name, True)

    def snapshot(self) -> dict[str, bool | None]:
        """Copy of the whole map."""
        return dict(self._status)

    async def record(self, name: str, success: bool) -> None:
        """Settle ``name`` and wake every waiter."""
        async with self._decided:
            self._status[name] = success
            self._decided.notify_all()

    async def wait_for(self, dependencies: Iterable[str]) -> bool:
        """Block until every dependency is settled; ``True`` if all succeeded."""
        deps = list(dependencies)
        async with self._decided:
            await self._decided.wait_for(lambda: all(self.get(d) is not None for d in deps))
            return all(self.get(d) for d in deps)


@dataclass
class PublishOptions:
    """Knobs of one publish run.

    Attributes:
        artifacts: Directory receiving ``junit.publish.xml``.
        job_limit: Packages publishing at once.
        dry_run: ``cargo publish --dry-run`` and no docker work.
        main_registry: Registry the tree normally points at.
        blacklist_env: Glob patterns stripped from cargo's environment.
        docker_registry: Image repository when a package names none.
    """

    artifacts: Path = Path('artifacts')
    job_limit: int = 2
    dry_run: bool = False
    main_registry: str = CRATES_IO
    blacklist_env: list[str] = field(default_factory=lambda: ['CARGO_REGISTRIES_*'])
    docker_registry: str | None = None


@dataclass
class TargetOutcome:
    """One publish target of one package (a registry or the image)."""

    name: str
    should_publish: bool
    success: bool = False
    stdout: str = ''
    stderr: str = ''
    duration: float = 0.0

    def absorb(self, output: ScriptOutput) -> None:
        """Accumulate a command's output."""
        self.stdout = '\n'.join(s for s in (self.stdout, output.stdout) if s)
        self.stderr = '\n'.join(s for s in (self.stderr, output.stderr) if s)
        self.success = output.success

    def fail(self, message: str) -> None:
        """Mark failed with ``message`` on stderr."""
        self.stderr = '\n'.join(s for s in (self.stderr, message) if s)
        self.success = False

    def testcase(self) -> TestCase:
        """JUnit case; targets that were never due are skipped."""
        if not self.should_publish:
            return TestCase.skipped(self.name)
        if self.success:
            return TestCase.success(self.name, self.duration).with_output(self.stdout, self.stderr)
        return TestCase.failure(self.name, self.duration, 'required', self.name).with_output(self.stdout, self.stderr)


@dataclass
class PackagePublishOutcome:
    """Everything one package's publish produced."""

    workspace: str
    package: str
    version: str
    success: bool
    poisoned: bool = False
    targets: list[TargetOutcome] = field(default_factory=list)

    def suite(self) -> TestSuite:
        """JUnit suite named after the package."""
        suite = TestSuite(f'{self.workspace} - {self.package} - {self.version}')
        for target in self.targets:
            suite.add(target.testcase())
        return suite


@dataclass
class PublishRunResult:
    """Outcome of :func:`publish_all`."""

    success: bool
    outcomes: dict[str, PackagePublishOutcome] = field(default_factory=dict)
    report: JUnitReport = field(default_factory=JUnitReport)
    junit_path: Path | None = None

    @property
    def failed(self) -> list[str]:
        """Names of packages that did not publish."""
        return sorted(n for n, o in self.outcomes.items() if not o.success)


def _planned_targets(result: Result) -> list[TargetOutcome]:
    cargo = result.publish_detail.cargo
    targets = [
        TargetOutcome(f'cargo publish -r {name}', should_publish=bool(cargo.publish) and flag)
        for name, flag in sorted(cargo.registries_publish.items())
    ]
    targets.append(TargetOutcome('docker build && docker push', should_publish=result.publish_detail.docker.publish))
    return targets


class Publisher:
    """Runs the publish targets of single packages.

    Args:
        options: Run options.
        repo_root: Repository root.
        registries: Registry configuration map.
        runner: Script runner for every command.
    """

    def __init__(
        self,
        options: PublishOptions,
        *,
        repo_root: Path,
        registries: Registries,
        runner: ScriptRunner = execute_script,
    ) -> None:
        """Keep the collaborators."""
        self.options = options
        self.repo_root = repo_root
        self.registries = registries
        self.runner = runner

    async def _cargo(self, result: Result, registry: str, target: TargetOutcome) -> None:
        package_dir = self.repo_root / result.path
        config = self.registries.get(registry)
        if registry != CRATES_IO and not config.index:
            target.fail(f'registry {registry} is not configured: missing index')
            return
        main = self.options.main_registry
        try:
            await patch_crate(package_dir, self.repo_root, main, registry, self.registries)
        except CrateKitError as exc:
            target.fail(str(exc))
        else:
            parts = ['cargo publish', result.publish_detail.additional_args, '--registry', registry, '--allow-dirty']
            command = ' '.join(p for p in parts if p)
            if self.options.dry_run:
                command += ' --dry-run'
            output = await self.runner(
                command,
                cwd=package_dir,
                env=registry_env(config),
                env_remove=[*blacklisted_keys(self.options.blacklist_env), *SSH_ENV],
                log_level='info',
            )
            target.absorb(output)
        try:
            await patch_crate(package_dir, self.repo_root, registry, main, self.registries)
        except CrateKitError as exc:
            target.fail(f'could not patch back to {main}: {exc}')

    def _docker_build_command(self, result: Result, image: str) -> str:
        docker = result.publish_detail.docker
        package_dir = self.repo_root / result.path
        dockerfile = docker.dockerfile or str(package_dir / 'Dockerfile')
        args = ['-t', image, '-f', dockerfile]
        main = self.registries.get(self.options.main_registry)
        if main.private_key:
            args += ['--ssh', f'{main.name}={main.private_key}']
        args.append(docker.context or '.')
        return f'docker build {" ".join(args)}'

    async def _docker(self, result: Result, target: TargetOutcome) -> None:
        if self.options.dry_run:
            target.success = True
            return
        repository = result.publish_detail.docker.repository or self.options.docker_registry
        if not repository:
            target.fail(f'{result.package}: no docker repository configured')
            return
        image = f'{repository}/{result.package}:{result.version}'
        latest = f'{repository}/{result.package}:latest'
        commands = [
            self._docker_build_command(result, image),
            f'docker tag {image} {latest}',
            f'docker push {image}',
            f'docker push {latest}',
        ]
        for command in commands:
            output = await self.runner(
                command,
                cwd=self.repo_root,
                env_remove=[*blacklisted_keys(self.options.blacklist_env), *SSH_ENV],
                log_level='info',
            )
            target.absorb(output)
            if not output.success:
                return

    async def publish(self, result: Result) -> PackagePublishOutcome:
        """Publish every due target of ``result``, stopping at the first failure."""
        outcome = PackagePublishOutcome(
            workspace=result.workspace,
            package=result.package,
            version=result.version,
            success=True,
            targets=_planned_targets(result),
        )
        cargo_targets = dict(zip(sorted(result.publish_detail.cargo.registries_publish), outcome.targets))
        for registry, target in cargo_targets.items():
            if not target.should_publish or not outcome.success:
                continue
            started = time.monotonic()
            await self._cargo(result, registry, target)
            target.duration = time.monotonic() - started
            outcome.success = target.success
        docker = outcome.targets[-1]
        if docker.should_publish and outcome.success:
            started = time.monotonic()
            await self._docker(result, docker)
            docker.duration = time.monotonic() - started
            outcome.success = docker.success
        logger.info(
            'package_published' if outcome.success else 'package_publish_failed',
            package=result.package,
            version=result.version,
            dry_run=self.options.dry_run,
        )
        return outcome


async def publish_all(
    results: Mapping[str, Result],
    options: PublishOptions,
    *,
    repo_root: Path,
    registries: Registries,
    runner: ScriptRunner = execute_script,
    observer: ProgressObserver | None = None,
) -> PublishRunResult:
    """Publish every package marked ``publish`` in dependency order.

    Args:
        results: Check results keyed by package name.
        options: Run options.
        repo_root: Repository root.
        registries: Registry configuration map.
        runner: Script runner for every command.
        observer: Progress observer.

    Returns:
        Per-package outcomes and the JUnit report written to
        ``artifacts/junit.publish.xml``.
    """
    observer = observer or NullProgress()
    due = [r for r in results.values() if r.publish]
    status = PublishStatus((r.package for r in due), settled=(n for n, r in results.items() if not r.publish))
    semaphore = asyncio.Semaphore(max(1, options.job_limit))
    publisher = Publisher(options, repo_root=repo_root, registries=registries, runner=runner)
    run = PublishRunResult(success=True)
    logger.info('publish_starting', packages=[r.package for r in due], dry_run=options.dry_run)

    async def _one(result: Result) -> None:
        observer.on_stage(result.package, Stage.WAITING)
        # cargo strips dev dependencies on publish; they may also close tolerated cycles.
        deps_ok = await status.wait_for(d.package for d in result.dependencies if d.kind != 'dev')
        if not deps_ok:
            logger.warning('publish_poisoned', package=result.package)
            outcome = PackagePublishOutcome(
                workspace=result.workspace,
                package=result.package,
                version=result.version,
                success=False,
                poisoned=True,
                targets=_planned_targets(result),
            )
            for target in outcome.targets:
                if target.should_publish:
                    target.fail('a dependency failed to publish')
            observer.on_stage(result.package, Stage.BLOCKED)
        else:
            async with semaphore:
                observer.on_stage(result.package, Stage.RUNNING)
                outcome = await publisher.publish(result)
            observer.on_stage(result.package, Stage.DONE if outcome.success else Stage.FAILED)
        run.outcomes[result.package] = outcome
        await status.record(result.package, outcome.success)

    with observer:
        observer.init_packages([r.package for r in due])
        await asyncio.gather(*(_one(r) for r in due))
        observer.on_complete()

    run.success = all(o.success for o in run.outcomes.values())
    for name in sorted(run.outcomes):
        run.report.add(run.outcomes[name].suite())
    run.junit_path = options.artifacts / JUNIT_FILENAME
    await run.report.write(run.junit_path)
    logger.info('publish_finished', success=run.success, failed=run.failed, junit=str(run.junit_path))
    return run


__all__ = [
    'JUNIT_FILENAME',
    'PackagePublishOutcome',
    'PublishOptions',
    'PublishRunResult',
    'PublishStatus',
    'Publisher',
    'TargetOutcome',
    'publish_all',
]
