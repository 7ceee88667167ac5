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

"""Test orchestrator.

Runs a fixed pipeline per package under a global parallelism budget and
collects everything into one JUnit report.

Pipeline (per package)::

    SETUP ──► SERVICES ──► PRE_SCRIPTS ──► STEPS ──► TEARDOWN ──► DONE
                 │              │            │           ▲
                 └──── failure ─┴────────────┴──► FAILED ┘ (teardown always runs)

    SERVICES     service_database, service_azurite, service_minio
    PRE_SCRIPTS  additional_cache_miss (repo root), additional_script (package, line by line)
    STEPS        1 cargo_fmt     cargo fmt --verbose -- --check
                 2 cargo_check   cargo check --all-targets {args}
                 3 cargo_clippy  cargo clippy --all-targets {args} -- -D warnings
                 4 cargo_doc     cargo doc --no-deps            (RUSTDOCFLAGS=-D warnings)
                 5 cargo_test    cargo test --all-targets {args} (.env written around it)
                 6 cargo_lock    lockfile fixer, check mode, on the package's workspace

    A failing mandatory step records every later step as skipped.
    SKIP_{STEP}_TEST=true drops a step entirely.

Scheduling::

    results ──filter(not skip and (perform_test or run_all))──► one task per package
                                                                   │
                                          asyncio.Semaphore(J) ◄───┘
                                                                   │
    asyncio.wait(FIRST_COMPLETED) ◄── outcomes ────────────────────┘
        first failure + fail_fast: tasks that have not started yet never
        start; tasks already running finish and are reported.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from cratekit import metrics
from cratekit._io import remove_file, write_file
from cratekit.backends.docker import (
    SETTLE_SECONDS,
    DockerContainer,
    ServiceScope,
    free_local_port,
    minio_endpoint,
    postgres_url,
)
from cratekit.backends.script import ScriptOutput, ScriptRunner, execute_script, run_script
from cratekit.backends.vcs import VCS
from cratekit.check_workspace import Result
from cratekit.errors import E, CrateKitError
from cratekit.junit import JUnitReport, TestCase, TestSuite
from cratekit.lockfile import fix_workspace_lockfile
from cratekit.logging import get_logger
from cratekit.ui import NullProgress, ProgressObserver, Stage

logger = get_logger(__name__)

JUNIT_FILENAME = 'junit.rust.xml'
LOCK_STEP_COMMAND = 'cratekit fix-lock-files --check'
STEP_IDS = ('cargo_fmt', 'cargo_check', 'cargo_clippy', 'cargo_doc', 'cargo_test', 'cargo_lock')

MINIO_ENV = {
    'S3_REGION': 'us-east-1',
    'S3_BUCKET': 'test-bucket',
    'S3_ACCESS_KEY_ID': 'minioadmin',
    'S3_SECRET_ACCESS_KEY': 'minioadmin',
}


class PipelineState(str, Enum):
    """Where a package pipeline is."""

    SETUP = 'setup'
    SERVICES = 'services'
    PRE_SCRIPTS = 'pre_scripts'
    STEPS = 'steps'
    TEARDOWN = 'teardown'
    DONE = 'done'
    FAILED = 'failed'


@dataclass
class TestArgs:
    """Typed view of a package's ``test.args`` table.

    Attributes:
        service_database: Start PostgreSQL and export ``DATABASE_URL``.
        service_azurite: Start the Azure storage emulator.
        service_minio: Start MinIO and export ``S3_*`` settings.
        additional_cache_miss: Command run in the repository root first.
        additional_script: Script run line by line in the package.
        additional_args: Appended to check, clippy and test.
        timeout: Per-step timeout in seconds.
        optional_steps: Step ids whose failure does not fail the package.
    """

    __test__ = False  # not a pytest class

    service_database: bool = False
    service_azurite: bool = False
    service_minio: bool = False
    additional_cache_miss: str | None = None
    additional_script: str | None = None
    additional_args: str = ''
    timeout: float | None = None
    optional_steps: list[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, args: Mapping[str, Any], package: str = '') -> TestArgs:
        """Validate and convert a raw ``test.args`` table; unknown keys are ignored.

        Raises:
            CrateKitError: ``CK-WORKSPACE-METADATA-INVALID`` on wrong types.
        """

        def invalid(key: str, expected: str) -> CrateKitError:
            return CrateKitError(
                code=E.WORKSPACE_METADATA_INVALID,
                message=f"{package}: test.args '{key}' must be {expected}",
            )

        parsed = cls()
        for key in ('service_database', 'service_azurite', 'service_minio'):
            value = args.get(key, False)
            if not isinstance(value, bool):
                raise invalid(key, 'a boolean')
            setattr(parsed, key, value)
        for key in ('additional_cache_miss', 'additional_script', 'additional_args'):
            value = args.get(key)
            if value is None:
                continue
            if not isinstance(value, str):
                raise invalid(key, 'a string')
            setattr(parsed, key, value)
        timeout = args.get('timeout')
        if timeout is not None:
            if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
                raise invalid('timeout', 'a positive number of seconds')
            parsed.timeout = float(timeout)
        optional = args.get('optional_steps', [])
        if not isinstance(optional, list) or not all(isinstance(s, str) for s in optional):
            raise invalid('optional_steps', 'a list of step ids')
        parsed.optional_steps = list(optional)
        return parsed


Hook = Callable[[], Awaitable[None]]


@dataclass
class TestStep:
    """One numbered step of the pipeline."""

    __test__ = False  # not a pytest class

    id: str
    command: str
    optional: bool = False
    env: dict[str, str] = field(default_factory=dict)
    pre: Hook | None = None
    post: Hook | None = None


@dataclass
class TestOptions:
    """Knobs of one ``tests`` run.

    Attributes:
        artifacts: Directory receiving ``junit.rust.xml``.
        run_all: Test every package, changed or not.
        job_limit: Package pipelines running at once.
        inner_job_limit: ``--jobs`` for cargo; 0 leaves cargo's default.
        fail_fast: Start no new package after the first failure.
        test_command: Command of the ``cargo_test`` step.
        settle: Seconds to wait after starting a service container.
        probe_services: Also wait for the service port to accept connections.
    """

    __test__ = False  # not a pytest class

    artifacts: Path = Path('artifacts')
    run_all: bool = False
    job_limit: int = 2
    inner_job_limit: int = 0
    fail_fast: bool = True
    test_command: str = 'cargo test --all-targets'
    settle: float = SETTLE_SECONDS
    probe_services: bool = False


@dataclass
class PackageOutcome:
    """What one pipeline produced."""

    package: str
    failed: bool
    state: PipelineState
    report: JUnitReport


@dataclass
class TestRunResult:
    """Verdict and report of a whole test run.

    Attributes:
        failed: Some mandatory step (or pipeline) failed.
        report: Every suite of every pipeline that ran.
        outcomes: Per-package outcomes, in completion order.
        not_started: Packages skipped by fail-fast.
        junit_path: Where the report was written.
    """

    __test__ = False  # not a pytest class

    failed: bool
    report: JUnitReport
    outcomes: list[PackageOutcome] = field(default_factory=list)
    not_started: list[str] = field(default_factory=list)
    junit_path: Path | None = None


def _jobs_flag(flag: str, limit: int) -> str:
    return f' {flag} {limit}' if limit else ''


def _env_file_lines(database_url: str | None, s3_endpoint: str | None) -> list[str]:
    lines = []
    if database_url:
        lines.append(f'DATABASE_URL={database_url}')
    if s3_endpoint:
        lines.append(f'S3_ENDPOINT={s3_endpoint}')
        lines.extend(f'{k}={v}' for k, v in MINIO_ENV.items())
    return lines


def build_steps(
    args: TestArgs,
    *,
    package_dir: Path,
    inner_job_limit: int = 0,
    test_command: str = 'cargo test --all-targets',
    database_url: str | None = None,
    s3_endpoint: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> list[TestStep]:
    """The six numbered steps, minus any dropped by ``SKIP_{ID}_TEST=true``."""
    env = os.environ if environ is None else environ
    extra = f' {args.additional_args}' if args.additional_args else ''
    jobs = _jobs_flag('--jobs', inner_job_limit)
    env_lines = _env_file_lines(database_url, s3_endpoint)
    env_file = package_dir / '.env'

    async def write_env() -> None:
        await write_file(env_file, '\n'.join(env_lines) + '\n')

    async def remove_env() -> None:
        await remove_file(env_file)

    steps = [
        TestStep('cargo_fmt', 'cargo fmt --verbose -- --check'),
        TestStep('cargo_check', f'cargo check --all-targets{extra}{jobs}'),
        TestStep('cargo_clippy', f'cargo clippy --all-targets{extra} -- -D warnings'),
        TestStep('cargo_doc', f'cargo doc --no-deps{jobs}', env={'RUSTDOCFLAGS': '-D warnings'}),
        TestStep(
            'cargo_test',
            f'{test_command}{extra}{jobs}',
            pre=write_env if env_lines else None,
            post=remove_env if env_lines else None,
        ),
        TestStep('cargo_lock', LOCK_STEP_COMMAND),
    ]
    kept = []
    for step in steps:
        if env.get(f'SKIP_{step.id.upper()}_TEST') == 'true':
            logger.info('step_disabled', step=step.id)
            continue
        step.optional = step.id in args.optional_steps
        kept.append(step)
    return kept


def testcase_name(package: str, index: int, total: int, command: str) -> str:
    """Fixed-width case name: package, step counter and command."""
    return f'{package:30.30} {index}/{total} │ {command:50.50}'


class PackagePipeline:
    """The state machine testing one package.

    Args:
        result: The package's check result.
        options: Run options.
        repo_root: Repository root.
        runner: Script runner for every command.
        vcs: Backend handed to the lockfile step.
        environ: Environment used for ``SKIP_*_TEST`` lookups.
    """

    def __init__(
        self,
        result: Result,
        options: TestOptions,
        *,
        repo_root: Path,
        runner: ScriptRunner = execute_script,
        vcs: VCS | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """Prepare suites; nothing runs until :meth:`run`."""
        self.result = result
        self.options = options
        self.repo_root = repo_root
        self.package_dir = repo_root / result.path
        self.runner = runner
        self.vcs = vcs
        self.environ = os.environ if environ is None else environ
        self.state = PipelineState.SETUP
        self.failed = False
        self.database_url: str | None = None
        self.s3_endpoint: str | None = None
        suite_name = f'{result.workspace} - {result.package} - {result.version}'
        self.mandatory = TestSuite(f'Mandatory {suite_name}')
        self.optional = TestSuite(f'Optional {suite_name}')

    def _transition(self, state: PipelineState) -> None:
        logger.debug('pipeline_state', package=self.result.package, state=state.value)
        self.state = state

    def _base_env(self) -> dict[str, str]:
        env = dict(self.result.test_detail.env)
        if self.database_url:
            env['DATABASE_URL'] = self.database_url
        return env

    async def _service(self, services: ServiceScope, name: str, container: DockerContainer) -> bool:
        logger.info('service_starting', package=self.result.package, service=name)
        started = time.monotonic()
        try:
            await services.start(container)
        except CrateKitError as exc:
            self.mandatory.add(TestCase.failure(name, time.monotonic() - started, name, str(exc)))
            logger.error('service_failed', package=self.result.package, service=name, error=str(exc))
            self.failed = True
            return False
        self.mandatory.add(TestCase.success(name, time.monotonic() - started))
        return True

    async def _start_services(self, services: ServiceScope, args: TestArgs) -> None:
        if args.service_database:
            port = free_local_port()
            if await self._service(services, 'service_database', DockerContainer.postgres(port)):
                self.database_url = postgres_url(port)
        if not self.failed and args.service_azurite:
            await self._service(services, 'service_azurite', DockerContainer.azurite())
        if not self.failed and args.service_minio:
            port = free_local_port()
            if await self._service(services, 'service_minio', DockerContainer.minio(port)):
                self.s3_endpoint = minio_endpoint(port)

    async def _pre_scripts(self, args: TestArgs) -> None:
        if args.additional_cache_miss:
            started = time.monotonic()
            output = await self.runner(
                args.additional_cache_miss, cwd=self.repo_root, env=self._base_env(), timeout=args.timeout
            )
            self._record_pre(args.additional_cache_miss, output, time.monotonic() - started)
        if not self.failed and args.additional_script:
            started = time.monotonic()
            output = await run_script(
                args.additional_script, cwd=self.package_dir, env=self._base_env(), runner=self.runner
            )
            self._record_pre('additional_script', output, time.monotonic() - started)

    def _record_pre(self, name: str, output: ScriptOutput, duration: float) -> None:
        if output.success:
            case = TestCase.success(name, duration)
        else:
            self.failed = True
            case = TestCase.failure(name, duration, 'required', name)
        self.mandatory.add(case.with_output(output.stdout, output.stderr))

    async def _lock_step(self) -> ScriptOutput:
        try:
            return await fix_workspace_lockfile(
                self.repo_root,
                self.result.workspace_path,
                check=True,
                vcs=self.vcs,
                runner=self.runner,
            )
        except CrateKitError as exc:
            return ScriptOutput(stdout='', stderr=str(exc), success=False)

    async def _run_step(self, step: TestStep, args: TestArgs) -> ScriptOutput:
        """Run one step between its hooks; a failing hook fails the step."""
        try:
            if step.pre is not None:
                await step.pre()
            try:
                if step.id == 'cargo_lock':
                    output = await self._lock_step()
                else:
                    output = await self.runner(
                        step.command,
                        cwd=self.package_dir,
                        env={**self._base_env(), **step.env},
                        log_level='debug',
                        timeout=args.timeout,
                    )
            finally:
                if step.post is not None:
                    await step.post()
        except (CrateKitError, OSError) as exc:
            logger.warning('step_error', package=self.result.package, step=step.id, error=str(exc))
            return ScriptOutput(stdout='', stderr=str(exc), success=False)
        return output

    async def _steps(self, args: TestArgs) -> None:
        steps = build_steps(
            args,
            package_dir=self.package_dir,
            inner_job_limit=self.options.inner_job_limit,
            test_command=self.options.test_command,
            database_url=self.database_url,
            s3_endpoint=self.s3_endpoint,
            environ=self.environ,
        )
        total = len(steps)
        r = self.result
        for index, step in enumerate(steps, start=1):
            name = testcase_name(r.package, index, total, step.command)
            suite = self.optional if step.optional else self.mandatory
            if self.failed:
                logger.info('step_skipped', package=r.package, step=f'{index}/{total}', command=step.command)
                suite.add(TestCase.skipped(name))
                metrics.record_step(
                    workspace=r.workspace,
                    package=r.package,
                    version=r.version,
                    command=step.command,
                    status='SKIPPED',
                    duration=0.0,
                )
                continue
            logger.info('step_start', package=r.package, step=f'{index}/{total}', command=step.command)
            started = time.monotonic()
            output = await self._run_step(step, args)
            duration = time.monotonic() - started
            if output.success:
                status = 'PASS'
                case = TestCase.success(name, duration)
            else:
                status = 'FAIL'
                self.failed = self.failed or not step.optional
                case = TestCase.failure(name, duration, 'optional' if step.optional else 'required', step.command)
            logger.info(
                'step_pass' if output.success else 'step_fail',
                package=r.package,
                step=f'{index}/{total}',
                command=step.command,
                duration=round(duration, 2),
                optional=step.optional,
            )
            metrics.record_step(
                workspace=r.workspace,
                package=r.package,
                version=r.version,
                command=step.command,
                status=status,
                duration=duration,
            )
            suite.add(case.with_output(output.stdout, output.stderr))

    async def run(self) -> PackageOutcome:
        """Run the whole pipeline; teardown always happens."""
        r = self.result
        started = time.monotonic()
        logger.info('package_testing', workspace=r.workspace, package=r.package, version=r.version)
        if r.changed:
            metrics.record_changed(workspace=r.workspace, package=r.package, version=r.version)
        try:
            args = TestArgs.from_mapping(r.test_detail.args, r.package)
        except CrateKitError as exc:
            self.failed = True
            self.mandatory.add(TestCase.failure('test_args', 0.0, 'required', str(exc)))
            args = None
        scope = ServiceScope(runner=self.runner, settle=self.options.settle, probe=self.options.probe_services)
        async with scope as services:
            if args is not None:
                self._transition(PipelineState.SERVICES)
                await self._start_services(services, args)
                if not self.failed:
                    self._transition(PipelineState.PRE_SCRIPTS)
                    await self._pre_scripts(args)
                self._transition(PipelineState.STEPS)
                await self._steps(args)
            self._transition(PipelineState.TEARDOWN)
        self._transition(PipelineState.FAILED if self.failed else PipelineState.DONE)
        metrics.record_member(
            workspace=r.workspace,
            package=r.package,
            version=r.version,
            success=not self.failed,
            duration=time.monotonic() - started,
        )
        report = JUnitReport([self.mandatory, self.optional])
        return PackageOutcome(package=r.package, failed=self.failed, state=self.state, report=report)


def select_packages(results: Iterable[Result], *, run_all: bool) -> list[Result]:
    """Packages to test: not skipped, and changed unless ``run_all``."""
    return [r for r in results if not r.test_detail.skip and (r.perform_test or run_all)]


def _crashed(package: str, exc: Exception) -> PackageOutcome:
    logger.error('package_pipeline_error', package=package, error=str(exc))
    suite = TestSuite(f'Mandatory {package}')
    suite.add(TestCase.failure('pipeline', 0.0, 'required', str(exc)))
    return PackageOutcome(package=package, failed=True, state=PipelineState.FAILED, report=JUnitReport([suite]))

async def run_tests(
    results: Iterable[Result],
    options: TestOptions,
    *,
    repo_root: Path,
    runner: ScriptRunner = execute_script,
    vcs: VCS | None = None,
    environ: Mapping[str, str] | None = None,
    observer: ProgressObserver | None = None,
) -> TestRunResult:
    """Test every selected package and write ``junit.rust.xml``.

    Returns:
        The verdict and the merged report.
    """
    started = time.monotonic()
    observer = observer or NullProgress()
    selected = select_packages(results, run_all=options.run_all)
    semaphore = asyncio.Semaphore(max(1, options.job_limit))
    stop = asyncio.Event()
    logger.info(
        'tests_starting',
        packages=[r.package for r in selected],
        job_limit=options.job_limit,
        fail_fast=options.fail_fast,
    )

    async def _one(result: Result) -> PackageOutcome | None:
        async with semaphore:
            if stop.is_set():
                observer.on_stage(result.package, Stage.SKIPPED, 'fail-fast')
                return None
            observer.on_stage(result.package, Stage.RUNNING)
            pipeline = PackagePipeline(result, options, repo_root=repo_root, runner=runner, vcs=vcs, environ=environ)
            outcome = await pipeline.run()
            observer.on_stage(result.package, Stage.FAILED if outcome.failed else Stage.DONE)
            # Set before the slot is released so no waiting package starts.
            if outcome.failed and options.fail_fast and not stop.is_set():
                logger.warning('fail_fast_triggered', package=outcome.package)
                stop.set()
            return outcome

    run = TestRunResult(failed=False, report=JUnitReport())
    with observer:
        observer.init_packages([r.package for r in selected])
        tasks = {asyncio.create_task(_one(r)): r.package for r in selected}
        pending = set(tasks)
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                try:
                    outcome = task.result()
                except Exception as exc:
                    outcome = _crashed(tasks[task], exc)
                    observer.on_stage(outcome.package, Stage.FAILED, str(exc))
                    if options.fail_fast:
                        stop.set()
                if outcome is None:
                    run.not_started.append(tasks[task])
                    continue
                run.outcomes.append(outcome)
                run.report.extend(outcome.report)
                if outcome.failed:
                    run.failed = True
        observer.on_complete()

    run.junit_path = options.artifacts / JUNIT_FILENAME
    await run.report.write(run.junit_path)
    duration = time.monotonic() - started
    metrics.record_workspace(success=not run.failed, duration=duration)
    logger.info(
        'tests_finished',
        failed=run.failed,
        packages=len(run.outcomes),
        not_started=sorted(run.not_started),
        duration=round(duration, 2),
        cumulated=round(run.report.time, 2),
        junit=str(run.junit_path),
    )
    return run


__all__ = [
    'JUNIT_FILENAME',
    'STEP_IDS',
    'PackageOutcome',
    'PackagePipeline',
    'PipelineState',
    'TestArgs',
    'TestOptions',
    'TestRunResult',
    'TestStep',
    'build_steps',
    'run_tests',
    'select_packages',
    'testcase_name',
]
