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

"""Publish-eligibility engine.

Answers, for every package in the repository: what would be published,
and does it need testing?

Pipeline::

    discover_packages ──► CrateGraph ──► ensure_acyclic
            │
            ▼
    Result per package (dependencies, dependants, cargo registries)
            │
            ▼
    back-feed registries to transitive dependencies
            │
            ▼
    runtime info: release channel, tag gating, ci_runner, binary naming
            │
            ▼  (--check-publish)
    probes, one package per semaphore slot:
        docker ─► npm ─► cargo ─► binary      (sequential per package)
            │
            ▼  (--check-changed)
    change detection + reverse closure
            │
            ▼
    publish = any target; dependency.publishable mirrors publish

Key Concepts (ELI5)::

    ┌──────────────────────┬────────────────────────────────────────────┐
    │ Concept              │ ELI5 Explanation                           │
    ├──────────────────────┼────────────────────────────────────────────┤
    │ Intent               │ "I would like to be published". Comes from │
    │                      │ the metadata block and the manifest.       │
    ├──────────────────────┼────────────────────────────────────────────┤
    │ Probe                │ "Is this exact version already out there?" │
    │                      │ publish = intent and not published.        │
    ├──────────────────────┼────────────────────────────────────────────┤
    │ Back-feed            │ If A goes to registry R, everything A      │
    │                      │ depends on must go to R as well.           │
    ├──────────────────────┼────────────────────────────────────────────┤
    │ Tag gating           │ On refs/tags/foo-beta only foo (and its    │
    │                      │ launcher and installer) may publish.       │
    └──────────────────────┴────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import datetime
import json
import os
import time
from collections.abc import Callable, Mapping
from contextlib import AsyncExitStack
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Protocol

import httpx
from rich.table import Table

from cratekit.backends.registry.blob import BlobStore, blob_dir, blob_path, channel_version, make_blob_store
from cratekit.backends.registry.cargo import CargoRegistryProbe
from cratekit.backends.registry.npm import NpmConfig, NpmRegistryProbe, scoped_name
from cratekit.backends.registry.oci import DockerCredentials, OciRegistryProbe, RegistryAuth
from cratekit.backends.vcs import VCS, GitCLIBackend
from cratekit.changes import apply_changes, changed_packages
from cratekit.config import CRATES_IO, DEFAULT_USER_AGENT, Registries, registry_env
from cratekit.diff_strategy import DiffStrategy, LocalChanges
from cratekit.errors import E, CrateKitError
from cratekit.graph import CrateGraph, ensure_acyclic
from cratekit.logging import get_logger
from cratekit.metadata import PublishDetail, ReleaseChannel, TestDetail, to_jsonable
from cratekit.net import DEFAULT_POOL_SIZE, http_client
from cratekit.ui import NullProgress, ProgressObserver, Stage
from cratekit.workspace import MetadataReader, Package, cargo_metadata, discover_packages, read_toolchain

logger = get_logger(__name__)

_COMPANION_SUFFIXES = ('_launcher', '_installer')


@dataclass
class CheckOptions:
    """Knobs of one ``check-workspace`` run.

    Attributes:
        check_publish: Run the remote probes.
        check_changed: Run change detection.
        strategy: Revision pair for change detection.
        force_cargo: Promote an unset cargo ``publish`` to ``true``.
        release_channel: Channel override; ``GITHUB_REF`` otherwise.
        toolchain: Toolchain override; ``rust-toolchain.toml`` otherwise.
        hide_dependencies: Leave ``dependencies`` out of the JSON.
        whitelist: Only report these packages (empty means all).
        blacklist: Never report these packages.
        concurrency: Packages probed at once.
    """

    check_publish: bool = False
    check_changed: bool = False
    strategy: DiffStrategy = field(default_factory=LocalChanges)
    skip_docker: bool = False
    skip_npm: bool = False
    skip_cargo: bool = False
    skip_binary: bool = False
    force_cargo: bool = False
    docker_registry: str | None = None
    docker_registry_username: str | None = None
    docker_registry_password: str | None = None
    npm_registry_url: str | None = None
    npm_registry_token: str | None = None
    npm_registry_npmrc_path: str | None = None
    binary_store_storage_account: str | None = None
    binary_store_container_name: str | None = None
    binary_store_access_key: str | None = None
    binary_store_s3_endpoint: str | None = None
    binary_store_s3_bucket: str | None = None
    binary_store_s3_region: str | None = None
    binary_store_s3_access_key_id: str | None = None
    binary_store_s3_secret_access_key: str | None = None
    release_channel: str | None = None
    toolchain: str | None = None
    main_registry: str = CRATES_IO
    fail_unit_error: bool = False
    hide_dependencies: bool = False
    ignore_dev_dependencies: bool = False
    whitelist: list[str] = field(default_factory=list)
    blacklist: list[str] = field(default_factory=list)
    progress: bool = False
    concurrency: int = 8
    user_agent: str = DEFAULT_USER_AGENT
    http_pool_size: int = DEFAULT_POOL_SIZE


@dataclass
class ResultDependency:
    """An in-repository dependency of a result."""

    package: str
    version: str
    kind: str = 'normal'
    path: str | None = None
    rename: str | None = None
    publishable: bool = False


@dataclass
class Result:
    """Everything known about one package after a check.

    Attributes:
        workspace: Name of the owning workspace.
        workspace_path: Absolute path of the owning workspace.
        package: Package name.
        version: Package version.
        path: Package directory relative to the repository root.
        publish_detail: Publish targets with their resolved flags.
        test_detail: Test settings.
        publish: Any target will publish.
        dependencies: In-repository dependencies.
        dependants: In-repository packages depending on this one.
        changed: The diff touched this package.
        dependencies_changed: The diff touched something it depends on.
        perform_test: ``changed or dependencies_changed``.
        toolchain: Rust toolchain channel.
    """

    workspace: str
    workspace_path: Path
    package: str
    version: str
    path: str
    publish_detail: PublishDetail = field(default_factory=PublishDetail)
    test_detail: TestDetail = field(default_factory=TestDetail)
    publish: bool = False
    dependencies: list[ResultDependency] = field(default_factory=list)
    dependants: list[str] = field(default_factory=list)
    changed: bool = False
    dependencies_changed: bool = False
    perform_test: bool = False
    toolchain: str = ''

    def to_dict(self, *, hide_dependencies: bool = False) -> dict[str, Any]:
        """JSON-ready mapping of the result."""
        data = to_jsonable(self)
        data['workspace_path'] = str(self.workspace_path)
        if hide_dependencies:
            del data['dependencies']
        return data

    def __str__(self) -> str:
        """One-line summary of the publish flags."""
        d = self.publish_detail
        return (
            f'{self.workspace} -- {self.package} -- {self.version}: docker: {d.docker.publish}, '
            f'cargo: {d.cargo.publish}, npm_napi: {d.npm_napi.publish}, binary: {d.binary.publish}, '
            f'publish: {self.publish}'
        )


@dataclass
class CheckResults:
    """Outcome of :func:`check_workspace`.

    Attributes:
        members: Results keyed by package name, sorted by name.
        errors: Per-unit errors that were recorded instead of raised.
        graph: The crate graph over every discovered package.
        hide_dependencies: Leave ``dependencies`` out of :meth:`to_json`.
    """

    members: dict[str, Result] = field(default_factory=dict)
    errors: list[CrateKitError] = field(default_factory=list)
    graph: CrateGraph = field(default_factory=CrateGraph)
    hide_dependencies: bool = False

    def to_json(self, *, indent: int | None = None) -> str:
        """``{package: result}`` as JSON."""
        return json.dumps(
            {name: r.to_dict(hide_dependencies=self.hide_dependencies) for name, r in self.members.items()},
            indent=indent,
        )

    def table(self) -> Table:
        """Rich table of the publish and test flags."""

        def mark(value: bool | None) -> str:
            return '[green]x[/green]' if value else ''

        table = Table(title='Workspace check', title_justify='left')
        for column in ('Workspace', 'Package', 'Version'):
            table.add_column(column)
        for column in ('docker', 'cargo', 'npm', 'binary', 'any', 'tests'):
            table.add_column(column, justify='center')
        for r in sorted(self.members.values(), key=lambda r: (r.workspace, r.package)):
            d = r.publish_detail
            table.add_row(
                r.workspace,
                r.package,
                r.version,
                mark(d.docker.publish),
                mark(d.cargo.publish),
                mark(d.npm_napi.publish),
                mark(d.binary.publish),
                mark(r.publish),
                mark(r.perform_test),
            )
        return table


class CargoProbe(Protocol):
    """Anything answering the cargo registry question."""

    async def is_published(self, name: str, version: str) -> bool:
        """Return ``True`` iff ``name@version`` exists."""
        ...


class OciProbe(Protocol):
    """Anything answering the container registry question."""

    async def is_published(self, registry: str, name: str, tag: str, *, auth: RegistryAuth | None = None) -> bool:
        """Return ``True`` iff the manifest exists."""
        ...


class NpmProbe(Protocol):
    """Anything answering the npm question."""

    async def is_published(self, package: str, version: str) -> bool:
        """Return ``True`` iff the version exists."""
        ...


@dataclass
class Probes:
    """The remote probes a check uses, injectable for tests.

    Attributes:
        cargo: Registry name to probe; may raise ``CK-REGISTRY-NOT-CONFIGURED``.
        oci: Container registry probe.
        npm: npm registry probe.
        blob: Binary store, ``None`` when not configured.
        docker_credentials: Auth per container registry.
    """

    cargo: Callable[[str], CargoProbe]
    oci: OciProbe | None = None
    npm: NpmProbe | None = None
    blob: BlobStore | None = None
    docker_credentials: DockerCredentials = field(default_factory=DockerCredentials)


def default_probes(
    options: CheckOptions,
    registries: Registries,
    *,
    environ: Mapping[str, str],
    client: httpx.AsyncClient | None = None,
) -> Probes:
    """Build the real HTTP probes from options and registry configuration.

    Every HTTP probe sends through ``client`` when one is given, so a
    single connection pool of ``options.http_pool_size`` serves the run.
    """
    cache: dict[str, CargoRegistryProbe] = {}

    def cargo(name: str) -> CargoRegistryProbe:
        if name not in cache:
            config = registries.get(name)
            if not config.user_agent and name != CRATES_IO:
                config = replace(config, user_agent=options.user_agent)
            cache[name] = CargoRegistryProbe(config, pool_size=options.http_pool_size, client=client)
        return cache[name]

    credentials = DockerCredentials() if options.skip_docker else DockerCredentials.load(environ=environ)
    if options.docker_registry and options.docker_registry_username and options.docker_registry_password:
        credentials.add(
            options.docker_registry,
            RegistryAuth.basic(options.docker_registry_username, options.docker_registry_password),
        )
    npm = None
    if not options.skip_npm:
        npmrc = Path(options.npm_registry_npmrc_path) if options.npm_registry_npmrc_path else None
        npm_config = NpmConfig.load(
            npmrc,
            url=options.npm_registry_url,
            token=options.npm_registry_token,
            environ=environ,
        )
        npm = NpmRegistryProbe(npm_config, pool_size=options.http_pool_size, client=client)
    blob = make_blob_store(
        storage_account=options.binary_store_storage_account,
        container=options.binary_store_container_name,
        access_key=options.binary_store_access_key,
        s3_endpoint=options.binary_store_s3_endpoint,
        s3_bucket=options.binary_store_s3_bucket,
        s3_region=options.binary_store_s3_region,
        s3_access_key_id=options.binary_store_s3_access_key_id,
        s3_secret_access_key=options.binary_store_s3_secret_access_key,
        client=client,
    )
    return Probes(
        cargo=cargo,
        oci=OciRegistryProbe(pool_size=options.http_pool_size, client=client),
        npm=npm,
        blob=blob,
        docker_credentials=credentials,
    )


def _tag_key(package: str) -> str:
    for suffix in _COMPANION_SUFFIXES:
        if package.endswith(suffix):
            return package.removesuffix(suffix)
    return package


def release_channel_for(package: str, option: str | None, github_ref: str | None) -> ReleaseChannel:
    """Channel a package builds for.

    An explicit option wins (unknown values fall back to nightly). Otherwise
    a ``refs/tags/{package}-{alpha|beta|prod}`` ref selects the channel;
    launchers and installers follow the tag of their application.
    """
    if option is not None:
        try:
            return ReleaseChannel(option.lower())
        except ValueError:
            logger.warning('unknown_release_channel', value=option)
            return ReleaseChannel.NIGHTLY
    if github_ref:
        key = _tag_key(package)
        for channel in (ReleaseChannel.ALPHA, ReleaseChannel.BETA, ReleaseChannel.PROD):
            if github_ref.startswith(f'refs/tags/{key}-{channel.value}'):
                return channel
    return ReleaseChannel.NIGHTLY


def tag_allows(package: str, github_ref: str | None) -> bool:
    """On a tag ref, only the tagged package and its companions may publish."""
    if not github_ref or not github_ref.startswith('refs/tags'):
        return True
    return github_ref.startswith(f'refs/tags/{_tag_key(package)}')


def ci_runner(toolchain: str) -> str:
    """Runner label for a toolchain: ``rust-1-88-scale-set``."""
    return f'rust-{toolchain.replace(".", "-")}-scale-set'


def _new_result(pkg: Package, graph: CrateGraph, reported: set[str], *, ignore_dev: bool) -> Result:
    detail = pkg.publish_detail
    cargo = detail.cargo
    if cargo.publish is None and pkg.publish == []:
        cargo.publish = False
    registries = set(cargo.registries)
    registries.update(pkg.publish or [])
    if cargo.allow_public:
        registries.add(CRATES_IO)
    cargo.registries = sorted(registries)
    dependencies = [
        ResultDependency(package=d.name, version=d.req, kind=d.kind, path=d.path, rename=d.rename)
        for d in pkg.dependencies
        if d.name in reported and d.name != pkg.name and not (ignore_dev and d.kind == 'dev')
    ]
    return Result(
        workspace=pkg.workspace,
        workspace_path=pkg.workspace_path,
        package=pkg.name,
        version=pkg.version,
        path=pkg.path,
        publish_detail=detail,
        test_detail=pkg.test_detail,
        dependencies=dependencies,
        dependants=[d for d in graph.dependants(pkg.name) if d in reported],
    )


def backfeed_registries(members: Mapping[str, Result], graph: CrateGraph) -> None:
    """Add each package's cargo registries to all of its transitive dependencies."""
    own = {name: list(r.publish_detail.cargo.registries) for name, r in members.items()}
    for name, registries in own.items():
        if not registries:
            continue
        for dep in graph.transitive_dependencies(name):
            target = members.get(dep)
            if target is None:
                continue
            merged = set(target.publish_detail.cargo.registries) | set(registries)
            target.publish_detail.cargo.registries = sorted(merged)


def update_runtime_information(
    result: Result,
    *,
    toolchain: str,
    release_channel: str | None,
    github_ref: str | None,
    today: datetime.date | None = None,
) -> None:
    """Fill channel, runner, toolchain and binary naming; apply tag gating."""
    detail = result.publish_detail
    detail.release_channel = release_channel_for(result.package, release_channel, github_ref)
    detail.ci_runner = ci_runner(toolchain)
    result.toolchain = toolchain
    if not tag_allows(result.package, github_ref):
        logger.debug('tag_gated', package=result.package, ref=github_ref)
        detail.clear_intents()
    binary = detail.binary
    if binary.publish:
        channel = detail.release_channel
        binary.rc_version = channel_version(result.package, result.version, channel.value, today)
        if channel is not ReleaseChannel.PROD:
            binary.name = f'{binary.name} {channel.value.capitalize()}'
        binary.blob_dir = blob_dir(result.package, channel.value)


async def check_cargo(result: Result, probes: Probes, *, force: bool) -> None:
    """Resolve ``cargo.publish`` and ``registries_publish`` for one result.

    Raises:
        CrateKitError: ``CK-REGISTRY-NOT-CONFIGURED`` if a registry has no API URL.
    """
    cargo = result.publish_detail.cargo
    intent = force if cargo.publish is None else cargo.publish
    if result.version.endswith('dev'):
        intent = False
    cargo.registries_publish = {}
    for registry in cargo.registries:
        if not intent:
            cargo.registries_publish[registry] = False
            continue
        published = await probes.cargo(registry).is_published(result.package, result.version)
        logger.debug('cargo_probe', package=result.package, registry=registry, published=published)
        cargo.registries_publish[registry] = not published
    cargo.publish = any(cargo.registries_publish.values())


async def check_docker(result: Result, probes: Probes, *, default_registry: str | None) -> None:
    """Resolve ``docker.publish`` for one result."""
    docker = result.publish_detail.docker
    if not docker.publish:
        return
    registry = docker.repository or default_registry
    if not registry:
        raise CrateKitError(
            code=E.PUBLISH_MISSING_REPOSITORY,
            message=f'{result.package}: docker publish is enabled but no repository is set',
            hint='Set publish.docker.repository in the package metadata or pass --docker-registry.',
        )
    if probes.oci is None:
        return
    auth = probes.docker_credentials.auth_for(registry)
    published = await probes.oci.is_published(registry, result.package, result.version, auth=auth)
    docker.publish = not published


async def check_npm(result: Result, probes: Probes) -> None:
    """Resolve ``npm_napi.publish`` for one result."""
    npm = result.publish_detail.npm_napi
    if not npm.publish or probes.npm is None:
        return
    published = await probes.npm.is_published(scoped_name(result.package, npm.scope), result.version)
    npm.publish = not published


async def check_binary(result: Result, probes: Probes) -> None:
    """Resolve ``binary.publish``: any target missing from the store publishes."""
    binary = result.publish_detail.binary
    if not binary.publish or probes.blob is None:
        return
    version = binary.rc_version or result.version
    channel = result.publish_detail.release_channel.value
    missing = False
    for target in binary.targets:
        path = blob_path(result.package, channel, target, result.toolchain, version)
        if not await probes.blob.exists(path):
            logger.debug('binary_missing', package=result.package, blob=path)
            missing = True
    binary.publish = missing


async def check_publishable(
    result: Result,
    options: CheckOptions,
    probes: Probes,
    errors: list[CrateKitError],
) -> None:
    """Run every enabled probe for one result, sequentially.

    Per-target failures are recorded on the target and in ``errors`` and
    turn that target off; with ``fail_unit_error`` they are raised.
    Configuration errors always propagate.
    """
    detail = result.publish_detail
    checks: list[tuple[bool, Any, Callable[[], Any]]] = [
        (
            options.skip_docker,
            detail.docker,
            lambda: check_docker(result, probes, default_registry=options.docker_registry),
        ),
        (options.skip_npm, detail.npm_napi, lambda: check_npm(result, probes)),
        (options.skip_cargo, detail.cargo, lambda: check_cargo(result, probes, force=options.force_cargo)),
        (options.skip_binary, detail.binary, lambda: check_binary(result, probes)),
    ]
    for skip, target, run in checks:
        if skip:
            continue
        try:
            await run()
        except CrateKitError as exc:
            if exc.code is E.REGISTRY_NOT_CONFIGURED or options.fail_unit_error:
                raise
            logger.warning('publish_check_failed', package=result.package, error=str(exc))
            target.error = str(exc)
            target.publish = False
            errors.append(exc)


def _finalize(members: Mapping[str, Result]) -> None:
    for result in members.values():
        detail = result.publish_detail
        detail.cargo.publish = bool(detail.cargo.publish)
        result.publish = any((
            detail.docker.publish,
            detail.cargo.publish,
            detail.npm_napi.publish,
            detail.binary.publish,
        ))
    for result in members.values():
        for dep in result.dependencies:
            target = members.get(dep.package)
            dep.publishable = target.publish if target is not None else False


async def check_workspace(
    repo_root: Path,
    options: CheckOptions,
    *,
    vcs: VCS | None = None,
    registries: Registries | None = None,
    probes: Probes | None = None,
    reader: MetadataReader = cargo_metadata,
    environ: Mapping[str, str] | None = None,
    observer: ProgressObserver | None = None,
    today: datetime.date | None = None,
) -> CheckResults:
    """Discover every package and work out what to publish and test.

    Args:
        repo_root: Repository root.
        options: Run options.
        vcs: Diff backend for change detection; git in ``repo_root`` by default.
        registries: Registry configuration map.
        probes: Remote probes; built from ``options`` by default.
        reader: ``cargo metadata`` implementation.
        environ: Environment mapping, defaults to :data:`os.environ`.
        observer: Progress display for the probe phase.
        today: Date used for nightly versions.

    Raises:
        CrateKitError: On configuration errors, cycles, duplicate packages,
            and per-unit errors when ``fail_unit_error`` is set.
    """
    started = time.monotonic()
    env = os.environ if environ is None else environ
    registries = registries or Registries(cwd=repo_root, environ=env)
    observer = observer or NullProgress()
    github_ref = env.get('GITHUB_REF')

    # 1. Resolve workspaces, packages and the graph.
    discovery = await discover_packages(
        repo_root,
        registry_env=registry_env(registries.get(options.main_registry)),
        fail_unit_error=options.fail_unit_error,
        reader=reader,
    )
    packages = discovery.packages
    graph = CrateGraph.build(packages, ignore_dev_dependencies=options.ignore_dev_dependencies)
    ensure_acyclic(graph)
    reported = {
        p.name
        for p in packages
        if (not options.whitelist or p.name in options.whitelist) and p.name not in options.blacklist
    }
    members = {
        p.name: _new_result(p, graph, reported, ignore_dev=options.ignore_dev_dependencies)
        for p in sorted(packages, key=lambda p: p.name)
        if p.name in reported
    }
    results = CheckResults(
        members=members,
        errors=list(discovery.errors),
        graph=graph,
        hide_dependencies=options.hide_dependencies,
    )

    # 2. Registries flow down to what a package depends on.
    backfeed_registries(members, graph)
    for result in members.values():
        if not result.publish_detail.cargo.registries:
            result.publish_detail.cargo.publish = False

    # 3. Runtime information.
    toolchain = options.toolchain or read_toolchain(repo_root)
    for result in members.values():
        update_runtime_information(
            result,
            toolchain=toolchain,
            release_channel=options.release_channel,
            github_ref=github_ref,
            today=today,
        )

    # 4. Remote probes.
    if options.check_publish:
        semaphore = asyncio.Semaphore(max(1, options.concurrency))

        async def _probe(result: Result) -> None:
            async with semaphore:
                observer.on_stage(result.package, Stage.RUNNING)
                try:
                    await check_publishable(result, options, active, results.errors)
                except CrateKitError as exc:
                    observer.on_stage(result.package, Stage.FAILED, str(exc))
                    raise
                observer.on_stage(result.package, Stage.DONE)

        async with AsyncExitStack() as stack:
            active = probes
            if active is None:
                client = await stack.enter_async_context(http_client(pool_size=options.http_pool_size))
                active = default_probes(options, registries, environ=env, client=client)
            with observer:
                observer.init_packages(list(members))
                await asyncio.gather(*(_probe(r) for r in members.values()))
                observer.on_complete()
    _finalize(members)

    # 5. Change detection.
    if options.check_changed:
        to_diff = [r for r in members.values() if not (options.check_publish and r.publish)]
        for result in members.values():
            if options.check_publish and result.publish:
                logger.info('changed_for_publish', package=result.package)
                result.changed = True
        if not options.strategy.compares:
            for result in to_diff:
                result.changed = True
        else:
            vcs = vcs or GitCLIBackend(repo_root)
            changed = await changed_packages(vcs, options.strategy, packages)
            apply_changes(to_diff, changed, graph)
    for result in members.values():
        result.perform_test = result.changed or result.dependencies_changed

    logger.info(
        'workspace_checked',
        packages=len(members),
        publish=sum(1 for r in members.values() if r.publish),
        test=sum(1 for r in members.values() if r.perform_test),
        errors=len(results.errors),
        elapsed=round(time.monotonic() - started, 2),
    )
    return results


__all__ = [
    'CheckOptions',
    'CheckResults',
    'Probes',
    'Result',
    'ResultDependency',
    'backfeed_registries',
    'check_binary',
    'check_cargo',
    'check_docker',
    'check_npm',
    'check_publishable',
    'check_workspace',
    'ci_runner',
    'default_probes',
    'release_channel_for',
    'tag_allows',
    'update_runtime_information',
]
