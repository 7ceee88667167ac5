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

"""Command-line interface for cratekit.

Subcommands::

    check-workspace   which packages publish, which changed
    dependencies      in-repository dependency and dependant listing
    fix-lock-files    cargo update every workspace (--check: fail on drift)
    tests             fmt/check/clippy/doc/test/lock per changed package
    publish           publish every due package in dependency order
    patch-registry    move a crate from one registry to another
    explain           print the explanation of an error code

Every subcommand takes the repository, diff strategy and registry flags.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any

from rich.console import Console
from rich_argparse import RichHelpFormatter

from cratekit import __version__
from cratekit.backends.vcs import GitCLIBackend
from cratekit.check_workspace import CheckOptions, CheckResults, check_workspace
from cratekit.config import CrateKitConfig, Registries, RegistryConfig, load_config
from cratekit.diff_strategy import resolve_strategy
from cratekit.errors import E, CrateKitError, explain, render_error
from cratekit.lockfile import fix_lock_files
from cratekit.logging import bind_command, configure_logging, get_logger
from cratekit.orchestrator import TestOptions, run_tests
from cratekit.patcher import patch_crate
from cratekit.publish import PublishOptions, publish_all
from cratekit.ui import create_progress

logger = get_logger(__name__)


def _env(name: str) -> str | None:
    return os.environ.get(name) or None


def _split(value: str | None) -> list[str]:
    return [v.strip() for v in (value or '').split(',') if v.strip()]


def _repo_root(args: argparse.Namespace) -> Path:
    """Canonical repository root; must be an existing directory."""
    root = Path(args.repo_root).expanduser().resolve()
    if not root.is_dir():
        raise CrateKitError(
            code=E.CONFIG_INVALID_VALUE,
            message=f'Repository root {root} does not exist or is not a directory',
            hint='Pass --repo-root pointing at the repository checkout.',
        )
    return root


def _config(args: argparse.Namespace, root: Path) -> CrateKitConfig:
    """``cratekit.toml`` with command-line values on top."""
    overrides = {
        key: getattr(args, key, None)
        for key in (
            'main_registry',
            'job_limit',
            'inner_job_limit',
            'artifacts',
            'test_command',
            'fail_unit_error',
            'ignore_dev_dependencies',
        )
    }
    if getattr(args, 'no_fail_fast', False):
        overrides['fail_fast'] = False
    return load_config(root).with_overrides(**overrides)


def _registries(args: argparse.Namespace) -> Registries:
    overrides = {}
    if args.registry_name:
        local_index = Path(args.registry_local_index) if args.registry_local_index else None
        overrides[args.registry_name] = RegistryConfig(
            name=args.registry_name,
            index=args.registry_index,
            private_key=args.registry_private_key,
            crate_url=args.registry_crate_url,
            token=args.registry_token,
            user_agent=args.registry_user_agent,
            local_index=local_index,
        )
    return Registries(overrides)


def _check_options(args: argparse.Namespace, config: CrateKitConfig, **forced: Any) -> CheckOptions:  # noqa: ANN401
    """Map parsed flags onto :class:`CheckOptions`; ``forced`` wins."""
    values: dict[str, Any] = {
        'strategy': resolve_strategy(
            strategy=args.strategy,
            base=args.base_rev,
            head=args.head_rev,
            branch=args.compare_branch,
        ),
        'main_registry': config.main_registry,
        'fail_unit_error': config.fail_unit_error,
        'ignore_dev_dependencies': config.ignore_dev_dependencies,
        'user_agent': config.user_agent,
        'http_pool_size': config.http_pool_size,
        'progress': getattr(args, 'progress', False),
    }
    for key in (
        'check_publish',
        'check_changed',
        'skip_docker',
        'skip_npm',
        'skip_cargo',
        'skip_binary',
        'force_cargo',
        'docker_registry',
        'docker_registry_username',
        'docker_registry_password',
        'npm_registry_url',
        'npm_registry_token',
        'npm_registry_npmrc_path',
        'binary_store_storage_account',
        'binary_store_container_name',
        'binary_store_access_key',
        'binary_store_s3_endpoint',
        'binary_store_s3_bucket',
        'binary_store_s3_region',
        'binary_store_s3_access_key_id',
        'binary_store_s3_secret_access_key',
        'release_channel',
        'toolchain',
        'hide_dependencies',
    ):
        if hasattr(args, key):
            values[key] = getattr(args, key)
    if hasattr(args, 'whitelist'):
        values['whitelist'] = _split(args.whitelist)
        values['blacklist'] = _split(args.blacklist)
    values.update(forced)
    return CheckOptions(**values)


async def _run_check(
    args: argparse.Namespace,
    **forced: Any,  # noqa: ANN401
) -> tuple[Path, CrateKitConfig, Registries, CheckResults]:
    root = _repo_root(args)
    config = _config(args, root)
    registries = _registries(args)
    options = _check_options(args, config, **forced)
    results = await check_workspace(
        root,
        options,
        vcs=GitCLIBackend(root),
        registries=registries,
        observer=create_progress(enabled=options.progress, title='check-workspace'),
    )
    return root, config, registries, results


async def _cmd_check_workspace(args: argparse.Namespace) -> int:
    """Handle the ``check-workspace`` subcommand."""
    _, _, _, results = await _run_check(args)
    if args.json:
        print(results.to_json(indent=2 if args.pretty else None))  # noqa: T201 - CLI output
    else:
        Console().print(results.table())
    for error in results.errors:
        render_error(error)
    return 0


async def _cmd_dependencies(args: argparse.Namespace) -> int:
    """Handle the ``dependencies`` subcommand."""
    _, _, _, results = await _run_check(args, check_publish=False, check_changed=False)
    listing = {
        name: {
            'workspace': r.workspace,
            'version': r.version,
            'path': r.path,
            'dependencies': [{'package': d.package, 'version': d.version, 'kind': d.kind} for d in r.dependencies],
            'dependants': r.dependants,
        }
        for name, r in results.members.items()
    }
    print(json.dumps(listing, indent=2 if args.pretty else None))  # noqa: T201 - CLI output
    return 0


async def _cmd_fix_lock_files(args: argparse.Namespace) -> int:
    """Handle the ``fix-lock-files`` subcommand."""
    root = _repo_root(args)
    fixed = await fix_lock_files(
        root,
        base_rev=args.base_rev,
        head_rev=args.head_rev,
        check=args.check,
        vcs=GitCLIBackend(root),
    )
    logger.info('lock_files_done', workspaces=len(fixed), check=args.check)
    return 0


async def _cmd_tests(args: argparse.Namespace) -> int:
    """Handle the ``tests`` subcommand."""
    root, config, _, results = await _run_check(args, check_publish=False, check_changed=True)
    options = TestOptions(
        artifacts=root / config.artifacts,
        run_all=args.run_all,
        job_limit=config.job_limit,
        inner_job_limit=config.inner_job_limit,
        fail_fast=config.fail_fast,
        test_command=config.test_command,
        probe_services=args.probe_services,
    )
    run = await run_tests(
        results.members.values(),
        options,
        repo_root=root,
        vcs=GitCLIBackend(root),
        observer=create_progress(enabled=args.progress, title='tests'),
    )
    if run.failed:
        raise CrateKitError(
            code=E.TEST_FAILED,
            message=f'{run.report.failures} mandatory or optional checks failed',
            hint=f'See {run.junit_path} for the full report.',
        )
    return 0


async def _cmd_publish(args: argparse.Namespace) -> int:
    """Handle the ``publish`` subcommand."""
    root, config, registries, results = await _run_check(
        args, check_publish=True, check_changed=False, ignore_dev_dependencies=True
    )
    options = PublishOptions(
        artifacts=root / config.artifacts,
        job_limit=config.job_limit,
        dry_run=args.dry_run,
        main_registry=config.main_registry,
        blacklist_env=config.blacklist_env,
        docker_registry=args.docker_registry,
    )
    run = await publish_all(
        results.members,
        options,
        repo_root=root,
        registries=registries,
        observer=create_progress(enabled=args.progress, title='publish'),
    )
    if not run.success:
        raise CrateKitError(
            code=E.PUBLISH_FAILED,
            message=f'Failed to publish: {", ".join(run.failed)}',
            hint=f'See {run.junit_path} for the command output.',
        )
    return 0


async def _cmd_patch_registry(args: argparse.Namespace) -> int:
    """Handle the ``patch-registry`` subcommand."""
    root = _repo_root(args)
    crate_dir = Path(args.crate_dir).resolve()
    await patch_crate(crate_dir, root, args.source, args.target, _registries(args))
    return 0


def _cmd_explain(args: argparse.Namespace) -> int:
    """Handle the ``explain`` subcommand."""
    result = explain(args.code)
    if result is None:
        print(f'Unknown error code: {args.code}')  # noqa: T201 - CLI output
        return 1
    print(result)  # noqa: T201 - CLI output
    return 0


def _common_parser() -> argparse.ArgumentParser:
    """Flags shared by every subcommand."""
    common = argparse.ArgumentParser(add_help=False)
    repo = common.add_argument_group('repository')
    repo.add_argument('--repo-root', default='.', help='Repository checkout (default: current directory).')
    repo.add_argument('--strategy', default=None, help='One of all, local-changes, branch:NAME, BASE..HEAD ($STRATEGY).')
    repo.add_argument('--base-rev', default=None, help='Base revision ($PULL_BASE_SHA).')
    repo.add_argument('--head-rev', default=None, help='Head revision ($PULL_PULL_SHA).')
    repo.add_argument('--compare-branch', default=None, help='Branch to compare the worktree with ($COMPARE_BRANCH).')
    repo.add_argument('--main-registry', default=None, help='Registry the tree normally points at.')
    repo.add_argument(
        '--fail-unit-error', action='store_true', default=None, help='Abort when one package cannot be read.'
    )
    repo.add_argument('--progress', action='store_true', help='Show a live progress table.')

    registry = common.add_argument_group('registry')
    registry.add_argument('--registry-name', default=None, help='Registry the flags below describe.')
    registry.add_argument('--registry-index', default=None, help='Index URL.')
    registry.add_argument('--registry-private-key', default=None, help='SSH key for a git index.')
    registry.add_argument('--registry-crate-url', default=None, help='API URL for crate lookups.')
    registry.add_argument('--registry-token', default=None, help='API token.')
    registry.add_argument('--registry-user-agent', default=None, help='User-Agent for API calls.')
    registry.add_argument('--registry-local-index', default=None, help='Local checkout of the index, for checksums.')
    return common


def _add_probe_flags(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group('publish probes')
    for target in ('docker', 'npm', 'cargo', 'binary'):
        group.add_argument(f'--skip-{target}', action='store_true', help=f'Do not probe {target} targets.')
    group.add_argument('--force-cargo', action='store_true', help='Publish crates whose manifest leaves publish unset.')
    group.add_argument('--docker-registry', default=_env('DOCKER_REGISTRY'), help='Default image repository.')
    group.add_argument('--docker-registry-username', default=_env('DOCKER_REGISTRY_USERNAME'))
    group.add_argument('--docker-registry-password', default=_env('DOCKER_REGISTRY_PASSWORD'))
    group.add_argument('--npm-registry-url', default=_env('NPM_REGISTRY_URL'))
    group.add_argument('--npm-registry-token', default=_env('NPM_REGISTRY_TOKEN'))
    group.add_argument('--npm-registry-npmrc-path', default=_env('NPM_REGISTRY_NPMRC_PATH'))
    group.add_argument('--binary-store-storage-account', default=_env('BINARY_STORE_STORAGE_ACCOUNT'))
    group.add_argument('--binary-store-container-name', default=_env('BINARY_STORE_CONTAINER_NAME'))
    group.add_argument('--binary-store-access-key', default=_env('BINARY_STORE_ACCESS_KEY'))
    group.add_argument('--binary-store-s3-endpoint', default=_env('BINARY_STORE_S3_ENDPOINT'))
    group.add_argument('--binary-store-s3-bucket', default=_env('BINARY_STORE_S3_BUCKET'))
    group.add_argument('--binary-store-s3-region', default=_env('BINARY_STORE_S3_REGION'))
    group.add_argument('--binary-store-s3-access-key-id', default=_env('BINARY_STORE_S3_ACCESS_KEY_ID'))
    group.add_argument('--binary-store-s3-secret-access-key', default=_env('BINARY_STORE_S3_SECRET_ACCESS_KEY'))
    group.add_argument('--release-channel', default=None, help='nightly, alpha, beta, prod (default: from GITHUB_REF).')
    group.add_argument('--toolchain', default=None, help='Rust toolchain (default: rust-toolchain.toml).')


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        Configured :class:`argparse.ArgumentParser`.
    """
    RichHelpFormatter.styles['argparse.groups'] = 'bold yellow'
    parser = argparse.ArgumentParser(
        prog='cratekit',
        description='CI/CD orchestration for Rust monorepos.',
        formatter_class=RichHelpFormatter,
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging.')
    parser.add_argument('--quiet', '-q', action='store_true', help='Only warnings and errors.')
    parser.add_argument('--json-log', action='store_true', help='Log as JSON lines.')

    common = _common_parser()
    subparsers = parser.add_subparsers(dest='command')

    def add(name: str, help_text: str) -> argparse.ArgumentParser:
        return subparsers.add_parser(name, help=help_text, parents=[common], formatter_class=RichHelpFormatter)

    check = add('check-workspace', 'Work out which packages publish and which changed.')
    check.add_argument('--check-publish', action='store_true', help='Probe the registries.')
    check.add_argument('--check-changed', action='store_true', help='Run change detection.')
    check.add_argument('--hide-dependencies', action='store_true', help='Leave dependencies out of the JSON.')
    check.add_argument('--ignore-dev-dependencies', action='store_true', default=None)
    check.add_argument('--whitelist', default=None, help='Comma-separated packages to report.')
    check.add_argument('--blacklist', default=None, help='Comma-separated packages to leave out.')
    check.add_argument('--json', action='store_true', help='Print JSON instead of a table.')
    check.add_argument('--pretty', action='store_true', help='Indent the JSON.')
    _add_probe_flags(check)

    deps = add('dependencies', 'List in-repository dependencies and dependants.')
    deps.add_argument('--pretty', action='store_true', help='Indent the JSON.')

    lock = add('fix-lock-files', 'Run cargo update in every workspace.')
    lock.add_argument('--check', action='store_true', help='Fail instead of modifying Cargo.lock.')

    tests = add('tests', 'Test every changed package.')
    tests.add_argument('--run-all', action='store_true', help='Test every package, changed or not.')
    tests.add_argument('--job-limit', type=int, default=None, help='Packages tested at once.')
    tests.add_argument('--inner-job-limit', type=int, default=None, help='--jobs passed to cargo.')
    tests.add_argument('--no-fail-fast', action='store_true', help='Keep starting packages after a failure.')
    tests.add_argument('--artifacts', default=None, help='Directory for junit.rust.xml.')
    tests.add_argument('--test-command', default=None, help='Command of the cargo_test step.')
    tests.add_argument('--probe-services', action='store_true', help='Wait for service ports to accept connections.')

    publish = add('publish', 'Publish every due package in dependency order.')
    publish.add_argument('--dry-run', action='store_true', help='cargo publish --dry-run, no docker push.')
    publish.add_argument('--job-limit', type=int, default=None, help='Packages published at once.')
    publish.add_argument('--artifacts', default=None, help='Directory for junit.publish.xml.')
    _add_probe_flags(publish)

    patch = add('patch-registry', 'Move a crate from one registry to another.')
    patch.add_argument('crate_dir', help='Directory of the crate to patch.')
    patch.add_argument('--source', required=True, help='Registry the tree points at now.')
    patch.add_argument('--target', required=True, help='Registry to point at.')

    explain_parser = subparsers.add_parser('explain', help='Explain an error code.', formatter_class=RichHelpFormatter)
    explain_parser.add_argument('code', help='Error code, e.g. CK-LOCKFILE-DRIFT.')
    return parser


_ASYNC_COMMANDS = {
    'check-workspace': _cmd_check_workspace,
    'dependencies': _cmd_dependencies,
    'fix-lock-files': _cmd_fix_lock_files,
    'tests': _cmd_tests,
    'publish': _cmd_publish,
    'patch-registry': _cmd_patch_registry,
}


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose, quiet=args.quiet, json_log=args.json_log)
    if args.command:
        bind_command(args.command)

    try:
        command = args.command
        if command == 'explain':
            return _cmd_explain(args)
        handler = _ASYNC_COMMANDS.get(command)
        if handler is not None:
            return asyncio.run(handler(args))

        parser.print_help()  # noqa: T201 - CLI output
        print(  # noqa: T201 - CLI output
            f'\n{parser.prog}: error: please provide a command',
            file=sys.stderr,
        )
        return 2

    except CrateKitError as exc:
        render_error(exc)
        return 1
    except KeyboardInterrupt:
        logger.info('interrupted')
        return 130


def _main() -> None:
    """Console script wrapper."""
    sys.exit(main())


__all__ = [
    'build_parser',
    'main',
]
