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

"""Workspace discovery and manifest reading.

A repository holds many cargo workspaces. Discovery walks the tree from
the repository root; ``cargo metadata --no-deps`` then lists each
workspace's packages with their declared dependencies and custom
metadata.

Discovery Rules::

    repo/
    ├── .gitignore            ← patterns prune the walk
    ├── Cargo.toml            ← root workspace (members = ["crates/*", ...])
    │                           explicit members: stop descending here
    ├── tools/
    │   └── helper/
    │       └── Cargo.toml    ← standalone package: a workspace of one;
    │                           no members, keep descending below it
    ├── legacy/
    │   ├── .skip_ci          ← sentinel: whole subtree ignored
    │   └── Cargo.toml
    └── .git/                 ← never entered

    "Explicit members" means [workspace].members lists more than one
    entry when the manifest also has a [package] (the root package
    counts itself), or at least one entry otherwise.

Data Flow::

    discover_workspaces(root)          read_workspace(ws)
    ┌───────────────────────┐     ┌──────────────────────────────┐
    │ walk, prune, sort     │────►│ save Cargo.lock              │
    └───────────────────────┘     │ cargo metadata --no-deps     │
                                  │ restore Cargo.lock           │
                                  │ parse packages + metadata    │
                                  └──────────────┬───────────────┘
                                                 ▼
                                     Discovery(workspaces, errors)

Usage::

    from cratekit.workspace import discover_packages

    discovery = await discover_packages(Path('.'), registry_env={})
    for pkg in discovery.packages:
        print(pkg.name, pkg.version, pkg.path)
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomlkit
import tomlkit.exceptions

from cratekit._io import read_optional, restore_file
from cratekit.backends._run import run_command
from cratekit.errors import E, CrateKitError
from cratekit.logging import get_logger
from cratekit.metadata import PublishDetail, TestDetail, parse_metadata

log = get_logger('cratekit.workspace')

SKIP_SENTINEL = '.skip_ci'
DEFAULT_TOOLCHAIN = '1.88'

MetadataReader = Callable[[Path, Mapping[str, str]], dict[str, Any]]


@dataclass(frozen=True)
class Dependency:
    """A dependency declared in a package manifest.

    Attributes:
        name: Package name of the dependency (not the rename).
        req: Version requirement as written (``*`` when unversioned).
        kind: ``normal``, ``dev`` or ``build``.
        path: Local path for path dependencies.
        registry: Alternate registry name, if any.
        rename: Local alias (``package = "..."`` renames).
    """

    name: str
    req: str = '*'
    kind: str = 'normal'
    path: str | None = None
    registry: str | None = None
    rename: str | None = None

    @property
    def is_local_dev(self) -> bool:
        """Dev-only path dependency without a registry; cargo tolerates cycles through these."""
        return self.kind == 'dev' and self.path is not None and self.registry is None


@dataclass
class Package:
    """A package read from ``cargo metadata``.

    Attributes:
        name: Package name; unique across the repository.
        version: Package version.
        workspace: Name of the owning workspace (its directory name).
        workspace_path: Absolute path of the owning workspace root.
        manifest_path: Absolute path of the package ``Cargo.toml``.
        path: Directory relative to the repository root (``.`` for the root).
        publish: Manifest ``publish`` field; ``None`` when unset, ``[]``
            for ``publish = false``.
        dependencies: Declared dependencies, all kinds.
        publish_detail: Parsed publish metadata.
        test_detail: Parsed test metadata.
    """

    name: str
    version: str
    workspace: str
    workspace_path: Path
    manifest_path: Path
    path: str
    publish: list[str] | None = None
    dependencies: list[Dependency] = field(default_factory=list)
    publish_detail: PublishDetail = field(default_factory=PublishDetail)
    test_detail: TestDetail = field(default_factory=TestDetail)

    @property
    def directory(self) -> Path:
        """Absolute package directory."""
        return self.manifest_path.parent


@dataclass
class Workspace:
    """One cargo workspace and its member packages."""

    name: str
    path: Path
    packages: list[Package] = field(default_factory=list)


@dataclass
class Discovery:
    """Everything read from the repository.

    Attributes:
        workspaces: Workspaces sorted by path.
        errors: Per-package errors that were logged and skipped.
    """

    workspaces: list[Workspace] = field(default_factory=list)
    errors: list[CrateKitError] = field(default_factory=list)

    @property
    def packages(self) -> list[Package]:
        """All packages, in workspace then metadata order."""
        return [pkg for ws in self.workspaces for pkg in ws.packages]


def _glob_regex(pattern: str) -> re.Pattern[str]:
    """Translate one ``.gitignore`` glob; ``*`` and ``?`` never cross ``/``.

    ``**/`` matches zero or more leading directories and a trailing
    ``/**`` everything below; any other ``**`` acts like ``*``.
    """
    out: list[str] = []
    i, n = 0, len(pattern)
    while i < n:
        at_segment = i == 0 or pattern[i - 1] == '/'
        if at_segment and pattern.startswith('**/', i):
            out.append('(?:.*/)?')
            i += 3
            continue
        if at_segment and i + 2 == n and pattern.startswith('**', i):
            out.append('.*')
            break
        c = pattern[i]
        if c == '*':
            out.append('[^/]*')
        elif c == '?':
            out.append('[^/]')
        elif c == '[' and (end := pattern.find(']', i + 2)) != -1:
            body = pattern[i + 1 : end]
            out.append('[^' + body[1:] + ']' if body.startswith('!') else '[' + body + ']')
            i = end
        elif c == '\\' and i + 1 < n:
            i += 1
            out.append(re.escape(pattern[i]))
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile(''.join(out))


class IgnoreRules:
    """Minimal ``.gitignore`` matcher for pruning the discovery walk.

    Supports comments, negation (``!``), directory-only patterns
    (trailing ``/``), anchored patterns (leading or inner ``/``),
    character classes and ``**``. Wildcards stop at ``/``. The last
    matching rule wins. Re-including a file below an ignored directory
    is not supported; the walk never enters that directory.
    """

    def __init__(self, patterns: list[str]) -> None:
        """Compile the raw ``.gitignore`` lines."""
        self._rules: list[tuple[re.Pattern[str], bool, bool, bool]] = []
        for raw in patterns:
            line = raw.strip()
            if not line or line.startswith('#'):
                continue
            negate = line.startswith('!')
            if negate:
                line = line[1:]
            dir_only = line.endswith('/')
            line = line.rstrip('/')
            anchored = '/' in line
            line = line.lstrip('/')
            if line:
                self._rules.append((_glob_regex(line), negate, dir_only, anchored))

    @classmethod
    def load(cls, root: Path) -> IgnoreRules:
        """Read ``root/.gitignore``; a missing file ignores nothing."""
        path = root / '.gitignore'
        if not path.is_file():
            return cls([])
        return cls(path.read_text(encoding='utf-8').splitlines())

    def matches(self, rel_path: str, *, is_dir: bool) -> bool:
        """Return ``True`` if ``rel_path`` (POSIX, relative to root) is ignored."""
        name = rel_path.rsplit('/', 1)[-1]
        ignored = False
        for pattern, negate, dir_only, anchored in self._rules:
            if dir_only and not is_dir:
                continue
            target = rel_path if anchored else name
            if pattern.fullmatch(target):
                ignored = not negate
        return ignored


def has_explicit_members(manifest_text: str) -> bool:
    """Whether a manifest's ``[workspace]`` lists members of its own."""
    try:
        doc = tomlkit.parse(manifest_text)
    except tomlkit.exceptions.TOMLKitError:
        return False
    workspace = doc.get('workspace')
    if not isinstance(workspace, dict):
        return False
    members = workspace.get('members') or []
    if 'package' in doc:
        return len(members) > 1
    return len(members) > 0


def discover_workspaces(root: Path) -> list[Path]:
    """Return every workspace root under ``root``, sorted by path.

    Raises:
        CrateKitError: If ``root`` is not a directory.
    """
    if not root.is_dir():
        raise CrateKitError(
            code=E.WORKSPACE_NOT_FOUND,
            message=f'Repository root {root} does not exist or is not a directory',
        )
    ignore = IgnoreRules.load(root)
    found: list[Path] = []

    def _walk(directory: Path) -> None:
        if (directory / SKIP_SENTINEL).exists():
            log.debug('skip_ci_sentinel', path=str(directory))
            return
        manifest = directory / 'Cargo.toml'
        if manifest.is_file():
            found.append(directory)
            if has_explicit_members(manifest.read_text(encoding='utf-8')):
                return
        for child in sorted(directory.iterdir()):
            if not child.is_dir() or child.is_symlink() or child.name == '.git':
                continue
            if ignore.matches(child.relative_to(root).as_posix(), is_dir=True):
                continue
            _walk(child)

    _walk(root)
    found.sort()
    log.info('workspaces_discovered', count=len(found))
    return found


def cargo_metadata(workspace: Path, env: Mapping[str, str]) -> dict[str, Any]:
    """Run ``cargo metadata --no-deps`` in ``workspace`` and decode it.

    Raises:
        CrateKitError: ``CK-WORKSPACE-METADATA-FAILED`` on a non-zero exit
            or undecodable output.
    """
    result = run_command(
        ['cargo', 'metadata', '--no-deps', '--format-version', '1'],
        cwd=workspace,
        env=dict(env),
    )
    if not result.ok:
        raise CrateKitError(
            code=E.WORKSPACE_METADATA_FAILED,
            message=f'cargo metadata failed in {workspace}: {result.stderr.strip()}',
            hint='Run `cargo metadata --no-deps` in that directory to see the full error.',
        )
    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as exc:
        raise CrateKitError(
            code=E.WORKSPACE_METADATA_FAILED,
            message=f'cargo metadata returned invalid JSON in {workspace}: {exc}',
        ) from exc


def _relative_path(directory: Path, root: Path) -> str:
    rel = directory.resolve().relative_to(root.resolve()).as_posix()
    return rel if rel not in ('', '.') else '.'


def _parse_dependency(raw: dict[str, Any]) -> Dependency:
    return Dependency(
        name=raw['name'],
        req=raw.get('req') or '*',
        kind=raw.get('kind') or 'normal',
        path=raw.get('path'),
        registry=raw.get('registry'),
        rename=raw.get('rename'),
    )


def parse_package(raw: dict[str, Any], *, root: Path, workspace: Path) -> Package:
    """Turn one ``cargo metadata`` package object into a :class:`Package`.

    Raises:
        CrateKitError: If required fields are missing or metadata is malformed.
    """
    try:
        name = raw['name']
        version = raw['version']
        manifest_path = Path(raw['manifest_path'])
        dependencies = [_parse_dependency(d) for d in raw.get('dependencies') or []]
    except (KeyError, TypeError) as exc:
        raise CrateKitError(
            code=E.WORKSPACE_METADATA_INVALID,
            message=f'Malformed package entry in {workspace}: missing {exc}',
        ) from exc
    publish_detail, test_detail = parse_metadata(raw.get('metadata'), name)
    return Package(
        name=name,
        version=version,
        workspace=workspace.resolve().name,
        workspace_path=workspace,
        manifest_path=manifest_path,
        path=_relative_path(manifest_path.parent, root),
        publish=raw.get('publish'),
        dependencies=dependencies,
        publish_detail=publish_detail,
        test_detail=test_detail,
    )


async def read_workspace(
    root: Path,
    workspace: Path,
    *,
    registry_env: Mapping[str, str],
    fail_unit_error: bool = False,
    reader: MetadataReader = cargo_metadata,
) -> tuple[Workspace, list[CrateKitError]]:
    """Read one workspace's packages.

    ``cargo metadata`` may create or rewrite ``Cargo.lock``; the lockfile
    is put back exactly as it was.

    Returns:
        The workspace and the per-package errors that were skipped.
    """
    lock_path = workspace / 'Cargo.lock'
    original_lock = await read_optional(lock_path)
    try:
        metadata = await asyncio.to_thread(reader, workspace, registry_env)
    finally:
        if await read_optional(lock_path) != original_lock:
            log.debug('cargo_lock_restored', workspace=str(workspace))
            await restore_file(lock_path, original_lock)

    ws = Workspace(name=workspace.resolve().name, path=workspace)
    errors: list[CrateKitError] = []
    for raw in metadata.get('packages', []):
        try:
            ws.packages.append(parse_package(raw, root=root, workspace=workspace))
        except CrateKitError as exc:
            if fail_unit_error:
                raise
            log.warning('package_skipped', workspace=str(workspace), error=str(exc))
            errors.append(exc)
    return ws, errors


async def discover_packages(
    root: Path,
    *,
    registry_env: Mapping[str, str],
    fail_unit_error: bool = False,
    reader: MetadataReader = cargo_metadata,
) -> Discovery:
    """Discover every workspace and read all packages.

    Raises:
        CrateKitError: ``CK-WORKSPACE-DUPLICATE-PACKAGE`` when two
            workspaces declare the same package name.
    """
    discovery = Discovery()
    owners: dict[str, Path] = {}
    for ws_path in discover_workspaces(root):
        ws, errors = await read_workspace(
            root,
            ws_path,
            registry_env=registry_env,
            fail_unit_error=fail_unit_error,
            reader=reader,
        )
        for pkg in ws.packages:
            if pkg.name in owners:
                raise CrateKitError(
                    code=E.WORKSPACE_DUPLICATE_PACKAGE,
                    message=f"Package '{pkg.name}' is declared in both {owners[pkg.name]} and {ws_path}",
                    hint='Package names must be unique across the repository.',
                )
            owners[pkg.name] = ws_path
        discovery.workspaces.append(ws)
        discovery.errors.extend(errors)
    log.info('packages_discovered', count=len(owners), skipped=len(discovery.errors))
    return discovery


def read_toolchain(root: Path) -> str:
    """``toolchain.channel`` from ``rust-toolchain.toml``, default ``1.88``."""
    path = root / 'rust-toolchain.toml'
    if not path.is_file():
        return DEFAULT_TOOLCHAIN
    try:
        doc = tomlkit.parse(path.read_text(encoding='utf-8'))
    except (OSError, tomlkit.exceptions.TOMLKitError) as exc:
        log.warning('toolchain_unreadable', path=str(path), error=str(exc))
        return DEFAULT_TOOLCHAIN
    toolchain = doc.get('toolchain')
    if isinstance(toolchain, dict) and toolchain.get('channel'):
        return str(toolchain['channel'])
    return DEFAULT_TOOLCHAIN


__all__ = [
    'DEFAULT_TOOLCHAIN',
    'Dependency',
    'Discovery',
    'IgnoreRules',
    'Package',
    'Workspace',
    'cargo_metadata',
    'discover_packages',
    'discover_workspaces',
    'has_explicit_members',
    'parse_package',
    'read_toolchain',
    'read_workspace',
]
