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

"""Alternate-registry patcher.

Moves a crate from one registry identity to another before a
``cargo publish`` (or its dry run), and back again afterwards.

Three rewrites, chained by :func:`patch_crate`::

    Cargo.toml (crate)     package.publish = ["{target}"]        tomlkit, formatting kept
    Cargo.toml (all)       registry = "{source}" -> "{target}"   regex, under root
    Cargo.lock             source + checksum per stanza          streaming line rewrite

Lockfile state machine (one stanza at a time)::

    [[package]]                        reset name, version, in_target
    name = "foo"                       remember name
    version = "1.2.3"                  remember version
    source = "registry+{source_idx}"   in_target = True, rewrite to {target_idx}
    checksum = "..."                   in_target: replace with the target index cksum

Every other line is emitted byte for byte.

Index layout (``index_file_path``)::

    ┌───────────┬─────────────────────────┐
    │ name len  │ path                    │
    ├───────────┼─────────────────────────┤
    │ 1         │ 1/{name}                │
    │ 2         │ 2/{name}                │
    │ 3         │ 3/{name[0]}/{name}      │
    │ 4+        │ {n[0:2]}/{n[2:4]}/{n}   │
    └───────────┴─────────────────────────┘
"""

from __future__ import annotations

import json
import re
from pathlib import Path

import tomlkit
from tomlkit.exceptions import TOMLKitError

from cratekit._io import read_file, read_optional, write_file
from cratekit.config import CRATES_IO, RegistryConfig, Registries
from cratekit.errors import E, CrateKitError
from cratekit.logging import get_logger

logger = get_logger(__name__)

CRATES_IO_LOCK_SOURCE = 'registry+https://github.com/rust-lang/crates.io-index'
SKIP_DIRS = frozenset({'target', '.git'})

_STANZA_RE = re.compile(r'^\[\[package\]\]\s*$')
_FIELD_RE = re.compile(r'^(?P<key>name|version|source|checksum)\s*=\s*"(?P<value>[^"]*)"\s*$')


def lock_source(config: RegistryConfig) -> str | None:
    """The ``source = ...`` value cargo writes for ``config``'s registry."""
    if config.name == CRATES_IO:
        return CRATES_IO_LOCK_SOURCE
    if not config.index:
        return None
    if config.index.startswith(('registry+', 'sparse+')):
        return config.index
    return f'registry+{config.index}'


async def set_publish_registry(manifest: Path, target: str) -> None:
    """Set ``package.publish = [target]`` in ``manifest``, keeping formatting.

    Raises:
        CrateKitError: ``CK-PATCH-MANIFEST-INVALID`` when the manifest is
            not TOML or has no ``[package]`` table.
    """
    text = await read_file(manifest)
    try:
        doc = tomlkit.parse(text)
    except TOMLKitError as exc:
        raise CrateKitError(code=E.PATCH_MANIFEST_INVALID, message=f'{manifest}: {exc}') from exc
    package = doc.get('package')
    if not isinstance(package, dict):
        raise CrateKitError(code=E.PATCH_MANIFEST_INVALID, message=f'{manifest}: no [package] table')
    publish = tomlkit.array()
    publish.append(target)
    package['publish'] = publish
    await write_file(manifest, tomlkit.dumps(doc))
    logger.debug('publish_registry_set', manifest=str(manifest), registry=target)


def manifests_under(root: Path) -> list[Path]:
    """Every ``Cargo.toml`` below ``root``, outside build and VCS directories."""
    found = []
    for path in sorted(root.rglob('Cargo.toml')):
        if SKIP_DIRS.intersection(path.relative_to(root).parts):
            continue
        found.append(path)
    return found


def replace_registry(text: str, source: str, target: str) -> str:
    """Point every ``registry = "{source}"`` in ``text`` at ``target``."""
    pattern = re.compile(rf'registry\s*=\s*"{re.escape(source)}"')
    return pattern.sub(f'registry = "{target}"', text)


async def patch_manifests(root: Path, source: str, target: str) -> list[Path]:
    """Rewrite registry references in every manifest under ``root``.

    Returns:
        The manifests that changed.
    """
    changed = []
    for manifest in manifests_under(root):
        text = await read_file(manifest)
        patched = replace_registry(text, source, target)
        if patched != text:
            await write_file(manifest, patched)
            changed.append(manifest)
    logger.info('manifests_patched', root=str(root), source=source, target=target, changed=len(changed))
    return changed


def index_file_path(name: str) -> Path:
    """Relative path of ``name``'s file in a cargo registry index."""
    n = name.lower()
    if len(n) == 1:
        return Path('1', n)
    if len(n) == 2:
        return Path('2', n)
    if len(n) == 3:
        return Path('3', n[0], n)
    return Path(n[0:2], n[2:4], n)


async def lookup_checksum(local_index: Path, name: str, version: str) -> str:
    """The ``cksum`` of ``name@version`` in a local index checkout.

    Raises:
        CrateKitError: ``CK-PATCH-YANKED`` when the first matching release
            is yanked, ``CK-PATCH-CHECKSUM-NOT-FOUND`` when there is none.
    """
    text = await read_optional(local_index / index_file_path(name))
    for line in (text or '').splitlines():
        if not line.strip():
            continue
        entry = json.loads(line)
        if entry.get('vers') != version:
            continue
        if entry.get('yanked', False):
            raise CrateKitError(
                code=E.PATCH_YANKED,
                message=f'{name}@{version} is yanked in {local_index}',
            )
        return entry['cksum']
    raise CrateKitError(
        code=E.PATCH_CHECKSUM_NOT_FOUND,
        message=f'{name}@{version} not found in {local_index}',
        hint='Update the local index checkout of the target registry.',
    )


def _stanzas_from(lines: list[str], source_id: str) -> list[tuple[str, str]]:
    """``(name, version)`` of every stanza whose source is ``source_id``."""
    wanted = []
    name = version = None
    for raw in lines:
        line = raw.rstrip('\r\n')
        if _STANZA_RE.match(line):
            name = version = None
            continue
        match = _FIELD_RE.match(line)
        if match is None:
            continue
        key, value = match['key'], match['value']
        if key == 'name':
            name = value
        elif key == 'version':
            version = value
        elif key == 'source' and value == source_id and name and version:
            wanted.append((name, version))
    return wanted


def rewrite_lockfile(text: str, source_id: str, target_id: str, checksums: dict[tuple[str, str], str]) -> str:
    """Apply the stanza state machine to ``text``.

    ``checksums`` maps ``(name, version)`` of each moved stanza to its
    checksum in the target registry.
    """
    out = []
    name = version = None
    in_target = False
    for raw in text.splitlines(keepends=True):
        line = raw.rstrip('\r\n')
        ending = raw[len(line) :]
        if _STANZA_RE.match(line):
            name = version = None
            in_target = False
            out.append(raw)
            continue
        match = _FIELD_RE.match(line)
        if match is None:
            out.append(raw)
            continue
        key, value = match['key'], match['value']
        if key == 'name':
            name = value
        elif key == 'version':
            version = value
        elif key == 'source' and value == source_id:
            in_target = True
            raw = f'source = "{target_id}"{ending}'
        elif key == 'checksum' and in_target:
            raw = f'checksum = "{checksums[(name, version)]}"{ending}'
        out.append(raw)
    return ''.join(out)


async def patch_lockfile(lock: Path, source_index: str, target_index: str, local_index: Path | None) -> bool:
    """Move every stanza of ``source_index`` in ``lock`` to ``target_index``.

    Args:
        lock: The ``Cargo.lock`` to rewrite in place.
        source_index: Lockfile source id being replaced.
        target_index: Lockfile source id written instead.
        local_index: Checkout of the target registry's index, for checksums.

    Returns:
        Whether the file changed.

    Raises:
        CrateKitError: ``CK-PATCH-INDEX-MISSING`` when stanzas move but no
            local index is configured, or a lookup error.
    """
    if source_index == target_index:
        return False
    text = await read_optional(lock)
    if text is None:
        return False
    wanted = _stanzas_from(text.splitlines(keepends=True), source_index)
    if not wanted:
        return False
    if local_index is None:
        raise CrateKitError(
            code=E.PATCH_INDEX_MISSING,
            message=f'{lock}: {len(wanted)} packages move to {target_index} but no local index is configured',
            hint='Pass --registry-local-index pointing at a checkout of the target index.',
        )
    checksums = {key: await lookup_checksum(local_index, *key) for key in wanted}
    patched = rewrite_lockfile(text, source_index, target_index, checksums)
    if patched == text:
        return False
    await write_file(lock, patched)
    logger.info('lockfile_patched', lock=str(lock), source=source_index, target=target_index, packages=len(wanted))
    return True


def find_lockfile(crate_dir: Path, root: Path) -> Path | None:
    """Nearest ``Cargo.lock`` from ``crate_dir`` up to ``root``."""
    for directory in (crate_dir, *crate_dir.parents):
        candidate = directory / 'Cargo.lock'
        if candidate.is_file():
            return candidate
        if directory == root:
            break
    return None


async def patch_crate(crate_dir: Path, root: Path, source: str, target: str, registries: Registries) -> None:
    """Redirect the crate in ``crate_dir`` from registry ``source`` to ``target``.

    Args:
        crate_dir: Directory holding the crate's ``Cargo.toml``.
        root: Tree whose manifests reference ``source``.
        source: Registry name the tree currently uses.
        target: Registry name to move to.
        registries: Registry configuration map.
    """
    if source == target:
        logger.debug('crate_patch_noop', crate=str(crate_dir), registry=source)
        return
    logger.info('crate_patching', crate=str(crate_dir), source=source, target=target)
    await set_publish_registry(crate_dir / 'Cargo.toml', target)
    await patch_manifests(root, source, target)
    lock = find_lockfile(crate_dir, root)
    if lock is None:
        return
    source_config = registries.get(source)
    target_config = registries.get(target)
    source_id = lock_source(source_config)
    target_id = lock_source(target_config)
    if source_id is None or target_id is None:
        missing = source if source_id is None else target
        raise CrateKitError(
            code=E.REGISTRY_NOT_CONFIGURED,
            message=f"Registry '{missing}' has no index configured",
            hint='Set CARGO_REGISTRIES_{NAME}_INDEX or pass --registry-index.',
        )
    await patch_lockfile(lock, source_id, target_id, target_config.local_index)


__all__ = [
    'CRATES_IO_LOCK_SOURCE',
    'find_lockfile',
    'index_file_path',
    'lock_source',
    'lookup_checksum',
    'manifests_under',
    'patch_crate',
    'patch_lockfile',
    'patch_manifests',
    'replace_registry',
    'rewrite_lockfile',
    'set_publish_registry',
]
