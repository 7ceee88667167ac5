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

"""Custom per-package metadata for publishing and testing.

Packages opt into publish targets and tune their test pipeline through a
``[package.metadata.cratekit]`` block in ``Cargo.toml``::

    [package.metadata.cratekit.publish.cargo]
    publish = true
    registries = ["internal"]
    allow_public = false

    [package.metadata.cratekit.publish.docker]
    publish = true
    repository = "registry.example.com"

    [package.metadata.cratekit.publish.npm_napi]
    publish = true
    scope = "acme"

    [package.metadata.cratekit.publish.binary]
    publish = true
    name = "Acme Tool"
    targets = ["x86_64-unknown-linux-gnu", "x86_64-pc-windows-msvc"]

    [package.metadata.cratekit.test]
    skip = false
    args = { service_database = true, additional_args = "--features db" }

``cargo metadata`` hands the block over as JSON; :func:`parse_metadata`
turns it into the dataclasses below and rejects values of the wrong type.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from cratekit.errors import E, CrateKitError

METADATA_KEY = 'cratekit'


class ReleaseChannel(str, Enum):
    """Release channel a build is published under."""

    NIGHTLY = 'nightly'
    ALPHA = 'alpha'
    BETA = 'beta'
    PROD = 'prod'


@dataclass
class DockerDetail:
    """Container image target."""

    publish: bool = False
    repository: str | None = None
    context: str | None = None
    dockerfile: str | None = None
    error: str | None = None


@dataclass
class CargoDetail:
    """Cargo registry target.

    ``publish`` is ``None`` when the manifest leaves it unset, which lets
    ``--force`` promote it without ever overriding an explicit ``false``.
    """

    publish: bool | None = None
    registries: list[str] = field(default_factory=list)
    allow_public: bool = False
    registries_publish: dict[str, bool] = field(default_factory=dict)
    error: str | None = None


@dataclass
class NpmDetail:
    """npm (napi) package target."""

    publish: bool = False
    scope: str | None = None
    error: str | None = None


@dataclass
class BinaryDetail:
    """Binary artifacts uploaded to a blob store, one per build target."""

    publish: bool = False
    name: str = ''
    targets: list[str] = field(default_factory=list)
    launcher_path: str = 'launcher'
    installer_path: str = 'installer'
    installer_publish: bool = False
    blob_dir: str | None = None
    rc_version: str | None = None
    error: str | None = None


@dataclass
class PublishDetail:
    """Everything a package declares about publishing."""

    docker: DockerDetail = field(default_factory=DockerDetail)
    cargo: CargoDetail = field(default_factory=CargoDetail)
    npm_napi: NpmDetail = field(default_factory=NpmDetail)
    binary: BinaryDetail = field(default_factory=BinaryDetail)
    args: dict[str, Any] = field(default_factory=dict)
    additional_args: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    release_channel: ReleaseChannel = ReleaseChannel.NIGHTLY
    ci_runner: str | None = None

    def clear_intents(self) -> None:
        """Turn off every publish target."""
        self.docker.publish = False
        self.cargo.publish = False
        self.npm_napi.publish = False
        self.binary.publish = False


@dataclass
class TestDetail:
    """Per-package test settings; ``args`` is a free-form ordered map."""

    __test__ = False  # not a pytest class

    args: dict[str, Any] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    skip: bool = False


_SECTION_TYPES: dict[str, type] = {
    'docker': DockerDetail,
    'cargo': CargoDetail,
    'npm_napi': NpmDetail,
    'binary': BinaryDetail,
}


def _invalid(package: str, where: str, message: str) -> CrateKitError:
    return CrateKitError(
        code=E.WORKSPACE_METADATA_INVALID,
        message=f'{package}: [package.metadata.{METADATA_KEY}.{where}] {message}',
        hint='Fix the metadata block in Cargo.toml.',
    )


def _table(value: object, package: str, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise _invalid(package, where, f'must be a table, got {type(value).__name__}')
    return value


def _build(cls: type, raw: dict[str, Any], package: str, where: str) -> Any:  # noqa: ANN401 - dataclass factory
    known = {f.name: f for f in dataclasses.fields(cls)}
    values: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known:
            # Unknown keys belong to other tools reading the same block.
            continue
        default = known[key].default
        if isinstance(default, bool) and not isinstance(value, bool):
            raise _invalid(package, where, f"'{key}' must be a boolean")
        if known[key].default_factory is list and not (  # type: ignore[comparison-overlap]
            isinstance(value, list) and all(isinstance(v, str) for v in value)
        ):
            raise _invalid(package, where, f"'{key}' must be a list of strings")
        values[key] = value
    return cls(**values)


def parse_publish_detail(raw: object, package: str) -> PublishDetail:
    """Build a :class:`PublishDetail` from the ``publish`` table."""
    table = _table(raw, package, 'publish')
    detail = PublishDetail()
    for key, cls in _SECTION_TYPES.items():
        setattr(detail, key, _build(cls, _table(table.get(key), package, f'publish.{key}'), package, f'publish.{key}'))
    cargo_publish = table.get('cargo', {}).get('publish') if isinstance(table.get('cargo'), dict) else None
    if cargo_publish is not None and not isinstance(cargo_publish, bool):
        raise _invalid(package, 'publish.cargo', "'publish' must be a boolean")
    detail.args = _table(table.get('args'), package, 'publish.args')
    detail.env = {str(k): str(v) for k, v in _table(table.get('env'), package, 'publish.env').items()}
    additional = table.get('additional_args')
    if additional is not None and not isinstance(additional, str):
        raise _invalid(package, 'publish', "'additional_args' must be a string")
    detail.additional_args = additional
    channel = table.get('release_channel')
    if channel is not None:
        try:
            detail.release_channel = ReleaseChannel(str(channel).lower())
        except ValueError as exc:
            raise _invalid(package, 'publish', f"unknown release_channel '{channel}'") from exc
    return detail


def parse_test_detail(raw: object, package: str) -> TestDetail:
    """Build a :class:`TestDetail` from the ``test`` table."""
    table = _table(raw, package, 'test')
    skip = table.get('skip', False)
    if not isinstance(skip, bool):
        raise _invalid(package, 'test', "'skip' must be a boolean")
    return TestDetail(
        args=_table(table.get('args'), package, 'test.args'),
        env={str(k): str(v) for k, v in _table(table.get('env'), package, 'test.env').items()},
        skip=skip,
    )


def parse_metadata(metadata: object, package: str) -> tuple[PublishDetail, TestDetail]:
    """Parse the ``metadata`` object ``cargo metadata`` reports for a package.

    Raises:
        CrateKitError: ``CK-WORKSPACE-METADATA-INVALID`` on malformed values.
    """
    block = _table(_table(metadata, package, '').get(METADATA_KEY), package, '')
    return parse_publish_detail(block.get('publish'), package), parse_test_detail(block.get('test'), package)


def to_jsonable(value: Any) -> Any:  # noqa: ANN401 - recursive JSON conversion
    """Convert dataclasses and enums into JSON-serialisable values."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value) if isinstance(value, (set, frozenset)) else value
        return [to_jsonable(v) for v in items]
    return value


__all__ = [
    'METADATA_KEY',
    'BinaryDetail',
    'CargoDetail',
    'DockerDetail',
    'NpmDetail',
    'PublishDetail',
    'ReleaseChannel',
    'TestDetail',
    'parse_metadata',
    'parse_publish_detail',
    'parse_test_detail',
    'to_jsonable',
]
