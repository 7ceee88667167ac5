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

"""Configuration for cratekit.

Two layers live here:

1. **Tool configuration** read from an optional ``cratekit.toml`` at the
   repository root (:func:`load_config`). CLI flags override it.
2. **Registry configuration** (:class:`RegistryConfig`) describing the
   alternate cargo registries packages publish to, merged from several
   sources by :class:`Registries`.

Registry Source Precedence::

    1. CLI flags (--registry-name/--registry-index/...)
    2. $CARGO_REGISTRIES_{NAME}_{INDEX|PRIVATE_KEY|CRATE_URL|TOKEN|USER_AGENT}
    3. .config/config.toml in cwd, then each parent directory
    4. $CARGO_HOME/config.toml (default ~/.cargo/config.toml)

    Each source only fills fields that are still empty; a later source
    never overwrites an earlier non-empty value.

Supported keys in ``cratekit.toml``::

    main_registry           = "internal"      # registry crates are patched back to
    job_limit               = 2               # concurrent package pipelines
    inner_job_limit         = 0               # --jobs passed to cargo (0 = cargo default)
    fail_fast               = true            # stop starting packages after a failure
    artifacts               = "artifacts"     # JUnit output directory
    test_command            = "cargo test --all-targets"
    ignore_dev_dependencies = false           # drop dev edges from the crate graph
    fail_unit_error         = false           # abort on a single unreadable package
    user_agent              = "cratekit"      # default User-Agent for registry APIs
    http_pool_size          = 10              # httpx connection pool
    blacklist_env           = ["CARGO_REGISTRIES_*"]

Usage::

    from cratekit.config import Registries, load_config, registry_env

    cfg = load_config(Path('.'))
    registries = Registries()
    env = registry_env(registries.get(cfg.main_registry))
"""

from __future__ import annotations

import difflib
import fnmatch
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import tomlkit
import tomlkit.exceptions

from cratekit.errors import E, CrateKitError
from cratekit.logging import get_logger

logger = get_logger(__name__)

CONFIG_FILENAME = 'cratekit.toml'
CRATES_IO = 'crates.io'
DEFAULT_USER_AGENT = 'cratekit'

# Built-in values for the public registry.
CRATES_IO_INDEX = 'sparse+https://index.crates.io/'
CRATES_IO_API = 'https://crates.io/api/v1/crates/'

_REGISTRY_FIELDS = ('index', 'private_key', 'crate_url', 'token', 'user_agent')

_TYPE_MAP: dict[str, type | tuple[type, ...]] = {
    'main_registry': str,
    'job_limit': int,
    'inner_job_limit': int,
    'fail_fast': bool,
    'artifacts': str,
    'test_command': str,
    'ignore_dev_dependencies': bool,
    'fail_unit_error': bool,
    'user_agent': str,
    'http_pool_size': int,
    'blacklist_env': list,
}

VALID_KEYS: frozenset[str] = frozenset(_TYPE_MAP)


@dataclass(frozen=True)
class CrateKitConfig:
    """Validated contents of ``cratekit.toml``.

    Attributes:
        main_registry: Registry crates are restored to after a publish patch.
        job_limit: Concurrent package pipelines (tests and publish).
        inner_job_limit: ``--jobs`` passed to cargo; 0 leaves cargo's default.
        fail_fast: Stop starting new packages after the first failure.
        artifacts: Directory receiving JUnit reports.
        test_command: Command for the ``cargo_test`` step.
        ignore_dev_dependencies: Build the crate graph from normal deps only.
        fail_unit_error: Abort when a single package cannot be read.
        user_agent: Default ``User-Agent`` for registry API calls.
        http_pool_size: httpx connection pool size.
        blacklist_env: Glob patterns of variables removed from publish children.
        config_path: Where the values came from, ``None`` for defaults.
    """

    main_registry: str = CRATES_IO
    job_limit: int = 2
    inner_job_limit: int = 0
    fail_fast: bool = True
    artifacts: str = 'artifacts'
    test_command: str = 'cargo test --all-targets'
    ignore_dev_dependencies: bool = False
    fail_unit_error: bool = False
    user_agent: str = DEFAULT_USER_AGENT
    http_pool_size: int = 10
    blacklist_env: list[str] = field(default_factory=lambda: ['CARGO_REGISTRIES_*'])
    config_path: Path | None = None

    def with_overrides(self, **overrides: Any) -> CrateKitConfig:  # noqa: ANN401 - CLI values
        """Return a copy with non-``None`` overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _validate_value_type(key: str, value: Any) -> None:  # noqa: ANN401 - dynamic config values
    expected = _TYPE_MAP[key]
    # bool is a subclass of int; reject it where an int is expected.
    if expected is int and isinstance(value, bool):
        ok = False
    else:
        ok = isinstance(value, expected)
    if not ok:
        type_name = expected.__name__ if isinstance(expected, type) else str(expected)
        raise CrateKitError(
            code=E.CONFIG_INVALID_VALUE,
            message=f"'{key}' must be {type_name}, got {type(value).__name__}",
            hint=f'Check the value of {key} in {CONFIG_FILENAME}.',
        )


def load_config(repo_root: Path) -> CrateKitConfig:
    """Load and validate ``cratekit.toml`` from the repository root.

    A missing file yields the defaults.

    Raises:
        CrateKitError: If the file cannot be parsed or holds invalid keys.
    """
    config_path = repo_root / CONFIG_FILENAME
    if not config_path.is_file():
        logger.debug('no_cratekit_config', path=str(config_path))
        return CrateKitConfig()

    try:
        doc = tomlkit.parse(config_path.read_text(encoding='utf-8'))
    except (OSError, tomlkit.exceptions.TOMLKitError) as exc:
        raise CrateKitError(
            code=E.CONFIG_INVALID_VALUE,
            message=f'Failed to parse {config_path}: {exc}',
        ) from exc

    raw: dict[str, Any] = doc.unwrap()  # noqa: ANN401
    for key, value in raw.items():
        if key not in VALID_KEYS:
            suggestion = difflib.get_close_matches(key, VALID_KEYS, n=1, cutoff=0.6)
            raise CrateKitError(
                code=E.CONFIG_INVALID_KEY,
                message=f"Unknown key '{key}' in {CONFIG_FILENAME}",
                hint=f"Did you mean '{suggestion[0]}'?" if suggestion else 'Check the cratekit docs for valid keys.',
            )
        _validate_value_type(key, value)

    if raw.get('job_limit', 1) < 1:
        raise CrateKitError(code=E.CONFIG_INVALID_VALUE, message="'job_limit' must be at least 1")

    return CrateKitConfig(**raw, config_path=config_path)


@dataclass
class RegistryConfig:
    """Connection settings for one cargo registry.

    Attributes:
        name: Human name, as used in ``registry = "..."`` and ``publish``.
        index: Git or sparse HTTP URL of the registry index.
        private_key: SSH key used to reach a git index.
        crate_url: HTTP API base; ``GET {crate_url}{name}`` lists versions.
        token: Value for the ``Authorization`` header and cargo's token.
        user_agent: ``User-Agent`` for API calls.
        local_index: Filesystem clone of the index (checksum lookups).
    """

    name: str
    index: str | None = None
    private_key: str | None = None
    crate_url: str | None = None
    token: str | None = None
    user_agent: str | None = None
    local_index: Path | None = None

    @property
    def env_key(self) -> str:
        """Upper-cased name as used in ``CARGO_REGISTRIES_<KEY>_*``."""
        return registry_env_key(self.name)

    def merge(self, other: RegistryConfig) -> RegistryConfig:
        """Fill empty fields from ``other``; set fields are kept."""
        for f in fields(self):
            if f.name == 'name':
                continue
            if not getattr(self, f.name) and getattr(other, f.name):
                setattr(self, f.name, getattr(other, f.name))
        return self


def registry_env_key(name: str) -> str:
    """``my-registry.io`` becomes ``MY_REGISTRY_IO``."""
    return name.upper().replace('-', '_').replace('.', '_')


def registry_from_env(name: str, environ: Mapping[str, str]) -> RegistryConfig:
    """Read ``CARGO_REGISTRIES_<NAME>_*`` variables."""
    prefix = f'CARGO_REGISTRIES_{registry_env_key(name)}_'
    config = RegistryConfig(name=name)
    for attr in _REGISTRY_FIELDS:
        if attr == 'user_agent' and name == CRATES_IO:
            continue
        value = environ.get(prefix + attr.upper())
        if value:
            setattr(config, attr, value)
    return config


def registry_from_cargo_config(path: Path, name: str) -> RegistryConfig:
    """Read ``[registries.<name>]`` from a cargo ``config.toml``.

    Keys may use dashes or underscores (``private-key``/``private_key``).
    Unreadable files are logged and treated as empty.
    """
    config = RegistryConfig(name=name)
    try:
        doc = tomlkit.parse(path.read_text(encoding='utf-8')).unwrap()
    except (OSError, tomlkit.exceptions.TOMLKitError) as exc:
        logger.warning('cargo_config_unreadable', path=str(path), error=str(exc))
        return config
    section = doc.get('registries', {}).get(name, {})
    if not isinstance(section, dict):
        return config
    for attr in _REGISTRY_FIELDS:
        value = section.get(attr, section.get(attr.replace('_', '-')))
        if isinstance(value, str) and value:
            setattr(config, attr, value)
    return config


def cargo_config_chain(cwd: Path, environ: Mapping[str, str]) -> list[Path]:
    """Config files consulted for registries, highest precedence first."""
    chain: list[Path] = []
    current = cwd.resolve()
    for directory in (current, *current.parents):
        candidate = directory / '.config' / 'config.toml'
        if candidate.is_file():
            chain.append(candidate)
    cargo_home = Path(environ.get('CARGO_HOME') or Path.home() / '.cargo')
    home_config = cargo_home / 'config.toml'
    if home_config.is_file() and home_config not in chain:
        chain.append(home_config)
    return chain


class Registries:
    """Per-invocation registry configuration map.

    Resolves a :class:`RegistryConfig` per name on first use, merging the
    sources in precedence order, and caches it.

    Args:
        overrides: Configs given on the command line, keyed by name.
        cwd: Start directory for the ``.config/config.toml`` walk.
        environ: Environment mapping, defaults to :data:`os.environ`.
    """

    def __init__(
        self,
        overrides: Mapping[str, RegistryConfig] | None = None,
        *,
        cwd: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the map; nothing is read until :meth:`get`."""
        self._overrides = dict(overrides or {})
        self._cwd = cwd or Path.cwd()
        self._environ = os.environ if environ is None else environ
        self._cache: dict[str, RegistryConfig] = {}

    def get(self, name: str) -> RegistryConfig:
        """Return the merged configuration for ``name``."""
        if name in self._cache:
            return self._cache[name]
        override = self._overrides.get(name)
        config = replace(override) if override is not None else RegistryConfig(name=name)
        config.merge(registry_from_env(name, self._environ))
        for path in cargo_config_chain(self._cwd, self._environ):
            config.merge(registry_from_cargo_config(path, name))
        if name == CRATES_IO:
            config.merge(RegistryConfig(name=name, index=CRATES_IO_INDEX, crate_url=CRATES_IO_API))
        if config.local_index is not None:
            config.local_index = Path(config.local_index)
        logger.debug('registry_config', name=name, index=config.index, crate_url=config.crate_url)
        self._cache[name] = config
        return config

    def require(self, name: str, *attrs: str) -> RegistryConfig:
        """Like :meth:`get`, but raise if any of ``attrs`` is unset."""
        config = self.get(name)
        missing = [a for a in attrs if not getattr(config, a)]
        if missing:
            key = registry_env_key(name)
            raise CrateKitError(
                code=E.REGISTRY_NOT_CONFIGURED,
                message=f"Registry '{name}' is missing {', '.join(missing)}",
                hint=f'Set CARGO_REGISTRIES_{key}_{missing[0].upper()} or pass the matching --registry-* flag.',
            )
        return config


def registry_env(config: RegistryConfig) -> dict[str, str]:
    """Environment for a cargo child talking to ``config``'s registry."""
    env = {
        'CARGO_NET_GIT_FETCH_WITH_CLI': 'true',
        'GIT_SSH_COMMAND': 'ssh',
        'SSH_AUTH_SOCK': '',
    }
    if config.name == CRATES_IO:
        if config.token:
            env['CARGO_REGISTRY_TOKEN'] = config.token
    else:
        if config.index:
            env[f'CARGO_REGISTRIES_{config.env_key}_INDEX'] = config.index
        if config.token:
            env[f'CARGO_REGISTRIES_{config.env_key}_TOKEN'] = config.token
    if config.user_agent:
        env['CARGO_HTTP_USER_AGENT'] = config.user_agent
    if config.private_key:
        env['GIT_SSH_COMMAND'] = f'ssh -i {config.private_key}'
    return env


def blacklisted_keys(patterns: list[str], environ: Mapping[str, str] | None = None) -> list[str]:
    """Names of variables in ``environ`` matching any glob in ``patterns``."""
    env = os.environ if environ is None else environ
    return sorted(k for k in env if any(fnmatch.fnmatchcase(k, p) for p in patterns))


__all__ = [
    'CONFIG_FILENAME',
    'CRATES_IO',
    'CrateKitConfig',
    'RegistryConfig',
    'Registries',
    'blacklisted_keys',
    'cargo_config_chain',
    'load_config',
    'registry_env',
    'registry_env_key',
    'registry_from_cargo_config',
    'registry_from_env',
]
