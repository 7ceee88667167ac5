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

"""npm registry probe for napi packages.

Registries and scopes come from an npmrc file::

    //npm.example.com/:_authToken=s3cr3t     registry https://npm.example.com/
                                             with a bearer token
    @acme:registry=https://npm.example.com/  scope @acme uses that registry

Unscoped packages, and scopes without a mapping, use the default
registry (``https://registry.npmjs.org/`` unless overridden).
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from contextlib import AbstractAsyncContextManager, nullcontext
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from cratekit.errors import E, CrateKitError
from cratekit.logging import get_logger
from cratekit.net import DEFAULT_POOL_SIZE, DEFAULT_TIMEOUT, MAX_RETRIES, http_client, request_with_retry

log = get_logger('cratekit.backends.registry.npm')

NPM_DEFAULT_URL = 'https://registry.npmjs.org/'
DEFAULT_KEY = 'default'

_TOKEN_MARKER = ':_authToken='
_SCOPE_MARKER = ':registry=https://'


@dataclass(frozen=True)
class NpmRegistry:
    """One npm registry endpoint."""

    url: str
    token: str | None = None


@dataclass
class NpmConfig:
    """Registries keyed by host (``npm.example.com/``) plus scope mappings.

    Attributes:
        registries: Registry by host key; ``default`` is always present.
        scopes: ``@scope`` to host key.
    """

    registries: dict[str, NpmRegistry] = field(default_factory=dict)
    scopes: dict[str, str] = field(default_factory=dict)

    @classmethod
    def load(
        cls,
        path: Path | None = None,
        *,
        url: str | None = None,
        token: str | None = None,
        tls: bool = True,
        environ: Mapping[str, str] | None = None,
    ) -> NpmConfig:
        """Build the config from an npmrc file.

        Args:
            path: npmrc location, defaults to ``$HOME/.npmrc``.
            url: Default registry URL override.
            token: Token for the default registry.
            tls: Use ``https`` for registries found in the file.
            environ: Environment mapping, defaults to :data:`os.environ`.
        """
        env = os.environ if environ is None else environ
        config = cls(registries={DEFAULT_KEY: NpmRegistry(url or NPM_DEFAULT_URL, token)})
        if path is None:
            path = Path(env.get('HOME') or Path.home()) / '.npmrc'
        if not path.is_file():
            return config
        try:
            lines = path.read_text(encoding='utf-8').splitlines()
        except OSError as exc:
            log.warning('npmrc_unreadable', path=str(path), error=str(exc))
            return config
        config.parse_lines(lines, tls=tls)
        return config

    def parse_lines(self, lines: list[str], *, tls: bool = True) -> None:
        """Merge npmrc lines into this config."""
        protocol = 'https' if tls else 'http'
        for raw in lines:
            line = raw.strip()
            if _TOKEN_MARKER in line:
                location, _, value = line.partition(_TOKEN_MARKER)
                key = location.removeprefix('//')
                self.registries[key] = NpmRegistry(url=f'{protocol}:{location}', token=value)
                continue
            if _SCOPE_MARKER in line:
                scope, _, host = line.partition(_SCOPE_MARKER)
                self.scopes[scope] = host

    def registry_for(self, package: str) -> NpmRegistry:
        """Registry serving ``package`` (scoped names use their scope's registry)."""
        if package.startswith('@') and '/' in package:
            scope = package.split('/', 1)[0]
            key = self.scopes.get(scope)
            if key is not None and key in self.registries:
                return self.registries[key]
        return self.registries[DEFAULT_KEY]


def scoped_name(name: str, scope: str | None) -> str:
    """``@{scope}/{name}``, or ``name`` when there is no scope."""
    return f'@{scope}/{name}' if scope else name


class NpmRegistryProbe:
    """Checks whether an npm package version exists.

    Args:
        config: Registries and scopes, see :class:`NpmConfig`.
        pool_size: HTTP connection pool size.
        timeout: HTTP request timeout in seconds.
        max_retries: Retries for 429/5xx and transient transport errors.
        client: Shared HTTP client; each call opens its own when ``None``.
    """

    def __init__(
        self,
        config: NpmConfig | None = None,
        *,
        pool_size: int = DEFAULT_POOL_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the probe."""
        self.config = config or NpmConfig(registries={DEFAULT_KEY: NpmRegistry(NPM_DEFAULT_URL)})
        self._pool_size = pool_size
        self._timeout = timeout
        self._max_retries = max_retries
        self._client = client

    def _session(self) -> AbstractAsyncContextManager[httpx.AsyncClient]:
        if self._client is not None:
            return nullcontext(self._client)
        return http_client(pool_size=self._pool_size, timeout=self._timeout)

    async def is_published(self, package: str, version: str) -> bool:
        """Return ``True`` iff any entry of the package's ``versions`` is ``version``.

        Raises:
            CrateKitError: ``CK-REGISTRY-ERROR`` on HTTP status >= 400,
                transport failures or an undecodable body.
        """
        registry = self.config.registry_for(package)
        url = f'{registry.url}{package}'
        headers = {'Authorization': f'Bearer {registry.token}'} if registry.token else {}
        try:
            async with self._session() as client:
                response = await request_with_retry(client, 'GET', url, headers=headers, max_retries=self._max_retries)
        except httpx.HTTPError as exc:
            raise CrateKitError(
                code=E.REGISTRY_ERROR,
                message=f'Could not fetch {package} from {registry.url}: {exc}',
            ) from exc

        if response.status_code >= 400:
            raise CrateKitError(
                code=E.REGISTRY_ERROR,
                message=f'npm registry {registry.url} answered HTTP {response.status_code} for {package}',
            )
        try:
            versions = response.json().get('versions') or {}
        except (ValueError, AttributeError) as exc:
            raise CrateKitError(
                code=E.REGISTRY_ERROR,
                message=f'npm registry {registry.url} returned an invalid document for {package}',
            ) from exc
        if not isinstance(versions, dict):
            versions = {}
        found = any(isinstance(v, dict) and v.get('version') == version for v in versions.values())
        log.debug('npm_version_checked', package=package, version=version, published=found)
        return found


__all__ = [
    'NPM_DEFAULT_URL',
    'NpmConfig',
    'NpmRegistry',
    'NpmRegistryProbe',
    'scoped_name',
]
