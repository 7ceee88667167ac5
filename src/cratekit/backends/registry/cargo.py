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

"""Cargo registry API probe.

``GET {crate_url}{name}`` lists the published versions of a crate.
Registries answer in one of two shapes::

    search shape                         crates.io shape
    {"crates": [                         {"crate": {"name": "foo"},
        {"name": "foo",                   "versions": [{"num": "1.0.0"}]}
         "versions": [{"vers": "1.0.0"}]}
    ]}

Anything unexpected (non-404 error status, transport failure, garbage
JSON) is logged and answered with "not published".
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager, nullcontext
from typing import Any

import httpx

from cratekit.config import DEFAULT_USER_AGENT, RegistryConfig
from cratekit.errors import E, CrateKitError
from cratekit.logging import get_logger
from cratekit.net import DEFAULT_POOL_SIZE, DEFAULT_TIMEOUT, MAX_RETRIES, http_client, request_with_retry

log = get_logger('cratekit.backends.registry.cargo')


def published_versions(payload: Any, name: str) -> list[str]:  # noqa: ANN401 - decoded JSON
    """Extract version strings for ``name`` from either response shape."""
    if not isinstance(payload, dict):
        return []
    entries: list[Any] = []
    crates = payload.get('crates')
    if isinstance(crates, list):
        for crate in crates:
            if isinstance(crate, dict) and crate.get('name') == name:
                entries = crate.get('versions') or []
                break
    elif isinstance(payload.get('crate'), dict):
        entries = payload.get('versions') or []
    versions: list[str] = []
    for entry in entries:
        if isinstance(entry, dict):
            value = entry.get('vers', entry.get('num'))
            if isinstance(value, str):
                versions.append(value)
    return versions


class CargoRegistryProbe:
    """Checks whether a crate version exists on one cargo registry.

    Args:
        config: Registry settings; ``crate_url`` is required.
        pool_size: HTTP connection pool size.
        timeout: HTTP request timeout in seconds.
        max_retries: Retries for 429/5xx and transient transport errors.
        client: Shared HTTP client; each call opens its own when ``None``.
    """

    def __init__(
        self,
        config: RegistryConfig,
        *,
        pool_size: int = DEFAULT_POOL_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the probe; raises if the registry has no API URL."""
        if not config.crate_url:
            raise CrateKitError(
                code=E.REGISTRY_NOT_CONFIGURED,
                message=f"Registry '{config.name}' has no crate_url",
                hint=f'Set CARGO_REGISTRIES_{config.env_key}_CRATE_URL or --registry-crate-url.',
            )
        self.config = config
        self._pool_size = pool_size
        self._timeout = timeout
        self._max_retries = max_retries
        self._client = client

    def _session(self) -> AbstractAsyncContextManager[httpx.AsyncClient]:
        if self._client is not None:
            return nullcontext(self._client)
        return http_client(pool_size=self._pool_size, timeout=self._timeout)

    def _headers(self) -> dict[str, str]:
        headers = {
            'Accept': 'application/json',
            'Content-Type': 'application/json',
            'User-Agent': self.config.user_agent or DEFAULT_USER_AGENT,
        }
        if self.config.token:
            headers['Authorization'] = self.config.token
        return headers

    async def is_published(self, name: str, version: str) -> bool:
        """Return ``True`` iff ``name@version`` is listed by the registry."""
        url = f'{self.config.crate_url}{name}'
        try:
            async with self._session() as client:
                response = await request_with_retry(
                    client, 'GET', url, headers=self._headers(), max_retries=self._max_retries
                )
        except httpx.HTTPError as exc:
            log.warning('cargo_registry_unreachable', registry=self.config.name, crate=name, error=str(exc))
            return False

        if response.status_code == 404:
            log.debug('crate_not_found', registry=self.config.name, crate=name)
            return False
        if response.status_code >= 400:
            log.warning(
                'cargo_registry_error',
                registry=self.config.name,
                crate=name,
                status=response.status_code,
            )
            return False
        try:
            payload = response.json()
        except ValueError:
            log.warning('cargo_registry_bad_json', registry=self.config.name, crate=name)
            return False

        found = version in published_versions(payload, name)
        log.debug('crate_version_checked', registry=self.config.name, crate=name, version=version, published=found)
        return found


__all__ = [
    'CargoRegistryProbe',
    'published_versions',
]
