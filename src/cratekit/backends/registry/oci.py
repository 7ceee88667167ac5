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

"""OCI (docker) registry manifest probe.

Authentication resolution, first match wins::

    explicit --docker-username/--docker-password  ──► Basic
    $DOCKER_CONFIG/config.json (~/.docker/config.json)
        auths[registry].auth = base64(user:pass)  ──► Basic
        auths[registry].identitytoken             ──► IdentityToken
    nothing                                       ──► Anonymous

Manifest fetch::

    [IdentityToken] POST https://{registry}/oauth2/token
                    grant_type=refresh_token&service=..&scope=repository:{name}:pull
                    ──► access_token used as Bearer
    GET https://{registry}/v2/{name}/manifests/{tag}
        200 ──────────────────────────────► published
        401 + WWW-Authenticate: Bearer realm=..,service=..,scope=..
            ──► GET realm?service=..&scope=.. ──► token ──► retry once
        error envelope {"errors": [{"code": ...}]}
            MANIFEST_UNKNOWN ─────────────► not published
            UNAUTHORIZED / DENIED ────────► CK-REGISTRY-AUTH-FAILED
            anything else ────────────────► CK-REGISTRY-ERROR
    transport failure ────────────────────► CK-REGISTRY-ERROR
"""

from __future__ import annotations

import base64
import json
import os
import re
from collections.abc import Mapping
from contextlib import AbstractAsyncContextManager, nullcontext
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from cratekit.errors import E, CrateKitError
from cratekit.logging import get_logger
from cratekit.net import DEFAULT_POOL_SIZE, DEFAULT_TIMEOUT, MAX_RETRIES, http_client, request_with_retry

log = get_logger('cratekit.backends.registry.oci')

MANIFEST_MEDIA_TYPES = (
    'application/vnd.oci.image.manifest.v1+json',
    'application/vnd.oci.image.index.v1+json',
    'application/vnd.docker.distribution.manifest.v2+json',
    'application/vnd.docker.distribution.manifest.list.v2+json',
)

_AUTH_ERROR_CODES = frozenset({'UNAUTHORIZED', 'DENIED'})
_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


@dataclass(frozen=True)
class RegistryAuth:
    """Credentials for one OCI registry.

    Attributes:
        kind: ``anonymous``, ``basic`` or ``identity_token``.
        username: User for basic auth or the identity token owner.
        secret: Password or identity (refresh) token.
    """

    kind: str = 'anonymous'
    username: str = ''
    secret: str = ''

    @classmethod
    def anonymous(cls) -> RegistryAuth:
        return cls()

    @classmethod
    def basic(cls, username: str, password: str) -> RegistryAuth:
        return cls('basic', username, password)

    @classmethod
    def identity_token(cls, username: str, token: str) -> RegistryAuth:
        return cls('identity_token', username, token)

    def basic_header(self) -> str:
        """``Basic base64(user:pass)``."""
        raw = f'{self.username}:{self.secret}'.encode()
        return 'Basic ' + base64.b64encode(raw).decode('ascii')


@dataclass
class DockerCredentials:
    """Registry credentials read from a docker ``config.json``.

    Attributes:
        auths: Resolved credentials keyed by registry host.
    """

    auths: dict[str, RegistryAuth] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path | None = None, *, environ: Mapping[str, str] | None = None) -> DockerCredentials:
        """Read ``config.json``; a missing or unreadable file yields no credentials.

        Args:
            path: Explicit config file. Defaults to
                ``$DOCKER_CONFIG/config.json`` or ``~/.docker/config.json``.
            environ: Environment mapping, defaults to :data:`os.environ`.
        """
        env = os.environ if environ is None else environ
        if path is None:
            config_dir = env.get('DOCKER_CONFIG')
            path = Path(config_dir) / 'config.json' if config_dir else Path.home() / '.docker' / 'config.json'
        if not path.is_file():
            log.debug('docker_config_missing', path=str(path))
            return cls()
        try:
            data = json.loads(path.read_text(encoding='utf-8'))
        except (OSError, ValueError) as exc:
            log.warning('docker_config_unreadable', path=str(path), error=str(exc))
            return cls()
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: object) -> DockerCredentials:
        """Decode the ``auths`` map of a parsed ``config.json``."""
        creds = cls()
        auths = data.get('auths') if isinstance(data, dict) else None
        if not isinstance(auths, dict):
            return creds
        for server, entry in auths.items():
            if not isinstance(entry, dict):
                continue
            username, password = '', ''
            if entry.get('auth'):
                try:
                    decoded = base64.b64decode(entry['auth']).decode('utf-8')
                except (ValueError, UnicodeDecodeError):
                    log.warning('docker_auth_undecodable', registry=server)
                    continue
                username, _, password = decoded.partition(':')
            host = _normalize_server(server)
            if entry.get('identitytoken'):
                creds.auths[host] = RegistryAuth.identity_token(username, entry['identitytoken'])
            elif username:
                creds.auths[host] = RegistryAuth.basic(username, password)
        return creds

    def add(self, registry: str, auth: RegistryAuth) -> None:
        """Register ``auth`` for ``registry``, replacing any file entry."""
        self.auths[_normalize_server(registry)] = auth

    def auth_for(self, registry: str) -> RegistryAuth:
        """Credentials for ``registry``, anonymous when none are configured."""
        return self.auths.get(_normalize_server(registry), RegistryAuth.anonymous())


def _normalize_server(server: str) -> str:
    host = re.sub(r'^https?://', '', server)
    return host.split('/', 1)[0]


def parse_challenge(header: str) -> dict[str, str]:
    """Parse ``Bearer realm="..",service="..",scope=".."``; empty if not Bearer."""
    scheme, _, params = header.partition(' ')
    if scheme.lower() != 'bearer':
        return {}
    return dict(_CHALLENGE_PARAM.findall(params))


def _error_codes(response: httpx.Response) -> list[str]:
    try:
        payload = response.json()
    except ValueError:
        return []
    errors = payload.get('errors') if isinstance(payload, dict) else None
    if not isinstance(errors, list):
        return []
    return [str(err.get('code', '')).upper() for err in errors if isinstance(err, dict)]


class OciRegistryProbe:
    """Checks whether ``{registry}/{name}:{tag}`` exists.

    Args:
        scheme: ``https`` for real registries; ``http`` for a local one.
        pool_size: HTTP connection pool size.
        timeout: HTTP request timeout in seconds.
        max_retries: Retries for 429/5xx and transient transport errors.
        client: Shared HTTP client; each call opens its own when ``None``.
    """

    def __init__(
        self,
        *,
        scheme: str = 'https',
        pool_size: int = DEFAULT_POOL_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the probe."""
        self._scheme = scheme
        self._pool_size = pool_size
        self._timeout = timeout
        self._max_retries = max_retries
        self._client = client

    def _session(self) -> AbstractAsyncContextManager[httpx.AsyncClient]:
        if self._client is not None:
            return nullcontext(self._client)
        return http_client(pool_size=self._pool_size, timeout=self._timeout)

    async def _exchange_identity_token(
        self, client: httpx.AsyncClient, registry: str, name: str, auth: RegistryAuth
    ) -> str:
        url = f'{self._scheme}://{registry}/oauth2/token'
        data = {
            'grant_type': 'refresh_token',
            'service': registry,
            'scope': f'repository:{name}:pull',
            'refresh_token': auth.secret,
        }
        response = await request_with_retry(client, 'POST', url, data=data, max_retries=self._max_retries)
        if response.status_code in (401, 403):
            raise CrateKitError(
                code=E.REGISTRY_AUTH_FAILED,
                message=f'{registry} rejected the identity token (HTTP {response.status_code})',
                hint='Log in again with `docker login` to refresh ~/.docker/config.json.',
            )
        if response.status_code >= 400:
            raise CrateKitError(
                code=E.REGISTRY_ERROR,
                message=f'Token exchange with {registry} failed with HTTP {response.status_code}',
            )
        token = response.json().get('access_token')
        if not token:
            raise CrateKitError(code=E.REGISTRY_ERROR, message=f'{registry} returned no access_token')
        return str(token)

    async def _challenge_token(
        self, client: httpx.AsyncClient, challenge: dict[str, str], auth: RegistryAuth
    ) -> str | None:
        realm = challenge.get('realm')
        if not realm:
            return None
        params = {k: v for k, v in challenge.items() if k in ('service', 'scope')}
        headers = {'Authorization': auth.basic_header()} if auth.kind == 'basic' else {}
        response = await request_with_retry(
            client, 'GET', realm, params=params, headers=headers, max_retries=self._max_retries
        )
        if response.status_code >= 400:
            return None
        payload = response.json()
        token = payload.get('token') or payload.get('access_token')
        return str(token) if token else None

    async def is_published(self, registry: str, name: str, tag: str, *, auth: RegistryAuth | None = None) -> bool:
        """Return ``True`` iff the manifest for ``name:tag`` exists on ``registry``.

        Raises:
            CrateKitError: ``CK-REGISTRY-AUTH-FAILED`` when credentials are
                rejected, ``CK-REGISTRY-ERROR`` for any other failure.
        """
        auth = auth or RegistryAuth.anonymous()
        url = f'{self._scheme}://{registry}/v2/{name}/manifests/{tag}'
        headers = {'Accept': ', '.join(MANIFEST_MEDIA_TYPES)}
        try:
            async with self._session() as client:
                if auth.kind == 'identity_token':
                    token = await self._exchange_identity_token(client, registry, name, auth)
                    headers['Authorization'] = f'Bearer {token}'
                elif auth.kind == 'basic':
                    headers['Authorization'] = auth.basic_header()

                response = await request_with_retry(client, 'GET', url, headers=headers, max_retries=self._max_retries)
                if response.status_code == 401:
                    challenge = parse_challenge(response.headers.get('www-authenticate', ''))
                    token = await self._challenge_token(client, challenge, auth) if challenge else None
                    if token:
                        headers['Authorization'] = f'Bearer {token}'
                        response = await request_with_retry(
                            client, 'GET', url, headers=headers, max_retries=self._max_retries
                        )
        except httpx.HTTPError as exc:
            raise CrateKitError(
                code=E.REGISTRY_ERROR,
                message=f'Could not access docker registry {registry}: {exc}',
            ) from exc

        if response.status_code < 400:
            log.debug('manifest_found', registry=registry, image=name, tag=tag)
            return True

        codes = _error_codes(response)
        if 'MANIFEST_UNKNOWN' in codes:
            log.debug('manifest_unknown', registry=registry, image=name, tag=tag)
            return False
        if response.status_code == 401 or _AUTH_ERROR_CODES.intersection(codes):
            raise CrateKitError(
                code=E.REGISTRY_AUTH_FAILED,
                message=f'Failed to authenticate to the docker registry {registry} (HTTP {response.status_code})',
                hint='Check ~/.docker/config.json or pass --docker-registry-username/--docker-registry-password.',
            )
        raise CrateKitError(
            code=E.REGISTRY_ERROR,
            message=f'Unexpected registry error for {registry}/{name}:{tag}: HTTP {response.status_code} {codes}',
        )


__all__ = [
    'MANIFEST_MEDIA_TYPES',
    'DockerCredentials',
    'OciRegistryProbe',
    'RegistryAuth',
    'parse_challenge',
]
