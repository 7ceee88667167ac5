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

"""Binary artifact stores (Azure blob and S3-compatible).

A binary target publishes one artifact per build target under::

    {name}/{channel}/{name}-{target}-{toolchain}-v{version}{ext}
        ext = ".exe" when the target triple mentions windows

Existence checks:

    Azure   ``BlobClient.exists`` from ``azure-storage-blob``, authenticated
            with the storage account key.
    S3      ``HEAD`` on the path-style object URL, signed with botocore's
            SigV4 signer; unsigned when no credentials are configured.

A 200 means present and a 404 absent; anything else raises
``CK-REGISTRY-ERROR``.
"""

from __future__ import annotations

import asyncio
import datetime
from contextlib import AbstractAsyncContextManager, nullcontext
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from azure.core.exceptions import AzureError
from azure.storage.blob import ContainerClient
from botocore.auth import S3SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials

from cratekit.errors import E, CrateKitError
from cratekit.logging import get_logger
from cratekit.net import DEFAULT_POOL_SIZE, DEFAULT_TIMEOUT, MAX_RETRIES, http_client, request_with_retry

log = get_logger('cratekit.backends.registry.blob')

NIGHTLY_EPOCH = datetime.date(2024, 1, 1)


def blob_path(name: str, channel: str, target: str, toolchain: str, version: str) -> str:
    """Path of one binary artifact inside the store."""
    ext = '.exe' if 'windows' in target else ''
    return f'{name}/{channel}/{name}-{target}-{toolchain}-v{version}{ext}'


def channel_version(name: str, version: str, channel: str, today: datetime.date | None = None) -> str:
    """Version used in artifact names.

    Nightly builds append the number of days since :data:`NIGHTLY_EPOCH`
    to the crate version, so every day gets a fresh artifact. Launchers
    keep their crate version.
    """
    if channel != 'nightly' or name.endswith('_launcher'):
        return version
    day = today or datetime.datetime.now(datetime.UTC).date()
    return f'{version}.{(day - NIGHTLY_EPOCH).days}'


def blob_dir(name: str, channel: str) -> str:
    """Directory holding every artifact of ``name`` on ``channel``."""
    return f'{name}/{channel}'.lower()


class BlobStore(Protocol):
    """Object store that can answer "does this blob exist?"."""

    async def exists(self, path: str) -> bool:
        """Return ``True`` iff ``path`` is present."""
        ...


class AzureBlobStore:
    """Azure blob container authenticated with a storage account key.

    Args:
        account: Storage account name.
        container: Container name.
        access_key: Base64 account key.
        endpoint: Blob service URL; defaults to the public cloud endpoint.
        max_retries: Retries the SDK pipeline makes per request.
        container_client: Prebuilt client; replaces the one built from
            the account settings.
    """

    def __init__(
        self,
        account: str,
        container: str,
        access_key: str,
        *,
        endpoint: str | None = None,
        max_retries: int = MAX_RETRIES,
        container_client: Any = None,  # noqa: ANN401
    ) -> None:
        """Initialize the store."""
        self.account = account
        self.container = container
        self.endpoint = (endpoint or f'https://{account}.blob.core.windows.net').rstrip('/')
        self._client = container_client or ContainerClient(
            account_url=self.endpoint,
            container_name=container,
            credential={'account_name': account, 'account_key': access_key},
            retry_total=max_retries,
        )

    async def exists(self, path: str) -> bool:
        """Ask the blob service whether ``path`` exists."""
        blob = self._client.get_blob_client(path)
        try:
            present = bool(await asyncio.to_thread(blob.exists))
        except AzureError as exc:
            raise CrateKitError(
                code=E.REGISTRY_ERROR,
                message=f'Blob store failed for {path}: {exc}',
            ) from exc
        log.debug('blob_checked', store='azure', container=self.container, path=path, present=present)
        return present


class S3BlobStore:
    """S3-compatible bucket addressed path-style (``{endpoint}/{bucket}/{key}``).

    Requests are unsigned when no credentials are given.
    """

    def __init__(
        self,
        endpoint: str,
        bucket: str,
        *,
        region: str = 'us-east-1',
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        pool_size: int = DEFAULT_POOL_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the store."""
        self.endpoint = endpoint.rstrip('/')
        self.bucket = bucket
        self.region = region
        self._credentials = (
            Credentials(access_key_id, secret_access_key) if access_key_id and secret_access_key else None
        )
        self._pool_size = pool_size
        self._timeout = timeout
        self._max_retries = max_retries
        self._client = client

    def _session(self) -> AbstractAsyncContextManager[httpx.AsyncClient]:
        if self._client is not None:
            return nullcontext(self._client)
        return http_client(pool_size=self._pool_size, timeout=self._timeout)

    def url(self, path: str) -> str:
        """Path-style URL of the object at ``path``."""
        return f'{self.endpoint}/{self.bucket}/{quote(path, safe="/-_.~")}'

    def sign(self, path: str) -> dict[str, str]:
        """SigV4 headers for a ``HEAD`` of ``path``; empty when unsigned."""
        if self._credentials is None:
            return {}
        request = AWSRequest(method='HEAD', url=self.url(path))
        S3SigV4Auth(self._credentials, 's3', self.region).add_auth(request)
        return dict(request.headers)

    async def exists(self, path: str) -> bool:
        """``HEAD`` the object at ``path``."""
        try:
            async with self._session() as client:
                response = await request_with_retry(
                    client, 'HEAD', self.url(path), headers=self.sign(path), max_retries=self._max_retries
                )
        except httpx.HTTPError as exc:
            raise CrateKitError(code=E.REGISTRY_ERROR, message=f'Blob store unreachable for {path}: {exc}') from exc
        log.debug('blob_checked', store='s3', bucket=self.bucket, path=path, status=response.status_code)
        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        raise CrateKitError(
            code=E.REGISTRY_ERROR,
            message=f'Blob store answered HTTP {response.status_code} for {path}',
        )


def make_blob_store(
    *,
    storage_account: str | None = None,
    container: str | None = None,
    access_key: str | None = None,
    s3_endpoint: str | None = None,
    s3_bucket: str | None = None,
    s3_region: str | None = None,
    s3_access_key_id: str | None = None,
    s3_secret_access_key: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> BlobStore | None:
    """Build the configured store; ``None`` when neither is fully configured.

    Azure wins when both are configured. ``client`` is shared by the S3
    store only; the Azure SDK keeps its own transport.
    """
    if storage_account and container and access_key:
        return AzureBlobStore(storage_account, container, access_key)
    if s3_endpoint and s3_bucket:
        return S3BlobStore(
            s3_endpoint,
            s3_bucket,
            region=s3_region or 'us-east-1',
            access_key_id=s3_access_key_id,
            secret_access_key=s3_secret_access_key,
            client=client,
        )
    return None


__all__ = [
    'AzureBlobStore',
    'BlobStore',
    'NIGHTLY_EPOCH',
    'S3BlobStore',
    'blob_dir',
    'blob_path',
    'channel_version',
    'make_blob_store',
]
