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

"""HTTP utilities for cratekit.

Every remote probe (cargo registry API, OCI registry, npm registry, blob
store) talks HTTP through the two helpers in this module:

- :func:`http_client` yields a pooled :class:`httpx.AsyncClient` with a
  cratekit ``User-Agent`` and redirect following.
- :func:`request_with_retry` retries rate limits, 5xx responses, and
  transient transport failures with exponential backoff.

Retry Policy::

    attempt 0 ──► 429/5xx/timeout? ──no──► return response
                        │
                       yes
                        ▼
                 sleep(backoff * 2**n) ──► attempt n+1 ... max_retries
                        │
                 exhausted: re-raise the transport error, or
                 raise_for_status() on the last retryable response

Usage::

    from cratekit.net import http_client, request_with_retry

    async with http_client(headers={'Accept': 'application/json'}) as client:
        response = await request_with_retry(client, 'GET', url)
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Final

import httpx

from cratekit import __version__
from cratekit.logging import get_logger

log = get_logger('cratekit.net')

DEFAULT_POOL_SIZE: Final[int] = 10
DEFAULT_TIMEOUT: Final[float] = 30.0
DEFAULT_USER_AGENT: Final[str] = f'cratekit/{__version__}'

MAX_RETRIES: Final[int] = 3
RETRY_BACKOFF_BASE: Final[float] = 1.0

RETRYABLE_STATUS_CODES: Final[frozenset[int]] = frozenset({429, 500, 502, 503, 504})
RETRYABLE_EXCEPTIONS: Final[tuple[type[Exception], ...]] = (
    httpx.ConnectError,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.RemoteProtocolError,
)


@asynccontextmanager
async def http_client(
    *,
    pool_size: int = DEFAULT_POOL_SIZE,
    timeout: float = DEFAULT_TIMEOUT,
    base_url: str = '',
    headers: dict[str, str] | None = None,
) -> AsyncGenerator[httpx.AsyncClient]:
    """Create a managed async HTTP client with connection pooling.

    Args:
        pool_size: Maximum number of connections in the pool.
        timeout: Request timeout in seconds.
        base_url: Optional base URL for all requests.
        headers: Optional default headers. A ``User-Agent`` given here
            replaces the cratekit default.

    Yields:
        An :class:`httpx.AsyncClient` instance.
    """
    limits = httpx.Limits(
        max_connections=pool_size,
        max_keepalive_connections=pool_size,
    )
    merged = {'User-Agent': DEFAULT_USER_AGENT, **(headers or {})}
    async with httpx.AsyncClient(
        limits=limits,
        timeout=httpx.Timeout(timeout),
        base_url=base_url,
        headers=merged,
        follow_redirects=True,
    ) as client:
        yield client


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_retries: int = MAX_RETRIES,
    backoff_base: float = RETRY_BACKOFF_BASE,
    **kwargs: object,
) -> httpx.Response:
    """Make an HTTP request, retrying transient failures.

    Args:
        client: The httpx async client to use.
        method: HTTP method (GET, HEAD, POST, ...).
        url: Request URL.
        max_retries: Maximum number of retry attempts.
        backoff_base: Base delay in seconds for exponential backoff.
        **kwargs: Passed through to ``client.request()``.

    Returns:
        The :class:`httpx.Response`. Non-retryable error statuses (404,
        401, ...) are returned, not raised; callers interpret them.

    Raises:
        httpx.HTTPStatusError: If every attempt got a retryable status.
        httpx.TransportError: If every attempt failed at the transport level.
    """
    last_exception: Exception | None = None
    response: httpx.Response | None = None

    for attempt in range(max_retries + 1):
        delay = backoff_base * (2**attempt)
        try:
            response = await client.request(method, url, **kwargs)  # type: ignore[arg-type]
        except RETRYABLE_EXCEPTIONS as exc:
            last_exception = exc
            response = None
            log.warning('http_retry_error', method=method, url=url, error=str(exc), attempt=attempt + 1)
        else:
            if response.status_code not in RETRYABLE_STATUS_CODES:
                return response
            last_exception = None
            log.warning('http_retry', method=method, url=url, status=response.status_code, attempt=attempt + 1)
        if attempt < max_retries:
            await asyncio.sleep(delay)

    if last_exception is not None:
        raise last_exception
    if response is not None:
        response.raise_for_status()
        return response

    msg = 'request_with_retry: no attempts were made'
    raise RuntimeError(msg)


__all__ = [
    'DEFAULT_POOL_SIZE',
    'DEFAULT_TIMEOUT',
    'DEFAULT_USER_AGENT',
    'MAX_RETRIES',
    'RETRYABLE_STATUS_CODES',
    'http_client',
    'request_with_retry',
]
