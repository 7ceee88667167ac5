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

"""Tests for cratekit.backends.registry.cargo."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager

import httpx
import pytest
from cratekit.backends.registry.cargo import CargoRegistryProbe, published_versions
from cratekit.config import RegistryConfig
from cratekit.errors import E, CrateKitError

_Handler = Callable[[httpx.Request], httpx.Response]


def _mock(monkeypatch: pytest.MonkeyPatch, handler: _Handler) -> None:
    @asynccontextmanager
    async def _client(**kw: object) -> AsyncGenerator[httpx.AsyncClient]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            yield client

    monkeypatch.setattr('cratekit.backends.registry.cargo.http_client', _client)


def _probe(token: str | None = None) -> CargoRegistryProbe:
    config = RegistryConfig(name='internal', crate_url='https://crates.example.com/api/v1/crates/', token=token)
    return CargoRegistryProbe(config, max_retries=0)


class TestPublishedVersions:
    """Tests for published_versions()."""

    def test_search_shape(self) -> None:
        """The crates list is matched by name."""
        payload = {
            'crates': [
                {'name': 'other', 'versions': [{'vers': '9.9.9'}]},
                {'name': 'api', 'versions': [{'vers': '1.0.0'}, {'vers': '1.1.0'}]},
            ]
        }
        assert published_versions(payload, 'api') == ['1.0.0', '1.1.0']

    def test_crates_io_shape(self) -> None:
        """Top-level versions use num."""
        payload = {'crate': {'name': 'api'}, 'versions': [{'num': '0.2.0'}]}
        assert published_versions(payload, 'api') == ['0.2.0']

    def test_garbage(self) -> None:
        """Unexpected payloads list nothing."""
        assert published_versions(['x'], 'api') == []
        assert published_versions({'crates': [{'name': 'api', 'versions': [{'vers': 1}]}]}, 'api') == []


class TestCargoRegistryProbe:
    """Tests for CargoRegistryProbe.is_published()."""

    def test_requires_crate_url(self) -> None:
        """A registry without an API URL is rejected up front."""
        with pytest.raises(CrateKitError) as exc_info:
            CargoRegistryProbe(RegistryConfig(name='internal'))
        assert exc_info.value.code is E.REGISTRY_NOT_CONFIGURED
        assert 'CARGO_REGISTRIES_INTERNAL_CRATE_URL' in exc_info.value.hint

    @pytest.mark.asyncio()
    async def test_published(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The version is found and the token is sent verbatim."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={'crates': [{'name': 'api', 'versions': [{'vers': '0.1.0'}]}]})

        _mock(monkeypatch, handler)
        assert await _probe('s3cr3t').is_published('api', '0.1.0') is True
        assert str(seen[0].url) == 'https://crates.example.com/api/v1/crates/api', f'got {seen[0].url}'
        assert seen[0].headers['Authorization'] == 's3cr3t'

    @pytest.mark.asyncio()
    async def test_other_version(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A different published version is not a match."""
        _mock(
            monkeypatch,
            lambda r: httpx.Response(200, json={'crate': {'name': 'api'}, 'versions': [{'num': '0.0.9'}]}),
        )
        assert await _probe().is_published('api', '0.1.0') is False

    @pytest.mark.asyncio()
    async def test_not_found(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """404 means never published."""
        _mock(monkeypatch, lambda r: httpx.Response(404))
        assert await _probe().is_published('api', '0.1.0') is False

    @pytest.mark.asyncio()
    async def test_server_error_is_not_published(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """5xx after retries answers not published instead of raising."""
        _mock(monkeypatch, lambda r: httpx.Response(503))
        assert await _probe().is_published('api', '0.1.0') is False

    @pytest.mark.asyncio()
    async def test_transport_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Connection failures answer not published."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError('refused', request=request)

        _mock(monkeypatch, handler)
        assert await _probe().is_published('api', '0.1.0') is False

    @pytest.mark.asyncio()
    async def test_bad_json(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """An undecodable body answers not published."""
        _mock(monkeypatch, lambda r: httpx.Response(200, text='<html>'))
        assert await _probe().is_published('api', '0.1.0') is False

    @pytest.mark.asyncio()
    async def test_shared_client(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A client handed in serves every call; none is opened per call."""

        def _refuse(**kw: object) -> None:
            raise AssertionError('http_client opened')

        monkeypatch.setattr('cratekit.backends.registry.cargo.http_client', _refuse)
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(404)

        config = RegistryConfig(name='internal', crate_url='https://crates.example.com/api/v1/crates/')
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            probe = CargoRegistryProbe(config, max_retries=0, client=client)
            assert await probe.is_published('api', '0.1.0') is False
            assert await probe.is_published('core', '0.1.0') is False
            assert not client.is_closed
        assert seen == ['/api/v1/crates/api', '/api/v1/crates/core'], f'got {seen}'
