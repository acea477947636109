"""Tests for BaseConnector request handling.

Covers the fixed-delay retry on transport failures, 429 and 5xx, the
non-retried 404 and 4xx outcomes, and minimum spacing between calls.
"""

from __future__ import annotations

import time

import httpx
import pytest
import respx

from curtailment_recon.connectors.base import (
    BaseConnector,
    ConnectorError,
    TransientSourceError,
)

BASE_URL = "https://source.test"


class _EchoConnector(BaseConnector):
    SOURCE_NAME = "ECHO"


def _connector(**kwargs) -> _EchoConnector:
    kwargs.setdefault("retry_delay", 0)
    kwargs.setdefault("min_interval", 0)
    kwargs.setdefault("max_attempts", 3)
    return _EchoConnector(BASE_URL, **kwargs)


class TestRequest:
    def test_client_requires_context_manager(self):
        with pytest.raises(ConnectorError):
            _connector().client

    @pytest.mark.asyncio
    @respx.mock
    async def test_success(self):
        respx.get(f"{BASE_URL}/ok").mock(return_value=httpx.Response(200, json={"a": 1}))

        async with _connector() as conn:
            response = await conn._request("GET", "/ok")

        assert response.json() == {"a": 1}

    @pytest.mark.asyncio
    @respx.mock
    async def test_retries_server_error_then_succeeds(self):
        route = respx.get(f"{BASE_URL}/flaky").mock(
            side_effect=[httpx.Response(503), httpx.Response(429), httpx.Response(200, json=[])]
        )

        async with _connector() as conn:
            response = await conn._request("GET", "/flaky")

        assert response.status_code == 200
        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_exhausted_retries_raise_transient(self):
        route = respx.get(f"{BASE_URL}/down").mock(return_value=httpx.Response(500))

        async with _connector(max_attempts=2) as conn:
            with pytest.raises(TransientSourceError):
                await conn._request("GET", "/down")

        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error_wrapped(self):
        route = respx.get(f"{BASE_URL}/timeout").mock(
            side_effect=httpx.ReadTimeout("slow")
        )

        async with _connector() as conn:
            with pytest.raises(TransientSourceError):
                await conn._request("GET", "/timeout")

        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_not_found_returns_none_without_retry(self):
        route = respx.get(f"{BASE_URL}/missing").mock(return_value=httpx.Response(404))

        async with _connector() as conn:
            assert await conn._request("GET", "/missing") is None

        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_client_error_not_retried(self):
        route = respx.get(f"{BASE_URL}/bad").mock(return_value=httpx.Response(400))

        async with _connector() as conn:
            with pytest.raises(ConnectorError) as exc_info:
                await conn._request("GET", "/bad")

        assert not isinstance(exc_info.value, TransientSourceError)
        assert route.call_count == 1


class TestThrottle:
    @pytest.mark.asyncio
    @respx.mock
    async def test_min_interval_between_calls(self):
        respx.get(f"{BASE_URL}/ok").mock(return_value=httpx.Response(200, json={}))

        async with _connector(min_interval=0.05) as conn:
            t0 = time.monotonic()
            await conn._request("GET", "/ok")
            await conn._request("GET", "/ok")
            elapsed = time.monotonic() - t0

        assert elapsed >= 0.045
