"""Tests for the server readiness probe."""

from __future__ import annotations

import httpx
import pytest

from agent_bridge.server.readiness import wait_until_ready


@pytest.mark.asyncio
async def test_ready_after_failed_probes():
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        assert request.url.path == "/status"
        if attempts < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, text="ok")

    transport = httpx.MockTransport(handler)
    assert await wait_until_ready(4321, max_attempts=5, interval=0.01, transport=transport)
    assert attempts == 3


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        return httpx.Response(503)

    transport = httpx.MockTransport(handler)
    ready = await wait_until_ready(4321, max_attempts=4, interval=0.01, transport=transport)
    assert ready is False
    assert attempts == 4
