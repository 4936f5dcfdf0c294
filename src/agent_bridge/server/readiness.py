"""Polling the agent server until it answers its status endpoint."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import httpx

from agent_bridge.log import get_logger
from agent_bridge.server.ports import LOOPBACK_HOST


if TYPE_CHECKING:
    import structlog


logger = get_logger(__name__)

STATUS_PATH = "/status"


async def wait_until_ready(
    port: int,
    *,
    max_attempts: int = 60,
    interval: float = 0.1,
    host: str = LOOPBACK_HOST,
    transport: httpx.AsyncBaseTransport | None = None,
    log: structlog.stdlib.BoundLogger | None = None,
) -> bool:
    """Poll `GET /status` until it succeeds.

    Only the final failure is logged. Never raises.

    Args:
        port: Server port
        max_attempts: Number of probes before giving up
        interval: Seconds between probes
        host: Server host
        transport: Optional transport, used by tests
        log: Logger to report to

    Returns:
        True once the server answered with a 2xx status, False on timeout
    """
    log = log or logger
    url = f"http://{host}:{port}{STATUS_PATH}"
    last_error: str | None = None
    async with httpx.AsyncClient(transport=transport, timeout=max(interval * 10, 1.0)) as client:
        for attempt in range(1, max_attempts + 1):
            try:
                response = await client.get(url)
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                if response.is_success:
                    log.info("Agent server is ready", port=port, attempts=attempt)
                    return True
                last_error = f"status {response.status_code}"
            if attempt < max_attempts:
                await asyncio.sleep(interval)

    log.error("Agent server failed to become ready", port=port, attempts=max_attempts, error=last_error)
    return False
