"""Cooperative cancellation for streamed chat responses."""

from __future__ import annotations

import asyncio


class CancellationToken:
    """One-shot cancellation signal shared between a caller and a stream.

    The stream reader waits on the token alongside each chunk read and closes
    the HTTP response as soon as it is cancelled.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        """Request cancellation.

        Returns:
            True if this call cancelled the token, False if it already was
        """
        if self._event.is_set():
            return False
        self._event.set()
        return True

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"
