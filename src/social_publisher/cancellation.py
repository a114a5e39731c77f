"""Caller-driven cancellation for publish operations."""

import asyncio


class CancelToken:
    """Signals in-flight publish work to stop.

    The orchestrator watches the token and cancels its per-platform tasks when
    it fires. Upload pipelines also check it between chunks.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()
