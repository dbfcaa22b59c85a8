"""Cooperative cancellation for sync campaigns."""

from __future__ import annotations

import asyncio

CANCELLED_BY_USER = "Operation cancelled by user"


class CancellationContext:
    """Flag shared by every step of one campaign.

    The engine checks it only between items and between entity types,
    never in the middle of a network call, so writes already applied
    stay applied.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = CANCELLED_BY_USER) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()
