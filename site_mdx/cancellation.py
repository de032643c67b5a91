"""Cooperative cancellation shared by every suspension point of a crawl."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .errors import ConversionCancelled

logger = logging.getLogger("site_mdx")


class CancellationToken:
    """Flag that lets an operator abort a long-running crawl.

    The token is checked before each page starts and raced against every
    settle delay, so a cancelled crawl stops scheduling new work promptly.
    """

    def __init__(self) -> None:
        self._event: Optional[asyncio.Event] = None
        self._cancelled = False
        self.reason = ""

    def _get_event(self) -> asyncio.Event:
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        return self._event

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "Cancelled before completion") -> None:
        if self._cancelled:
            return
        logger.info("Cancellation requested: %s", reason)
        self._cancelled = True
        self.reason = reason
        if self._event is not None:
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise ConversionCancelled(self.reason)

    async def wait(self) -> None:
        await self._get_event().wait()

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` or until cancelled, whichever comes first."""
        if seconds <= 0 or self._cancelled:
            self.raise_if_cancelled()
            return
        try:
            await asyncio.wait_for(self._get_event().wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()


async def cancellable_sleep(seconds: float, token: Optional[CancellationToken] = None) -> None:
    if token is None:
        await asyncio.sleep(seconds)
    else:
        await token.sleep(seconds)
