"""Cooperative cancellation shared by the orchestrator and executor.

A single token is created per turn. Every suspension point (reasoning
calls, permission and clarification waits, retry backoff) races the token
and raises TurnCancelled once it fires.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from .errors import TurnCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """One-shot cancellation signal backed by an asyncio.Event."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "") -> None:
        if self._event.is_set():
            return
        self._reason = reason or "cancelled by user"
        logger.info("Cancellation requested: %s", self._reason)
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelled(self._reason)

    async def wait(self) -> None:
        await self._event.wait()

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* unless cancellation fires first.

        On cancellation the awaitable is cancelled and TurnCancelled is
        raised. Exceptions from the awaitable propagate unchanged.
        """
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait(
                {work, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
        if work.done():
            return work.result()
        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        raise TurnCancelled(self._reason)

    async def sleep(self, delay: float) -> None:
        """Sleep for *delay* seconds, waking early on cancellation."""
        if delay <= 0:
            self.raise_if_cancelled()
            return
        await self.race(asyncio.sleep(delay))
