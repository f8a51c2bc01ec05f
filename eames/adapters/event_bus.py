"""Async event bus between the orchestrator and its consumers.

The orchestrator emits lifecycle events; a renderer (the CLI, a test)
consumes them from the queue in order.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from eames.adapters.events import OrchestratorEvent

logger = logging.getLogger(__name__)

EMIT_TIMEOUT_SECONDS = 30.0


class EventBus:
    """Bounded asyncio queue of OrchestratorEvents."""

    def __init__(self, maxsize: int = 5000) -> None:
        self._queue: asyncio.Queue[OrchestratorEvent] = asyncio.Queue(
            maxsize=maxsize
        )
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    async def emit(self, event: OrchestratorEvent) -> None:
        """Queue *event*, waiting for room rather than dropping it."""
        if self._closed:
            return
        try:
            await asyncio.wait_for(
                self._queue.put(event), timeout=EMIT_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.error(
                "EventBus queue blocked for %.0fs, dropping: %s (queue size: %d)",
                EMIT_TIMEOUT_SECONDS,
                event.event_type,
                self._queue.qsize(),
            )

    async def consume(self) -> AsyncIterator[OrchestratorEvent]:
        """Yield events as they arrive until close() and the queue is empty."""
        while True:
            if self._closed and self._queue.empty():
                return
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            yield event

    def drain(self) -> list[OrchestratorEvent]:
        """Remove and return everything currently queued."""
        events: list[OrchestratorEvent] = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def close(self) -> None:
        """Stop consumers once the queue is empty."""
        self._closed = True

    def reset(self) -> None:
        """Discard leftover events and reopen the bus for a new turn."""
        dropped = len(self.drain())
        if dropped:
            logger.debug("EventBus reset dropped %d event(s)", dropped)
        self._closed = False
