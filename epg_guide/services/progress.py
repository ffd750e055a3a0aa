"""
Progress reporting

Decouples the refresh pipeline from whoever watches it. The pipeline calls
emit() and never waits: synchronous listeners are invoked inline and every
async subscriber owns a bounded queue that drops its oldest event when a slow
consumer falls behind.
"""
from __future__ import annotations

import asyncio
import logging

from epg_guide.config import settings
from epg_guide.services.fetch_types import ProgressCallback, ProgressEvent


logger = logging.getLogger(__name__)


class ProgressChannel:
    """Fan-out of progress events to listeners and queue subscribers."""

    def __init__(self, maxsize: int | None = None) -> None:
        self._maxsize = maxsize or settings.epg_progress_queue_size
        self._listeners: list[ProgressCallback] = []
        self._queues: set[asyncio.Queue[ProgressEvent]] = set()
        self.last_event: ProgressEvent | None = None

    def add_listener(self, listener: ProgressCallback) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ProgressCallback) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def subscribe(self) -> ProgressSubscription:
        """Register a queue immediately so no event emitted afterwards is missed."""
        queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=self._maxsize)
        self._queues.add(queue)
        return ProgressSubscription(self, queue)

    def emit(self, event: ProgressEvent) -> None:
        self.last_event = event
        logger.debug("Progress [%s] %s: %s", event.stage.value, event.percent, event.message)

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                logger.warning("Progress listener %r failed: %s", listener, exc, exc_info=True)

        for queue in list(self._queues):
            _put_dropping_oldest(queue, event)

    __call__ = emit

    def _unsubscribe(self, queue: asyncio.Queue[ProgressEvent]) -> None:
        self._queues.discard(queue)


class ProgressSubscription:
    """Async iterator over one subscriber's queue; ends after a terminal event."""

    def __init__(self, channel: ProgressChannel, queue: asyncio.Queue[ProgressEvent]) -> None:
        self._channel = channel
        self._queue = queue
        self._finished = False

    def __aiter__(self) -> ProgressSubscription:
        return self

    async def __anext__(self) -> ProgressEvent:
        if self._finished:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event.is_terminal:
            self.close()
        return event

    def close(self) -> None:
        self._finished = True
        self._channel._unsubscribe(self._queue)


def _put_dropping_oldest(queue: asyncio.Queue[ProgressEvent], event: ProgressEvent) -> None:
    # Terminal events must survive, so make room instead of discarding the new one
    while True:
        try:
            queue.put_nowait(event)
            return
        except asyncio.QueueFull:
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                continue


def emit_progress(progress: ProgressCallback | None, event: ProgressEvent) -> None:
    """Send an event if anyone is listening."""
    if progress is not None:
        progress(event)
