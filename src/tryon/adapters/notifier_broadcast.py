"""In-process fan-out of JobEvents to subscribers (server-sent events)."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Set

from tryon.core.interfaces.notifier import NotifierPort
from tryon.core.models.events import JobEvent
from tryon.core.settings import logger


class BroadcastNotifier(NotifierPort):
    """Each subscriber gets a bounded queue; a full queue drops the event for that subscriber only."""

    def __init__(self, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._subscribers: Set[asyncio.Queue] = set()
        self.published = 0
        self.dropped = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: JobEvent) -> None:
        self.published += 1
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self.dropped += 1
                logger.warning("[notify] subscriber queue full, dropping event job_id=%s status=%s", event.job_id, event.status)

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[asyncio.Queue]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        try:
            yield queue
        finally:
            self._subscribers.discard(queue)


class LoggingNotifier(NotifierPort):
    """Writes events to the log; used when nobody listens."""

    def __init__(self, inner: Optional[NotifierPort] = None) -> None:
        self.inner = inner

    async def publish(self, event: JobEvent) -> None:
        logger.info(
            "[notify] job_id=%s %s -> %s result=%s fallback=%s",
            event.job_id,
            event.previous_status,
            event.status,
            event.result_url,
            event.fallback,
        )
        if self.inner is not None:
            await self.inner.publish(event)
