from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from fractal_graph.app.models.session import SessionEvent

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100


class SessionEventBus:
    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._queues: dict[str, set[asyncio.Queue[SessionEvent]]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def subscribe(self, session_id: str) -> asyncio.Queue[SessionEvent]:
        queue: asyncio.Queue[SessionEvent] = asyncio.Queue(maxsize=self._queue_size)
        async with self._lock:
            self._queues[session_id].add(queue)
        return queue

    async def unsubscribe(self, session_id: str, queue: asyncio.Queue[SessionEvent]) -> None:
        async with self._lock:
            queues = self._queues.get(session_id)
            if not queues:
                return
            queues.discard(queue)
            if not queues:
                self._queues.pop(session_id, None)

    async def subscriber_count(self, session_id: str) -> int:
        async with self._lock:
            return len(self._queues.get(session_id, ()))

    async def publish(self, event: SessionEvent) -> None:
        async with self._lock:
            queues = list(self._queues.get(event.session_id, set()))

        for queue in queues:
            # Slow subscribers lose their oldest events rather than blocking editors.
            if queue.full():
                try:
                    dropped = queue.get_nowait()
                    logger.debug("Dropped '%s' event for slow subscriber of session '%s'", dropped.type, event.session_id)
                except asyncio.QueueEmpty:
                    pass
            await queue.put(event)
