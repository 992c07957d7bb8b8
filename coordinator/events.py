"""Outbound events for the control surface."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional

from loguru import logger

SELECTION_COMPLETE = "SELECTION_COMPLETE"
GENERATION_PROGRESS = "GENERATION_PROGRESS"
GENERATION_COMPLETE = "GENERATION_COMPLETE"
GENERATION_ERROR = "GENERATION_ERROR"
SECTION_SELECTED = "SECTION_SELECTED"


class EventBus:
    """
    Fan-out of serializable events to every current listener.

    Publishing never blocks: a listener whose queue is full loses the event
    (it can re-read the persisted state with ``GET_STATE``).
    """

    def __init__(self, max_queue: int = 100) -> None:
        self._max_queue = max_queue
        self._queues: List[asyncio.Queue] = []

    @property
    def listener_count(self) -> int:
        return len(self._queues)

    def publish(self, event_type: str, **payload: Any) -> Dict[str, Any]:
        event = {"type": event_type, **payload}
        for queue in list(self._queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Listener queue full, dropping {event_type}")
        logger.debug(f"Event {event_type} -> {len(self._queues)} listeners")
        return event

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue)
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    async def listen(self, timeout: Optional[float] = None) -> AsyncIterator[Optional[Dict[str, Any]]]:
        """Yield events as they arrive; yields None on ``timeout`` so callers can send keepalives."""
        queue = self.subscribe()
        try:
            while True:
                try:
                    yield await asyncio.wait_for(queue.get(), timeout=timeout)
                except asyncio.TimeoutError:
                    yield None
        finally:
            self.unsubscribe(queue)
