"""
events.py — In-process live event bus.

Each live listener (a WebSocket connection) subscribes for one user and
gets a bounded asyncio.Queue. Publishing is fire-and-forget:

    • no subscriber      → nothing happens, returns 0
    • full queue         → event dropped for that listener, WARNING logged
    • never blocks, never raises

Usage:
    async with bus.subscribe(user_id) as queue:
        event = await queue.get()

    bus.publish(user_id, "alert_activated", {"alertId": ...})
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Set

from backend.app.emergency.models import iso, utcnow

logger = logging.getLogger(__name__)


class AlertEventBus:

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: Dict[int, Set[asyncio.Queue]] = defaultdict(set)

    @asynccontextmanager
    async def subscribe(self, user_id: int) -> AsyncIterator[asyncio.Queue]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers[user_id].add(queue)
        logger.debug("Live subscriber added for user %s", user_id, extra={"user_id": user_id})
        try:
            yield queue
        finally:
            listeners = self._subscribers.get(user_id)
            if listeners is not None:
                listeners.discard(queue)
                if not listeners:
                    del self._subscribers[user_id]

    def subscriber_count(self, user_id: int) -> int:
        return len(self._subscribers.get(user_id, ()))

    def publish(self, user_id: int, event: str, data: Dict[str, Any]) -> int:
        """Deliver to every listener of `user_id`. Returns how many got it."""
        message = {"event": event, "data": data, "timestamp": iso(utcnow())}
        delivered = 0
        for queue in list(self._subscribers.get(user_id, ())):
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(
                    "Live event %s dropped for user %s: listener queue full",
                    event, user_id,
                    extra={"user_id": user_id},
                )
        return delivered
