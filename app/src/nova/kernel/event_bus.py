"""
Event Bus: lightweight async pub/sub for HUD broadcast events.

The broadcast gateway publishes every state change, message and
assistant stream chunk here; front-ends (websocket bridges, tests)
subscribe to the topics they care about.

Topics follow a convention:
- hud                : every event
- hud.{userContextId}: events scoped to one user context

Each subscriber gets its own asyncio.Queue, and publish() never blocks
the publisher: a full queue drops the event with a warning.

Usage:
    bus = EventBus()

    queue = bus.subscribe("hud.alex")
    async for event in bus.listen(queue):
        print(event["type"])

    bus.unsubscribe("hud.alex", queue)
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, AsyncGenerator

logger = logging.getLogger(__name__)

GLOBAL_TOPIC = "hud"

# Sentinel to signal end of stream
_STREAM_END = object()


def topic_for(user_context_id: str) -> str:
    return f"{GLOBAL_TOPIC}.{user_context_id}" if user_context_id else GLOBAL_TOPIC


class EventBus:
    """Topic-based async pub/sub on a single event loop."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue]] = defaultdict(list)

    def publish(self, topic: str, event: Any) -> int:
        """Deliver to every subscriber of a topic. Returns the delivery count."""
        delivered = 0
        for queue in self._subscribers.get(topic, []):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(
                    "Event bus: subscriber queue full for topic %s, dropping event",
                    topic,
                )
        return delivered

    def subscribe(self, topic: str, maxsize: int = 1000) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers[topic].append(queue)
        logger.debug(
            "Subscribed to topic: %s (total: %d)", topic, len(self._subscribers[topic])
        )
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        """Remove a subscriber. Safe to call twice."""
        queues = self._subscribers.get(topic, [])
        if queue in queues:
            queues.remove(queue)
            if not queues:
                del self._subscribers[topic]
            logger.debug("Unsubscribed from topic: %s", topic)

    def close_topic(self, topic: str) -> None:
        """End every listener on a topic and drop its subscribers."""
        for queue in self._subscribers.pop(topic, []):
            try:
                queue.put_nowait(_STREAM_END)
            except asyncio.QueueFull:
                logger.warning("Event bus: could not signal end on full queue (%s)", topic)

    async def listen(self, queue: asyncio.Queue) -> AsyncGenerator[Any, None]:
        """Yield events from a subscriber queue until the topic is closed."""
        while True:
            item = await queue.get()
            if item is _STREAM_END:
                break
            yield item

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, []))

    def active_topics(self) -> list[str]:
        return [t for t, subs in self._subscribers.items() if subs]
