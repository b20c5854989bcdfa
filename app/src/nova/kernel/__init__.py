"""
Kernel Package: HUD broadcast layer.

The runtime only ever writes here; front-ends subscribe to the bus.

Architecture:
  Runtime / Streamer / Voice → BroadcastGateway → EventBus → subscribers
"""

from nova.kernel.event_bus import GLOBAL_TOPIC, EventBus, topic_for
from nova.kernel.gateway import STATES, BroadcastGateway, new_stream_id

__all__ = [
    "EventBus",
    "GLOBAL_TOPIC",
    "topic_for",
    "BroadcastGateway",
    "STATES",
    "new_stream_id",
]
