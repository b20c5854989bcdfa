"""
Broadcast Gateway: the HUD-facing event surface of a turn.

Event payloads (camelCase, as the front-end consumes them):
    {"type": "state", "state": "thinking", "userContextId": ..., "ts": ...}
    {"type": "message", "role": "user", "content": ..., "source": ..., "conversationId": ...}
    {"type": "assistant_stream_start", "id": ..., "source": ..., ...}
    {"type": "assistant_stream_delta", "id": ..., "content": ..., ...}
    {"type": "assistant_stream_done", "id": ..., ...}

Everything is published on the global topic and, when a user context is
known, on that user's topic.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Any

from nova.kernel.event_bus import GLOBAL_TOPIC, EventBus, topic_for

logger = logging.getLogger(__name__)

STATES = ("idle", "thinking", "speaking", "listening")


def new_stream_id() -> str:
    return f"asst-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


class BroadcastGateway:
    def __init__(self, bus: EventBus | None = None):
        self.bus = bus or EventBus()
        self._states: dict[str, str] = {}

    def current_state(self, user_context_id: str = "") -> str:
        return self._states.get(user_context_id, "idle")

    def state(self, state: str, user_context_id: str = "") -> None:
        if state not in STATES:
            raise ValueError(f"Unknown broadcast state: {state}")
        self._states[user_context_id] = state
        self._publish({"type": "state", "state": state}, user_context_id)

    def message(
        self,
        role: str,
        content: str,
        source: str = "hud",
        conversation_id: str = "",
        user_context_id: str = "",
    ) -> None:
        self._publish(
            {"type": "message", "role": role, "content": content, "source": source},
            user_context_id,
            conversation_id,
        )

    def stream_start(
        self, stream_id: str, source: str = "hud", conversation_id: str = "", user_context_id: str = ""
    ) -> None:
        self._publish(
            {"type": "assistant_stream_start", "id": stream_id, "source": source},
            user_context_id,
            conversation_id,
        )

    def stream_delta(
        self,
        stream_id: str,
        content: str,
        source: str = "hud",
        conversation_id: str = "",
        user_context_id: str = "",
    ) -> None:
        self._publish(
            {"type": "assistant_stream_delta", "id": stream_id, "content": content, "source": source},
            user_context_id,
            conversation_id,
        )

    def stream_done(
        self, stream_id: str, source: str = "hud", conversation_id: str = "", user_context_id: str = ""
    ) -> None:
        self._publish(
            {"type": "assistant_stream_done", "id": stream_id, "source": source},
            user_context_id,
            conversation_id,
        )

    def _publish(self, payload: dict[str, Any], user_context_id: str, conversation_id: str = "") -> None:
        if conversation_id:
            payload["conversationId"] = conversation_id
        if user_context_id:
            payload["userContextId"] = user_context_id
        payload["ts"] = int(time.time() * 1000)

        self.bus.publish(GLOBAL_TOPIC, payload)
        if user_context_id:
            self.bus.publish(topic_for(user_context_id), payload)
