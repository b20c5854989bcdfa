"""
Response Streamer: one assistant stream per turn on the broadcast gateway.

    streamer = ResponseStreamer(gateway, source="hud", conversation_id=cid)
    try:
        streamer.delta("Hel")
        streamer.delta("lo")
        streamer.finish(full_reply)   # emits the whole reply if nothing streamed
    except Exception as e:
        streamer.error(str(e))
    finally:
        streamer.done()                # idempotent, fires once

Also home of normalize_reply(), applied to every reply before it is
shown, spoken or recorded.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from nova.kernel.gateway import BroadcastGateway, new_stream_id

logger = logging.getLogger(__name__)

SKIP_SENTINELS = frozenset({"NO_REPLY", "[SKIP]", "HEARTBEAT_OK"})


@dataclass(frozen=True)
class NormalizedReply:
    text: str
    skip: bool = False


def normalize_reply(text: str | None) -> NormalizedReply:
    """Trim, collapse blank-line runs, and flag empty or sentinel replies."""
    cleaned = str(text or "").replace("\r\n", "\n").strip()
    cleaned = re.sub(r"[ \t]+\n", "\n", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    if not cleaned or cleaned.upper() in SKIP_SENTINELS:
        return NormalizedReply(text="", skip=True)
    return NormalizedReply(text=cleaned)


class ResponseStreamer:
    def __init__(
        self,
        gateway: BroadcastGateway,
        source: str = "hud",
        conversation_id: str = "",
        user_context_id: str = "",
        stream_id: str | None = None,
    ):
        self.gateway = gateway
        self.source = source
        self.conversation_id = conversation_id
        self.user_context_id = user_context_id
        self.stream_id = stream_id or new_stream_id()
        self._started = False
        self._closed = False
        self._parts: list[str] = []

    @property
    def emitted(self) -> bool:
        return bool(self._parts)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def start(self) -> None:
        if self._started or self._closed:
            return
        self._started = True
        self.gateway.stream_start(
            self.stream_id, self.source, self.conversation_id, self.user_context_id
        )

    def delta(self, text: str) -> None:
        if self._closed or not text:
            return
        self.start()
        self._parts.append(text)
        self.gateway.stream_delta(
            self.stream_id, text, self.source, self.conversation_id, self.user_context_id
        )

    def finish(self, final_text: str) -> NormalizedReply:
        """Normalize the final reply; emit it whole when nothing streamed."""
        normalized = normalize_reply(final_text)
        if not normalized.skip and not self.emitted:
            self.delta(normalized.text)
        return normalized

    def error(self, message: str) -> str:
        """Emit the error as the terminal delta and return its text."""
        prefix = "\n\n" if self.emitted else ""
        text = f"{prefix}Sorry, I ran into an error: {message}"
        self.delta(text)
        return text.strip()

    def done(self) -> None:
        if self._closed:
            return
        # Subscribers always see a start/done pair, even for a skipped reply.
        self.start()
        self._closed = True
        self.gateway.stream_done(
            self.stream_id, self.source, self.conversation_id, self.user_context_id
        )
