"""
Special-intent handlers: lanes that bypass the chat pipeline.

Every handler takes the turn plus a HandlerContext and returns the
RunSummary for it. The runtime owns the surrounding protocol (user
message broadcast, stream close, recording, idle state); a handler only
decides the reply, and may stream or speak it early when timing matters
(the shutdown farewell has to go out before the process ends).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable

from nova.turn.contracts import InputOptions, Lane, RunSummary, Turn

if TYPE_CHECKING:
    from nova.kernel.gateway import BroadcastGateway
    from nova.llm.streamer import ResponseStreamer
    from nova.providers.base import LLMProvider
    from nova.providers.resolver import ProviderResolution
    from nova.voice.output import VoiceOutput

ProviderFactory = Callable[[], "Awaitable[tuple[LLMProvider, ProviderResolution]]"]


@dataclass
class HandlerContext:
    options: InputOptions
    gateway: "BroadcastGateway"
    streamer: "ResponseStreamer"
    voice: "VoiceOutput | None" = None
    # Resolves a tool-free provider on demand; raises ProviderUnavailableError
    provider: ProviderFactory | None = None


class SpecialHandler(ABC):
    lane: Lane

    @abstractmethod
    async def handle(self, turn: Turn, ctx: HandlerContext) -> RunSummary:
        ...
