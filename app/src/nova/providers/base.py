"""
Provider base classes: the boundary between the turn core and a
generation backend.

Two calling conventions live behind this interface:
- "openai-compatible": streaming chat completions, tools passed per request
- "message-block": system prompt separated from messages, content blocks

Callers hand over OpenAI-shaped messages and tool schemas; each adapter
translates to its own wire format. Callers branch on ``provider.kind``
only where the conventions genuinely differ.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncGenerator

from nova.turn.contracts import NovaError


class ProviderUnavailableError(NovaError):
    """No configured provider can serve the turn. Raised before any call."""


class ProviderTransportError(NovaError):
    """The provider call failed at the transport/API level."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class ProviderRuntime:
    """A selected provider variant, ready to be instantiated."""

    provider_id: str
    kind: str
    api_key: str
    base_url: str
    model: str
    connected: bool = True
    tool_calling_capable: bool = True


@dataclass
class LLMToolCall:
    """A tool call requested by the provider."""

    id: str
    name: str
    arguments: dict


@dataclass
class LLMStreamEvent:
    """
    An event from the provider stream.

    type:
      - "token": a text delta (content is the delta)
      - "tool_calls": the provider wants tools run (tool_calls is populated)
      - "usage": token accounting for this request
      - "done": stream is finished
    """

    type: str
    content: str = ""
    tool_calls: list[LLMToolCall] = field(default_factory=list)
    prompt_tokens: int = 0
    completion_tokens: int = 0


class LLMProvider(ABC):
    """Generation provider interface."""

    kind: str = "openai-compatible"

    def __init__(self, runtime: ProviderRuntime):
        self.runtime = runtime

    @property
    def provider_id(self) -> str:
        return self.runtime.provider_id

    @property
    def model(self) -> str:
        return self.runtime.model

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    def generate_stream_with_tools(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
        model: str | None = None,
        max_tokens: int = 1200,
        temperature: float = 0.7,
    ) -> AsyncGenerator[LLMStreamEvent, None]:
        """Stream one request. Raises ProviderTransportError on failure."""
        ...

    async def complete(
        self,
        system: str,
        user_text: str,
        max_tokens: int = 200,
        model: str | None = None,
    ) -> str:
        """One-shot, tool-free completion. Collects the streamed text."""
        parts: list[str] = []
        async for event in self.generate_stream_with_tools(
            [{"role": "system", "content": system}, {"role": "user", "content": user_text}],
            tools=None,
            model=model,
            max_tokens=max_tokens,
            temperature=0.0,
        ):
            if event.type == "token":
                parts.append(event.content)
        return "".join(parts)

    async def health_check(self) -> dict:
        return {
            "provider": self.provider_id,
            "kind": self.kind,
            "model": self.model,
            "status": "unknown",
        }
