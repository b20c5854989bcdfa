"""
OpenAI-compatible provider: streaming chat completions with tool calling.

Serves OpenAI proper and every provider that speaks the same API
(Grok, Gemini's OpenAI endpoint) via base_url. Tool calls are
accumulated across chunks and yielded once the stream finishes; usage
arrives on the final chunk when include_usage is requested.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncGenerator

import openai
from openai import AsyncOpenAI

from nova.core.config import config
from nova.providers.base import (
    LLMProvider,
    LLMStreamEvent,
    LLMToolCall,
    ProviderTransportError,
)

logger = logging.getLogger(__name__)


class OpenAICompatibleProvider(LLMProvider):
    kind = "openai-compatible"

    def __init__(self, runtime, client: AsyncOpenAI | None = None):
        super().__init__(runtime)
        self.client = client

    async def start(self) -> None:
        if self.client:
            return
        client_kwargs: dict = {
            "api_key": self.runtime.api_key,
            "timeout": config.llm.request_timeout,
        }
        if self.runtime.base_url:
            client_kwargs["base_url"] = self.runtime.base_url
        self.client = AsyncOpenAI(**client_kwargs)
        logger.info(
            f"{self.provider_id} provider ready (model={self.model}, base_url={self.runtime.base_url})"
        )

    async def stop(self) -> None:
        if self.client:
            await self.client.close()
        self.client = None

    async def generate_stream_with_tools(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
        model: str | None = None,
        max_tokens: int = 1200,
        temperature: float = 0.7,
    ) -> AsyncGenerator[LLMStreamEvent, None]:
        if not self.client:
            await self.start()
        assert self.client is not None

        kwargs: dict = {
            "model": model or self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        try:
            stream = await self.client.chat.completions.create(**kwargs)

            # OpenAI sends tool calls incrementally: index, name, then argument chunks
            pending_tool_calls: dict[int, dict] = {}

            async for chunk in stream:
                if getattr(chunk, "usage", None):
                    yield LLMStreamEvent(
                        type="usage",
                        prompt_tokens=chunk.usage.prompt_tokens or 0,
                        completion_tokens=chunk.usage.completion_tokens or 0,
                    )
                if not chunk.choices:
                    continue

                delta = chunk.choices[0].delta
                if delta.content:
                    yield LLMStreamEvent(type="token", content=delta.content)

                for tc in delta.tool_calls or []:
                    slot = pending_tool_calls.setdefault(
                        tc.index, {"id": "", "name": "", "arguments": ""}
                    )
                    if tc.id:
                        slot["id"] = tc.id
                    if tc.function and tc.function.name:
                        slot["name"] = tc.function.name
                    if tc.function and tc.function.arguments:
                        slot["arguments"] += tc.function.arguments

        except openai.APIStatusError as e:
            raise ProviderTransportError(
                f"{self.provider_id} API error {e.status_code}: {e.message}",
                status_code=e.status_code,
            ) from e
        except openai.APIError as e:
            raise ProviderTransportError(f"{self.provider_id} request failed: {e}") from e

        tool_calls = [
            LLMToolCall(
                id=data["id"] or f"call_{idx}",
                name=data["name"],
                arguments=_parse_arguments(data["arguments"]),
            )
            for idx, data in sorted(pending_tool_calls.items())
            if data["name"]
        ]
        if tool_calls:
            yield LLMStreamEvent(type="tool_calls", tool_calls=tool_calls)

        yield LLMStreamEvent(type="done")

    async def health_check(self) -> dict:
        return {
            "provider": self.provider_id,
            "kind": self.kind,
            "model": self.model,
            "status": "ready" if self.client else "not_started",
        }


def _parse_arguments(raw: str) -> dict:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse tool args: {raw[:100]}")
        return {}
    return parsed if isinstance(parsed, dict) else {}
