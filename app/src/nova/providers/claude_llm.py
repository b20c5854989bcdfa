"""
Message-block provider: Anthropic Messages API over httpx SSE.

The system prompt travels separately from the messages, assistant tool
calls are ``tool_use`` content blocks and tool results go back as
``tool_result`` blocks inside a user message. Incoming OpenAI-shaped
messages and tool schemas are translated here so the loop above stays
convention-agnostic.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncGenerator

import httpx

from nova.core.config import config
from nova.providers.base import (
    LLMProvider,
    LLMStreamEvent,
    LLMToolCall,
    ProviderTransportError,
)

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class ClaudeProvider(LLMProvider):
    kind = "message-block"

    def __init__(self, runtime, client: httpx.AsyncClient | None = None):
        super().__init__(runtime)
        self.client = client

    async def start(self) -> None:
        if self.client:
            return
        self.client = httpx.AsyncClient(
            base_url=self.runtime.base_url.rstrip("/") or "https://api.anthropic.com",
            timeout=config.llm.request_timeout,
        )
        logger.info(f"Claude provider ready (model={self.model})")

    async def stop(self) -> None:
        if self.client:
            await self.client.aclose()
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

        system, blocks = to_message_blocks(messages)
        body: dict[str, Any] = {
            "model": model or self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": blocks,
            "stream": True,
        }
        if system:
            body["system"] = system
        if tools:
            body["tools"] = to_anthropic_tools(tools)

        headers = {
            "x-api-key": self.runtime.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

        # index -> {"id", "name", "json"} for tool_use blocks in flight
        tool_blocks: dict[int, dict] = {}
        prompt_tokens = 0
        completion_tokens = 0

        try:
            async with self.client.stream(
                "POST", "/v1/messages", json=body, headers=headers
            ) as resp:
                if resp.status_code >= 400:
                    detail = (await resp.aread()).decode("utf-8", "replace")[:300]
                    raise ProviderTransportError(
                        f"claude API error {resp.status_code}: {detail}",
                        status_code=resp.status_code,
                    )

                async for line in resp.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    payload = line[5:].strip()
                    if not payload:
                        continue
                    try:
                        event = json.loads(payload)
                    except json.JSONDecodeError:
                        continue

                    etype = event.get("type")
                    if etype == "message_start":
                        usage = event.get("message", {}).get("usage", {})
                        prompt_tokens = usage.get("input_tokens", 0) or 0
                    elif etype == "content_block_start":
                        block = event.get("content_block", {})
                        if block.get("type") == "tool_use":
                            tool_blocks[event.get("index", 0)] = {
                                "id": block.get("id", ""),
                                "name": block.get("name", ""),
                                "json": "",
                            }
                    elif etype == "content_block_delta":
                        delta = event.get("delta", {})
                        if delta.get("type") == "text_delta" and delta.get("text"):
                            yield LLMStreamEvent(type="token", content=delta["text"])
                        elif delta.get("type") == "input_json_delta":
                            slot = tool_blocks.get(event.get("index", 0))
                            if slot is not None:
                                slot["json"] += delta.get("partial_json", "")
                    elif etype == "message_delta":
                        usage = event.get("usage", {})
                        completion_tokens = usage.get("output_tokens", completion_tokens) or 0
                    elif etype == "error":
                        err = event.get("error", {})
                        raise ProviderTransportError(
                            f"claude stream error: {err.get('message', 'unknown')}"
                        )
        except httpx.HTTPError as e:
            raise ProviderTransportError(f"claude request failed: {e}") from e

        if prompt_tokens or completion_tokens:
            yield LLMStreamEvent(
                type="usage",
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
            )

        tool_calls = []
        for _, slot in sorted(tool_blocks.items()):
            try:
                args = json.loads(slot["json"]) if slot["json"] else {}
            except json.JSONDecodeError:
                logger.warning(f"Failed to parse tool input: {slot['json'][:100]}")
                args = {}
            tool_calls.append(LLMToolCall(id=slot["id"], name=slot["name"], arguments=args))
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


# ─── Format translation ──────────────────────────────────────────


def to_anthropic_tools(tools: list[dict]) -> list[dict]:
    """OpenAI function schemas -> Anthropic tool definitions."""
    converted = []
    for tool in tools:
        fn = tool.get("function", tool)
        converted.append(
            {
                "name": fn["name"],
                "description": fn.get("description", ""),
                "input_schema": fn.get("parameters") or {"type": "object", "properties": {}},
            }
        )
    return converted


def to_message_blocks(messages: list[dict]) -> tuple[str, list[dict]]:
    """Split out the system prompt and convert the rest to content blocks.

    Consecutive tool results are merged into one user message, as the
    Messages API requires strict user/assistant alternation.
    """
    system_parts: list[str] = []
    blocks: list[dict] = []

    for msg in messages:
        role = msg.get("role")
        content = msg.get("content")

        if role == "system":
            if content:
                system_parts.append(str(content))
            continue

        if role == "tool":
            result_block = {
                "type": "tool_result",
                "tool_use_id": msg.get("tool_call_id", ""),
                "content": str(content or ""),
            }
            if msg.get("is_error"):
                result_block["is_error"] = True
            if blocks and blocks[-1]["role"] == "user" and isinstance(
                blocks[-1]["content"], list
            ):
                blocks[-1]["content"].append(result_block)
            else:
                blocks.append({"role": "user", "content": [result_block]})
            continue

        if role == "assistant" and msg.get("tool_calls"):
            parts: list[dict] = []
            if content:
                parts.append({"type": "text", "text": str(content)})
            for tc in msg["tool_calls"]:
                fn = tc.get("function", {})
                raw_args = fn.get("arguments") or "{}"
                try:
                    args = json.loads(raw_args) if isinstance(raw_args, str) else raw_args
                except json.JSONDecodeError:
                    args = {}
                parts.append(
                    {
                        "type": "tool_use",
                        "id": tc.get("id", ""),
                        "name": fn.get("name", ""),
                        "input": args,
                    }
                )
            blocks.append({"role": "assistant", "content": parts})
            continue

        blocks.append({"role": role or "user", "content": str(content or "")})

    return "\n\n".join(system_parts), blocks
