"""
Tool-Calling Loop: drives one provider conversation to a final reply.

    Requesting ──(text only)──────────────▶ Done
        │
        └──(tool calls)──▶ Executing ──▶ Requesting   (bounded by max_steps)

Rules:
- Tool calls run sequentially, in the order the provider asked. A tool
  that raises becomes an error-marked tool message; later tools still run.
- A transport failure on the first request, before any text reached the
  user, is retried once against the fallback model. Failures after
  visible output are never retried (the user would see text twice).
- Running out of steps fails the turn. No extra "recovery" completion.
- A final reply that claims there's no live web access gets one real
  web search appended as a correction when the tool exists.

Usage:
    loop = ToolLoopExecutor(tool_registry, max_steps=6, fallback_model="gpt-4.1-mini")
    outcome = await loop.run(messages, tool_defs, provider, on_delta=streamer.delta)
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from nova.core.metrics import metrics
from nova.providers.base import LLMProvider, LLMToolCall, ProviderTransportError
from nova.tools.web_search import NO_RESULTS, build_search_recap
from nova.turn.contracts import LoopOutcome, LoopStatus, RetryRecord, ToolCall, ToolResult
from nova.turn.router import reply_claims_no_live_access

if TYPE_CHECKING:
    from nova.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 6
CORRECTION_PREFACE = "Quick correction: I do have live web search in this runtime."
EXHAUSTED_ERROR = "tool_loop_exhausted"
MAX_RAW_RESULTS_CHARS = 2200

OnDelta = Callable[[str], None]


@dataclass
class _StepState:
    """What one provider request produced, even if it later failed."""

    parts: list[str] = field(default_factory=list)
    tool_calls: list[LLMToolCall] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.parts)


class ToolLoopExecutor:
    def __init__(
        self,
        tool_registry: "ToolRegistry | None" = None,
        max_steps: int = DEFAULT_MAX_STEPS,
        fallback_model: str = "",
        max_tokens: int = 1200,
        temperature: float = 0.7,
    ):
        self.tool_registry = tool_registry
        self.max_steps = max(1, max_steps)
        self.fallback_model = fallback_model
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def run(
        self,
        messages: list[dict[str, Any]],
        tool_defs: list[dict] | None,
        provider: LLMProvider,
        on_delta: OnDelta | None = None,
    ) -> LoopOutcome:
        outcome = LoopOutcome(status=LoopStatus.DONE, model=provider.model)
        conversation = list(messages)
        call_started = time.monotonic()
        streamed_text: list[str] = []

        def emit(text: str) -> None:
            if not text:
                return
            if not outcome.streamed:
                metrics.observe("llm.ttft_ms", (time.monotonic() - call_started) * 1000)
            outcome.streamed = True
            streamed_text.append(text)
            if on_delta is not None:
                on_delta(text)

        for step in range(1, self.max_steps + 1):
            state = _StepState()
            try:
                await self._request(provider, conversation, tool_defs, outcome, state, emit)
            except ProviderTransportError as e:
                if step == 1 and not outcome.streamed and self._can_retry(outcome.model):
                    state = _StepState()
                    retried = await self._retry_first_request(
                        provider, conversation, tool_defs, outcome, state, emit, e
                    )
                    if not retried:
                        return outcome
                else:
                    logger.error(f"Provider request failed at step {step}: {e}", exc_info=True)
                    outcome.status = LoopStatus.PARTIAL if outcome.streamed else LoopStatus.FAILED
                    outcome.error = str(e)
                    outcome.reply = "".join(streamed_text)
                    return outcome

            if not state.tool_calls:
                outcome.status = LoopStatus.DONE
                outcome.reply = state.text
                await self._correct_no_live_access(conversation, outcome, emit)
                logger.info(
                    f"Tool loop done in {step} step(s), tools={outcome.tool_calls or '-'}"
                )
                return outcome

            await self._execute_tools(conversation, state, outcome)

        logger.warning(f"Tool loop exhausted after {self.max_steps} steps")
        outcome.status = LoopStatus.EXHAUSTED
        outcome.error = EXHAUSTED_ERROR
        outcome.reply = ""
        return outcome

    # ─── Provider requests ────────────────────────────────────────

    async def _request(
        self,
        provider: LLMProvider,
        conversation: list[dict[str, Any]],
        tool_defs: list[dict] | None,
        outcome: LoopOutcome,
        state: _StepState,
        emit: OnDelta,
    ) -> None:
        async for event in provider.generate_stream_with_tools(
            conversation,
            tools=tool_defs or None,
            model=outcome.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        ):
            if event.type == "token":
                state.parts.append(event.content)
                emit(event.content)
            elif event.type == "tool_calls":
                state.tool_calls = list(event.tool_calls)
            elif event.type == "usage":
                outcome.usage.add(event.prompt_tokens, event.completion_tokens)

    def _can_retry(self, current_model: str) -> bool:
        return bool(self.fallback_model) and self.fallback_model != current_model

    async def _retry_first_request(
        self,
        provider: LLMProvider,
        conversation: list[dict[str, Any]],
        tool_defs: list[dict] | None,
        outcome: LoopOutcome,
        state: _StepState,
        emit: OnDelta,
        error: ProviderTransportError,
    ) -> bool:
        """One retry against the fallback model. False when it failed too."""
        record = RetryRecord(
            stage="first_request",
            from_model=outcome.model,
            to_model=self.fallback_model,
            reason=str(error)[:200],
        )
        outcome.retries.append(record)
        outcome.model = self.fallback_model
        metrics.inc("loop.retries")
        logger.warning(
            f"First request failed on {record.from_model}, retrying with {record.to_model}: {error}"
        )
        try:
            await self._request(provider, conversation, tool_defs, outcome, state, emit)
        except ProviderTransportError as e:
            logger.error(f"Retry with {self.fallback_model} failed: {e}", exc_info=True)
            outcome.status = LoopStatus.PARTIAL if outcome.streamed else LoopStatus.FAILED
            outcome.error = str(e)
            outcome.reply = state.text
            return False
        return True

    # ─── Tools ────────────────────────────────────────────────────

    async def _execute_tools(
        self, conversation: list[dict[str, Any]], state: _StepState, outcome: LoopOutcome
    ) -> None:
        conversation.append(
            {
                "role": "assistant",
                "content": state.text or None,
                "tool_calls": [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                    }
                    for tc in state.tool_calls
                ],
            }
        )

        for tc in state.tool_calls:
            outcome.tool_calls.append(tc.name)
            result = await self._execute_one(ToolCall(id=tc.id, name=tc.name, input=tc.arguments))
            conversation.append(
                {"role": "tool", "tool_call_id": tc.id, "content": result.content}
            )

    async def _execute_one(self, call: ToolCall) -> ToolResult:
        if self.tool_registry is None:
            metrics.inc("tools.failed", labels={"tool": call.name})
            return ToolResult.failed(
                "Tool execution failed: no tool runtime configured", call_id=call.id
            )
        try:
            result = await self.tool_registry.execute_tool_use(call)
        except Exception as e:
            logger.error(f"Tool {call.name} failed: {e}", exc_info=True)
            metrics.inc("tools.failed", labels={"tool": call.name})
            return ToolResult.failed(f"Tool execution failed: {e}", call_id=call.id)
        if result.errored:
            metrics.inc("tools.failed", labels={"tool": call.name})
        return result

    # ─── Self-healing reply ───────────────────────────────────────

    async def _correct_no_live_access(
        self, conversation: list[dict[str, Any]], outcome: LoopOutcome, emit: OnDelta
    ) -> None:
        if not reply_claims_no_live_access(outcome.reply):
            return
        if self.tool_registry is None or not self.tool_registry.has("web_search"):
            return

        query = _last_user_text(conversation)
        if not query:
            return
        result = await self._execute_one(
            ToolCall(id="tool_correction_web_search", name="web_search", input={"query": query})
        )
        if result.errored:
            return
        recap = build_search_recap(query, result.content)
        raw = result.content.strip()
        if not recap and (not raw or raw == NO_RESULTS):
            return

        outcome.tool_calls.append("web_search")
        if recap:
            corrected = f"{CORRECTION_PREFACE}\n\n{recap}"
        else:
            corrected = f"{CORRECTION_PREFACE} Current web results:\n\n{raw[:MAX_RAW_RESULTS_CHARS]}"
        logger.info("Corrected a no-live-access reply with a live search")
        if outcome.streamed:
            emit(f"\n\n{corrected}")
        outcome.reply = f"{outcome.reply}\n\n{corrected}" if outcome.reply else corrected


def _last_user_text(conversation: list[dict[str, Any]]) -> str:
    for message in reversed(conversation):
        if message.get("role") == "user" and isinstance(message.get("content"), str):
            return message["content"].strip()
    return ""
