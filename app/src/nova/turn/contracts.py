"""
Turn Contracts: fixed structures that flow through one turn.

- Turn: the immutable inbound unit
- Lane: handling path chosen by the router
- ToolCall / ToolResult: ephemeral, scoped to one loop step
- Usage: token accounting accumulated across provider calls
- LoopOutcome: explicit result variant of the tool-calling loop
- RunSummary: terminal record returned to the caller

Stage outcomes are values, not exceptions, so the loop and budget logic
can be tested without raising.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class NovaError(Exception):
    """Base for errors raised by the turn runtime."""


class Lane(str, Enum):
    """Handling path for a turn."""

    SHUTDOWN = "shutdown"
    MEDIA_CONTROL = "media_control"
    WORKFLOW_BUILD = "workflow_build"
    MEMORY_UPDATE = "memory_update"
    CHAT = "chat"


# ═══════════════════════════════════════════════════════════════════════════════
# INBOUND
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class InputOptions:
    """Caller-supplied routing and presentation options for handle_input()."""

    source: str = "hud"
    sender: str = ""
    session_key: str = ""
    user_context_id: str = ""
    conversation_id: str = ""
    inbound_message_id: str = ""
    hints: dict[str, Any] = field(default_factory=dict)
    use_voice: bool = False
    voice_id: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> InputOptions:
        """Build from a loose dict (HTTP body, CLI), ignoring unknown keys."""
        data = data or {}
        return cls(
            source=str(data.get("source") or "hud"),
            sender=str(data.get("sender") or ""),
            session_key=str(data.get("session_key") or data.get("sessionKey") or ""),
            user_context_id=str(
                data.get("user_context_id") or data.get("userContextId") or ""
            ),
            conversation_id=str(
                data.get("conversation_id") or data.get("conversationId") or ""
            ),
            inbound_message_id=str(
                data.get("inbound_message_id") or data.get("inboundMessageId") or ""
            ),
            hints=dict(data.get("hints") or {}),
            use_voice=bool(data.get("use_voice") or data.get("voice") or False),
            voice_id=str(data.get("voice_id") or ""),
        )


@dataclass(frozen=True)
class Turn:
    """One inbound user utterance plus its routing/session metadata."""

    text: str
    source: str = "hud"
    sender: str = ""
    session_key: str = ""
    user_context_id: str = ""
    conversation_id: str = ""
    hints: dict[str, Any] = field(default_factory=dict)
    inbound_message_id: str = ""
    turn_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_input(cls, text: str, options: InputOptions) -> Turn:
        session_key = options.session_key or (
            f"{options.source}:{options.user_context_id or options.sender or 'anonymous'}"
        )
        return cls(
            text=str(text or ""),
            source=options.source,
            sender=options.sender,
            session_key=session_key,
            user_context_id=options.user_context_id,
            conversation_id=options.conversation_id or session_key,
            hints=dict(options.hints),
            inbound_message_id=options.inbound_message_id,
        )

    @property
    def scope(self) -> str:
        """Dedupe scope: source|userContextId|sessionKey|sender."""
        return "|".join(
            [self.source, self.user_context_id, self.session_key, self.sender]
        )


# ═══════════════════════════════════════════════════════════════════════════════
# TOOLS
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ToolCall:
    """A provider-requested tool invocation."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    """Output of one tool invocation, fed back as a tool message."""

    content: str
    errored: bool = False
    call_id: str = ""

    @classmethod
    def success(cls, content: str, call_id: str = "") -> ToolResult:
        return cls(content=content, call_id=call_id)

    @classmethod
    def failed(cls, error_msg: str, call_id: str = "") -> ToolResult:
        return cls(content=error_msg, errored=True, call_id=call_id)


# ═══════════════════════════════════════════════════════════════════════════════
# LOOP OUTCOME
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class Usage:
    """Token usage accumulated across provider calls."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def add(self, prompt_tokens: int = 0, completion_tokens: int = 0) -> None:
        self.prompt_tokens += max(0, int(prompt_tokens or 0))
        self.completion_tokens += max(0, int(completion_tokens or 0))


@dataclass(frozen=True)
class RetryRecord:
    """One automatic re-request against a different model."""

    stage: str
    from_model: str
    to_model: str
    reason: str


class LoopStatus(str, Enum):
    DONE = "done"  # tool-call-free reply received
    PARTIAL = "partial"  # transport failure after visible output
    EXHAUSTED = "exhausted"  # step bound hit without a final reply
    FAILED = "failed"  # transport failure, retry not allowed or also failed


@dataclass
class LoopOutcome:
    """Result variant of the tool-calling loop."""

    status: LoopStatus
    reply: str = ""
    usage: Usage = field(default_factory=Usage)
    model: str = ""
    tool_calls: list[str] = field(default_factory=list)
    retries: list[RetryRecord] = field(default_factory=list)
    streamed: bool = False
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status == LoopStatus.DONE


# ═══════════════════════════════════════════════════════════════════════════════
# RUN SUMMARY
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class RunSummary:
    """Terminal outcome record of one turn.

    Created at turn start, mutated as stages complete, returned to the
    caller and handed to the session recorder.
    """

    route: str = Lane.CHAT.value
    ok: bool = True
    reply: str = ""
    provider: str = ""
    model: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated_cost_usd: float | None = None
    tool_calls: list[str] = field(default_factory=list)
    retries: list[RetryRecord] = field(default_factory=list)
    memory_recall_used: bool = False
    web_search_preload_used: bool = False
    link_understanding_used: bool = False
    latency_ms: int = 0
    error: str = ""
    route_reason: str = ""
    prompt_hash: str = ""
    started_at: float = field(default_factory=time.monotonic, repr=False)

    @classmethod
    def for_lane(cls, lane: Lane) -> RunSummary:
        return cls(route=lane.value)

    def apply_usage(self, usage: Usage) -> None:
        self.prompt_tokens = usage.prompt_tokens
        self.completion_tokens = usage.completion_tokens
        self.total_tokens = usage.total_tokens

    def fail(self, error: str) -> RunSummary:
        self.ok = False
        self.error = error
        return self

    def finish(self) -> RunSummary:
        self.latency_ms = int((time.monotonic() - self.started_at) * 1000)
        return self

    def to_dict(self) -> dict[str, Any]:
        """camelCase view for callers and telemetry."""
        return {
            "route": self.route,
            "ok": self.ok,
            "reply": self.reply,
            "provider": self.provider,
            "model": self.model,
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
            "estimatedCostUsd": self.estimated_cost_usd,
            "toolCalls": list(self.tool_calls),
            "retries": [
                {
                    "stage": r.stage,
                    "fromModel": r.from_model,
                    "toModel": r.to_model,
                    "reason": r.reason,
                }
                for r in self.retries
            ],
            "memoryRecallUsed": self.memory_recall_used,
            "webSearchPreloadUsed": self.web_search_preload_used,
            "linkUnderstandingUsed": self.link_understanding_used,
            "latencyMs": self.latency_ms,
            "error": self.error,
            "routeReason": self.route_reason,
            "promptHash": self.prompt_hash,
        }
