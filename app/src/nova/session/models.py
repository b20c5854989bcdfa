"""
Session Models: data structures for persistent session state.

  Session → TranscriptEntry (append-only, bounded)
  UsageRecord (one row per provider-backed turn)

All models are frozen dataclasses. The transcript is the short-term
memory the prompt builder reads; usage rows back cost reporting.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class TranscriptEntry:
    """One utterance in a session transcript."""

    session_key: str
    role: str = Role.USER.value
    text: str = ""
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_openai_message(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.text}


@dataclass(frozen=True)
class UsageRecord:
    """Token and cost accounting for one turn."""

    session_key: str
    user_context_id: str = ""
    route: str = "chat"
    provider: str = ""
    model: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated_cost_usd: float | None = None
    ok: bool = True
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class UsageTotals:
    """Aggregated usage for a session or user context."""

    turns: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated_cost_usd: float = 0.0
