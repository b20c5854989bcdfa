"""
Mission build idempotency: one upstream build per distinct request.

The key covers who asked, where, whether to deploy, and the normalized
prompt, so a resubmitted request (double send, retry from another tab)
maps to the same key and never triggers a second build:

    mission-build:{user_scope}:{sha256(...)[:32]}

A key is "pending" while its build is in flight (bounded by the pending
TTL in case the request dies) and keeps its finished reply for the
result TTL.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

MAX_PROMPT_CHARS = 1200


def normalize_prompt(prompt: str) -> str:
    return re.sub(r"\s+", " ", str(prompt or "")).strip().lower()[:MAX_PROMPT_CHARS]


def build_idempotency_key(
    user_context_id: str, conversation_id: str, deploy: bool, prompt: str
) -> str:
    user_scope = user_context_id.strip().lower() or "anonymous"
    payload = json.dumps(
        {
            "user_context_id": user_context_id,
            "conversation_id": conversation_id,
            "deploy": deploy,
            "prompt": normalize_prompt(prompt),
        },
        sort_keys=True,
    )
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]
    return f"mission-build:{user_scope}:{digest}"


@dataclass(frozen=True)
class LedgerEntry:
    state: str  # "pending" or "done"
    expires_at: float
    reply: str = ""
    ok: bool = True


class MissionBuildLedger:
    def __init__(
        self,
        pending_ttl_s: float = 120.0,
        result_ttl_s: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.pending_ttl_s = pending_ttl_s
        self.result_ttl_s = result_ttl_s
        self._clock = clock
        self._entries: dict[str, LedgerEntry] = {}

    def lookup(self, key: str) -> LedgerEntry | None:
        self._prune()
        return self._entries.get(key)

    def begin(self, key: str) -> bool:
        """Claim the key for a new build. False if it's pending or done."""
        if self.lookup(key) is not None:
            return False
        self._entries[key] = LedgerEntry(state="pending", expires_at=self._clock() + self.pending_ttl_s)
        return True

    def complete(self, key: str, reply: str, ok: bool = True) -> None:
        self._entries[key] = LedgerEntry(
            state="done", expires_at=self._clock() + self.result_ttl_s, reply=reply, ok=ok
        )

    def release(self, key: str) -> None:
        """Forget a key so the same request can be retried."""
        self._entries.pop(key, None)

    def _prune(self) -> None:
        now = self._clock()
        expired = [k for k, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]

    def __len__(self) -> int:
        self._prune()
        return len(self._entries)
