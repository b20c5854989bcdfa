"""
Inbound Deduplicator: suppresses turns re-delivered by retrying transports.

Two independent windows per scope (source|userContextId|sessionKey|sender):

- content window (short, ~6s): keyed by a fingerprint of the normalized text
- id window (long, ~15min): keyed by the caller's inbound message id

Usage:
    dedupe = InboundDeduplicator(short_window_s=6, long_window_s=900)
    if dedupe.should_skip(turn):
        return None

The store is an explicit object, one per runtime, so tests and tenants
never share state.
"""

from __future__ import annotations

import hashlib
import logging
import re
import time
import unicodedata
from typing import Callable

from nova.turn.contracts import Turn

logger = logging.getLogger(__name__)

_ZERO_WIDTH = re.compile("[\u200b\u200c\u200d\u2060\ufeff]")
_WHITESPACE = re.compile(r"\s+")


def normalize_inbound_text(text: str) -> str:
    """NFKC, zero-width stripped, whitespace collapsed, lowercased."""
    value = unicodedata.normalize("NFKC", str(text or ""))
    value = _ZERO_WIDTH.sub("", value)
    return _WHITESPACE.sub(" ", value).strip().lower()


def fingerprint(text: str) -> str:
    return hashlib.sha256(normalize_inbound_text(text).encode("utf-8")).hexdigest()


class InboundDeduplicator:
    """Bounded, TTL-pruned duplicate store."""

    def __init__(
        self,
        short_window_s: float = 6.0,
        long_window_s: float = 900.0,
        max_entries: int = 2000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.short_window_s = short_window_s
        self.long_window_s = long_window_s
        self.max_entries = max(1, max_entries)
        self._clock = clock
        # key -> (recorded_at, ttl)
        self._entries: dict[str, tuple[float, float]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def should_skip(self, turn: Turn) -> bool:
        """True if this turn is a re-delivery of one already accepted.

        Accepted turns are recorded as a side effect.
        """
        normalized = normalize_inbound_text(turn.text)
        if not normalized:
            return False

        now = self._clock()
        scope = turn.scope
        fp_key = f"fp:{scope}:{fingerprint(normalized)}"
        id_key = f"id:{scope}:{turn.inbound_message_id}" if turn.inbound_message_id else ""

        if id_key and self._alive(id_key, now):
            logger.debug(f"Duplicate inbound id suppressed (scope={scope})")
            return True

        if self._alive(fp_key, now):
            # A retry that minted a fresh id for the same content
            if id_key:
                self._put(id_key, now, self.long_window_s)
            logger.debug(f"Duplicate inbound content suppressed (scope={scope})")
            return True

        self._put(fp_key, now, self.short_window_s)
        if id_key:
            self._put(id_key, now, self.long_window_s)
        return False

    def clear(self) -> None:
        self._entries.clear()

    # ─── Internal ─────────────────────────────────────────────────

    def _alive(self, key: str, now: float) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        recorded_at, ttl = entry
        if now - recorded_at > ttl:
            del self._entries[key]
            return False
        return True

    def _put(self, key: str, now: float, ttl: float) -> None:
        self._entries[key] = (now, ttl)
        if len(self._entries) > self.max_entries:
            self._prune(now)

    def _prune(self, now: float) -> None:
        expired = [k for k, (ts, ttl) in self._entries.items() if now - ts > ttl]
        for key in expired:
            del self._entries[key]
        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            oldest = sorted(self._entries.items(), key=lambda item: item[1][0])
            for key, _ in oldest[:overflow]:
                del self._entries[key]
