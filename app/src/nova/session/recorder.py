"""
Session Recorder: the last stage of every turn.

    recorder.record(turn, summary)
      → transcript: user entry, assistant entry (if non-empty), trim
      → usage row with estimated cost
      → opportunistic facts from the user's own words → MEMORY.md + index

Nothing here fails the turn. The reply has already been delivered by the
time this runs, so every write error is logged and swallowed.
"""

from __future__ import annotations

import logging

import nova.core.config as config_module
from nova.core.metrics import metrics
from nova.memory.notes import PersonaWorkspace, extract_auto_facts
from nova.memory.recall import MemoryIndex
from nova.providers.resolver import estimate_cost_usd
from nova.session.models import Role, TranscriptEntry, UsageRecord
from nova.session.store import SessionStore
from nova.turn.contracts import RunSummary, Turn

logger = logging.getLogger(__name__)


class SessionRecorder:
    def __init__(
        self,
        store: SessionStore,
        workspace: PersonaWorkspace | None = None,
        memory_index: MemoryIndex | None = None,
    ):
        self.store = store
        self.workspace = workspace
        self.memory_index = memory_index

    async def record(self, turn: Turn, summary: RunSummary) -> None:
        if summary.estimated_cost_usd is None and summary.model:
            summary.estimated_cost_usd = estimate_cost_usd(
                summary.model, summary.prompt_tokens, summary.completion_tokens
            )
        await self._append_transcript(turn, summary)
        await self._persist_usage(turn, summary)
        await self._capture_facts(turn)

    async def _append_transcript(self, turn: Turn, summary: RunSummary) -> None:
        try:
            await self.store.append_turn(
                TranscriptEntry(
                    session_key=turn.session_key,
                    role=Role.USER.value,
                    text=turn.text,
                    metadata={
                        "source": turn.source,
                        "sender": turn.sender,
                        "conversation_id": turn.conversation_id,
                        "turn_id": turn.turn_id,
                    },
                )
            )
            if summary.reply.strip():
                await self.store.append_turn(
                    TranscriptEntry(
                        session_key=turn.session_key,
                        role=Role.ASSISTANT.value,
                        text=summary.reply,
                        metadata={
                            "route": summary.route,
                            "provider": summary.provider,
                            "model": summary.model,
                            "prompt_tokens": summary.prompt_tokens,
                            "completion_tokens": summary.completion_tokens,
                            "total_tokens": summary.total_tokens,
                            "ok": summary.ok,
                            "turn_id": turn.turn_id,
                        },
                    )
                )
            removed = await self.store.limit_turns(turn.session_key, config_module.config.session.max_turns)
            if removed:
                logger.debug(f"Trimmed {removed} old entries from {turn.session_key}")
        except Exception as e:
            metrics.inc("recorder.errors", labels={"stage": "transcript"})
            logger.error(f"Transcript write failed for {turn.session_key}: {e}", exc_info=True)

    async def _persist_usage(self, turn: Turn, summary: RunSummary) -> None:
        # Special lanes that never touched a provider have nothing to bill.
        if not summary.provider and not summary.total_tokens:
            return
        try:
            await self.store.persist_usage(
                UsageRecord(
                    session_key=turn.session_key,
                    user_context_id=turn.user_context_id,
                    route=summary.route,
                    provider=summary.provider,
                    model=summary.model,
                    prompt_tokens=summary.prompt_tokens,
                    completion_tokens=summary.completion_tokens,
                    total_tokens=summary.total_tokens,
                    estimated_cost_usd=summary.estimated_cost_usd,
                    ok=summary.ok,
                )
            )
        except Exception as e:
            metrics.inc("recorder.errors", labels={"stage": "usage"})
            logger.error(f"Usage write failed for {turn.session_key}: {e}", exc_info=True)

    async def _capture_facts(self, turn: Turn) -> None:
        if self.workspace is None:
            return
        for fact in extract_auto_facts(turn.text):
            try:
                await self.workspace.upsert_fact(turn.user_context_id, fact)
                if self.memory_index is not None and self.memory_index.started:
                    await self.memory_index.add_fact(turn.user_context_id, fact.fact, fact.key)
                metrics.inc("memory.auto_facts")
            except Exception as e:
                metrics.inc("recorder.errors", labels={"stage": "facts"})
                logger.error(f"Fact capture failed ({fact.key or 'general'}): {e}", exc_info=True)
