"""Memory-update handler: "update your memory: ..." goes straight into MEMORY.md."""

from __future__ import annotations

import logging

from nova.handlers.base import HandlerContext, SpecialHandler
from nova.memory.notes import PersonaWorkspace, build_fact, extract_memory_update_fact
from nova.memory.recall import MemoryIndex
from nova.turn.contracts import Lane, RunSummary, Turn

logger = logging.getLogger(__name__)

ASK_FOR_FACT = "Tell me exactly what to remember after 'update your memory'."


class MemoryUpdateHandler(SpecialHandler):
    lane = Lane.MEMORY_UPDATE

    def __init__(self, workspace: PersonaWorkspace, memory_index: MemoryIndex | None = None):
        self.workspace = workspace
        self.memory_index = memory_index

    async def handle(self, turn: Turn, ctx: HandlerContext) -> RunSummary:
        summary = RunSummary.for_lane(self.lane)
        fact_text = extract_memory_update_fact(turn.text)
        if not fact_text:
            summary.reply = ASK_FOR_FACT
            return summary.finish()

        fact = build_fact(fact_text)
        try:
            await self.workspace.upsert_fact(turn.user_context_id, fact)
        except OSError as e:
            logger.error(f"MEMORY.md update failed: {e}", exc_info=True)
            summary.fail(str(e))
            summary.reply = f"I couldn't update MEMORY.md: {e}"
            return summary.finish()

        if self.memory_index is not None and self.memory_index.started:
            try:
                await self.memory_index.add_fact(turn.user_context_id, fact.fact, fact.key)
            except Exception as e:
                # MEMORY.md is the source of truth; the index catches up on the next write.
                logger.warning(f"Memory index update failed: {e}")

        summary.reply = (
            f"Memory updated. I will remember this as current: {fact.fact}"
            if fact.structured
            else f"Memory updated. I saved: {fact.fact}"
        )
        return summary.finish()
