"""Shutdown handler: say goodbye, then end the process."""

from __future__ import annotations

import logging
import os
from typing import Callable

from nova.handlers.base import HandlerContext, SpecialHandler
from nova.turn.contracts import Lane, RunSummary, Turn

logger = logging.getLogger(__name__)

FAREWELL = "Shutting down now. If you need me again, just restart the system."


def _exit_process() -> None:
    logging.shutdown()
    os._exit(0)


class ShutdownHandler(SpecialHandler):
    lane = Lane.SHUTDOWN

    def __init__(self, terminate: Callable[[], None] = _exit_process):
        self._terminate = terminate

    async def handle(self, turn: Turn, ctx: HandlerContext) -> RunSummary:
        summary = RunSummary.for_lane(self.lane)
        summary.reply = FAREWELL
        logger.warning(f"Shutdown requested via {turn.source} ({turn.session_key})")

        ctx.streamer.delta(FAREWELL)
        ctx.streamer.done()
        if ctx.voice is not None:
            await ctx.voice.stop()
            if ctx.options.use_voice:
                await ctx.voice.speak(FAREWELL, ctx.options.voice_id, turn.user_context_id)
        ctx.gateway.state("idle", turn.user_context_id)

        self._terminate()
        return summary.finish()
