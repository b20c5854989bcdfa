"""
Turn API: submit utterances, watch the HUD event stream.

Endpoints:
    POST /v1/input                          → Run one turn, returns the RunSummary
    GET  /v1/events?user_context_id=...     → SSE stream of HUD broadcast events
    GET  /v1/sessions/{session_key}/turns   → Transcript entries for a session
    GET  /v1/usage                          → Token/cost totals (optionally per session)
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from nova.kernel.event_bus import topic_for
from nova.providers.base import ProviderUnavailableError
from nova.turn.contracts import InputOptions

if TYPE_CHECKING:
    from nova.kernel.event_bus import EventBus
    from nova.runtime import NovaRuntime

logger = logging.getLogger(__name__)


def create_turn_router(runtime: "NovaRuntime") -> APIRouter:
    """Create the turn router."""

    router = APIRouter(prefix="/v1", tags=["turns"])

    @router.post("/input")
    async def submit_input(request: Request) -> JSONResponse:
        """Run one turn to completion. Duplicates come back as {"duplicate": true}."""
        try:
            body = await request.json()
        except ValueError:
            return JSONResponse({"error": "Body must be JSON"}, status_code=400)
        if not isinstance(body, dict):
            return JSONResponse({"error": "Body must be a JSON object"}, status_code=400)

        text = str(body.get("text") or "")
        if not text.strip():
            return JSONResponse({"error": "Missing 'text' field"}, status_code=400)

        options = InputOptions.from_dict(body.get("options") or body)
        try:
            summary = await runtime.handle_input(text, options)
        except ProviderUnavailableError as e:
            return JSONResponse({"error": str(e)}, status_code=503)

        if summary is None:
            return JSONResponse({"duplicate": True})
        return JSONResponse(summary.to_dict())

    @router.get("/events")
    async def hud_events(user_context_id: str = "") -> StreamingResponse:
        """SSE stream of state, message and assistant stream events."""
        return StreamingResponse(
            _sse_generator(topic_for(user_context_id), runtime.gateway.bus),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    @router.get("/sessions/{session_key}/turns")
    async def session_turns(session_key: str, limit: int | None = None) -> JSONResponse:
        entries = await runtime.session_store.get_turns(session_key, limit=limit)
        return JSONResponse(
            {
                "session_key": session_key,
                "turns": [
                    {
                        "role": e.role,
                        "text": e.text,
                        "timestamp": e.timestamp,
                        "metadata": e.metadata,
                    }
                    for e in entries
                ],
            }
        )

    @router.get("/usage")
    async def usage(session_key: str | None = None) -> JSONResponse:
        totals = await runtime.session_store.usage_totals(session_key)
        return JSONResponse(
            {
                "session_key": session_key,
                "turns": totals.turns,
                "prompt_tokens": totals.prompt_tokens,
                "completion_tokens": totals.completion_tokens,
                "total_tokens": totals.total_tokens,
                "estimated_cost_usd": totals.estimated_cost_usd,
            }
        )

    return router


# ─── SSE Helpers ──────────────────────────────────────────────


async def _sse_generator(topic: str, event_bus: "EventBus") -> AsyncGenerator[str, None]:
    """Format bus events as SSE until the topic is closed."""
    queue = event_bus.subscribe(topic)
    try:
        async for event in event_bus.listen(queue):
            yield f"event: {event.get('type', 'message')}\ndata: {json.dumps(event)}\n\n"
    finally:
        event_bus.unsubscribe(topic, queue)
