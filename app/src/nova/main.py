"""
Nova: turn runtime server.

Wires the runtime (session store, memory index, tools, voice, HUD
gateway) into a FastAPI app:

    POST /v1/input    → handle one utterance
    GET  /v1/events   → HUD broadcast stream (SSE)
    GET  /health      → provider + store status
    GET  /metrics     → in-process counters/histograms/gauges

Run: uv run uvicorn nova.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

import nova.core.config as config_module
from nova.core.logging import setup_logging
from nova.core.metrics import metrics
from nova.http.routes import create_turn_router
from nova.kernel.event_bus import EventBus
from nova.kernel.gateway import BroadcastGateway
from nova.memory.notes import PersonaWorkspace
from nova.memory.recall import MemoryIndex
from nova.providers.base import ProviderUnavailableError
from nova.providers.resolver import ProviderResolver
from nova.runtime import NovaRuntime
from nova.session.store import SessionStore
from nova.tools.registry import ToolRegistry
from nova.tools.web_fetch import WebFetchTool
from nova.tools.web_search import WebSearchTool
from nova.voice.output import VoiceOutput

logger = logging.getLogger("nova")

VERSION = "0.1.0"


def build_runtime() -> NovaRuntime:
    """Assemble a runtime from the current config."""
    cfg = config_module.config

    tool_registry = ToolRegistry()
    tool_registry.register(WebSearchTool())
    tool_registry.register(WebFetchTool())

    gateway = BroadcastGateway(EventBus())
    memory_index = MemoryIndex(cfg.memory.db_path) if cfg.providers.openai.api_key else None

    return NovaRuntime(
        session_store=SessionStore(cfg.session.db_path),
        tool_registry=tool_registry,
        workspace=PersonaWorkspace(cfg.workspace.root, cfg.workspace.memory_max_facts),
        memory_index=memory_index,
        gateway=gateway,
        voice=VoiceOutput(gateway=gateway),
    )


def create_app(runtime: NovaRuntime | None = None) -> FastAPI:
    runtime = runtime or build_runtime()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await runtime.start()
        try:
            yield
        finally:
            await runtime.stop()

    app = FastAPI(title="Nova", version=VERSION, lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(create_turn_router(runtime))

    @app.get("/health")
    async def health():
        """Health check: reports provider resolution and tool status."""
        try:
            resolution = ProviderResolver().resolve(config_module.config)
            provider = {
                "status": "ok",
                "provider": resolution.provider,
                "model": resolution.model,
                "route_reason": resolution.route_reason,
            }
        except ProviderUnavailableError as e:
            provider = {"status": "unavailable", "error": str(e)}

        return JSONResponse(
            {
                "status": "ok" if provider["status"] == "ok" else "degraded",
                "version": VERSION,
                "provider": provider,
                "tools": runtime.tool_registry.tool_names() if runtime.tool_registry else [],
                "memory_index": runtime.memory_index is not None and runtime.memory_index.started,
            }
        )

    @app.get("/metrics")
    async def get_metrics():
        return JSONResponse(metrics.snapshot())

    return app


def main() -> None:
    import uvicorn

    cfg = config_module.config
    uvicorn.run("nova.main:app", host=cfg.server.host, port=cfg.server.port)


setup_logging()
app = create_app()


if __name__ == "__main__":
    main()
