"""
Nova Runtime: one call per inbound utterance.

    summary = await runtime.handle_input("what's the weather in Austin", options)

    Deduplicator → Intent Router
      → special lane: handler (shutdown / media / workflow / memory)
      → chat lane:    Provider Resolver → Prompt Context Builder
                      → Tool-Calling Loop → Response Streamer
    → delivery (stream, voice) → Session Recorder

Duplicates return None. A missing provider raises ProviderUnavailableError
before anything is sent to a model. Provider and tool failures end as a
failed RunSummary; anything unexpected propagates. The HUD is always left
in the "idle" state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

import nova.core.config as config_module
from nova.core.logging import PipelineTimer
from nova.core.metrics import metrics
from nova.handlers.base import HandlerContext, SpecialHandler
from nova.handlers.media import MediaControlHandler
from nova.handlers.memory_update import MemoryUpdateHandler
from nova.handlers.shutdown import ShutdownHandler
from nova.handlers.workflow import WorkflowBuildHandler
from nova.kernel.gateway import BroadcastGateway
from nova.llm.constraints import validate_output
from nova.llm.context_builder import PromptContextBuilder
from nova.llm.loop import EXHAUSTED_ERROR, ToolLoopExecutor
from nova.llm.streamer import ResponseStreamer
from nova.memory.notes import PersonaWorkspace
from nova.memory.recall import MemoryIndex
from nova.providers.base import LLMProvider, ProviderUnavailableError
from nova.providers.registry import ProviderPool
from nova.providers.resolver import (
    ProviderResolution,
    ProviderResolver,
    ResolverRequirements,
    estimate_cost_usd,
)
from nova.session.recorder import SessionRecorder
from nova.session.store import SessionStore
from nova.tools.registry import ToolRegistry
from nova.turn.contracts import InputOptions, Lane, LoopOutcome, LoopStatus, RunSummary, Turn
from nova.turn.dedupe import InboundDeduplicator
from nova.turn.router import IntentRouter
from nova.voice.output import VoiceOutput

logger = logging.getLogger(__name__)

EXHAUSTED_MESSAGE = "I couldn't finish that within my tool step limit."


class NovaRuntime:
    def __init__(
        self,
        session_store: SessionStore,
        tool_registry: ToolRegistry | None = None,
        workspace: PersonaWorkspace | None = None,
        memory_index: MemoryIndex | None = None,
        gateway: BroadcastGateway | None = None,
        voice: VoiceOutput | None = None,
        resolver: ProviderResolver | None = None,
        provider_pool: ProviderPool | None = None,
        router: IntentRouter | None = None,
        deduplicator: InboundDeduplicator | None = None,
        handlers: dict[Lane, SpecialHandler] | None = None,
        terminate: Callable[[], None] | None = None,
        max_concurrent_turns: int | None = None,
    ):
        cfg = config_module.config
        self.session_store = session_store
        self.tool_registry = tool_registry
        self.workspace = workspace or PersonaWorkspace(cfg.workspace.root, cfg.workspace.memory_max_facts)
        self.memory_index = memory_index
        self.gateway = gateway or BroadcastGateway()
        self.voice = voice
        self.resolver = resolver or ProviderResolver()
        self.provider_pool = provider_pool or ProviderPool()
        self.router = router or IntentRouter()
        self.deduplicator = deduplicator or InboundDeduplicator(
            cfg.dedupe.short_window_s, cfg.dedupe.long_window_s, cfg.dedupe.max_entries
        )

        self.context_builder = PromptContextBuilder(tool_registry, self.workspace, memory_index)
        self.loop = ToolLoopExecutor(
            tool_registry,
            max_steps=cfg.llm.max_tool_steps,
            fallback_model=cfg.llm.fallback_model,
            max_tokens=cfg.llm.max_tokens,
            temperature=cfg.llm.temperature,
        )
        self.recorder = SessionRecorder(session_store, self.workspace, memory_index)

        if handlers is None:
            handlers = {
                Lane.SHUTDOWN: ShutdownHandler(terminate) if terminate else ShutdownHandler(),
                Lane.MEDIA_CONTROL: MediaControlHandler(),
                Lane.WORKFLOW_BUILD: WorkflowBuildHandler(),
                Lane.MEMORY_UPDATE: MemoryUpdateHandler(self.workspace, memory_index),
            }
        self.handlers = handlers

        self._semaphore = asyncio.Semaphore(max_concurrent_turns or cfg.server.max_concurrent_turns)
        # session_key -> (lock, number of turns holding or waiting on it)
        self._session_locks: dict[str, tuple[asyncio.Lock, int]] = {}

    # ─── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        await self.session_store.start()
        if self.memory_index is not None:
            await self.memory_index.start()
        logger.info(
            f"Nova runtime ready (provider={config_module.config.llm.active_provider}, "
            f"tools={self.tool_registry.tool_names() if self.tool_registry else []})"
        )

    async def stop(self) -> None:
        if self.voice is not None:
            await self.voice.stop()
        await self.provider_pool.close()
        if self.memory_index is not None:
            await self.memory_index.stop()
        await self.session_store.stop()

    # ─── Entry point ──────────────────────────────────────────────

    async def handle_input(
        self, text: str, options: InputOptions | dict[str, Any] | None = None
    ) -> RunSummary | None:
        """Process one utterance. Returns None when it's a duplicate or empty."""
        if not isinstance(options, InputOptions):
            options = InputOptions.from_dict(options)
        turn = Turn.from_input(text, options)
        if not turn.text.strip():
            logger.debug("Empty input ignored")
            return None

        if self.deduplicator.should_skip(turn):
            metrics.inc("turns.duplicate")
            logger.info(f"Duplicate inbound skipped ({turn.session_key})")
            return None

        lane = self.router.classify(turn.text)
        metrics.inc("turns.accepted", labels={"lane": lane.value})

        # Session order first, so a queued turn doesn't hold a process slot.
        lock = self._acquire_session_lock(turn.session_key)
        try:
            async with lock, self._semaphore:
                metrics.gauge_inc("turns.in_flight")
                try:
                    return await self._run_turn(turn, options, lane)
                finally:
                    metrics.gauge_dec("turns.in_flight")
        finally:
            self._release_session_lock(turn.session_key)

    # ─── Turn ─────────────────────────────────────────────────────

    async def _run_turn(self, turn: Turn, options: InputOptions, lane: Lane) -> RunSummary:
        timer = PipelineTimer()
        uid = turn.user_context_id
        streamer = ResponseStreamer(self.gateway, turn.source, turn.conversation_id, uid)
        self.gateway.state("thinking", uid)
        self.gateway.message("user", turn.text, turn.source, turn.conversation_id, uid)

        try:
            handler = self.handlers.get(lane)
            if handler is not None:
                ctx = HandlerContext(
                    options=options,
                    gateway=self.gateway,
                    streamer=streamer,
                    voice=self.voice,
                    provider=self._tool_free_provider,
                )
                summary = await handler.handle(turn, ctx)
                timer.mark("handler")
            else:
                summary = await self._run_chat(turn, streamer, timer)

            await self._deliver(turn, options, summary, streamer)
            await self.recorder.record(turn, summary)
            timer.mark("record")
        except ProviderUnavailableError as e:
            metrics.inc("turns.failed", labels={"lane": lane.value, "reason": "provider-unavailable"})
            logger.error(f"Turn rejected before start: {e}")
            raise
        except Exception as e:
            metrics.inc("turns.failed", labels={"lane": lane.value, "reason": "internal"})
            logger.error(f"Turn failed ({lane.value}): {e}", exc_info=True)
            streamer.error(str(e))
            raise
        finally:
            streamer.done()
            self.gateway.state("idle", uid)

        summary.finish()
        if not summary.ok:
            metrics.inc("turns.failed", labels={"lane": lane.value, "reason": summary.error or "unknown"})
        metrics.observe("turn.latency_ms", summary.latency_ms, labels={"lane": lane.value})
        logger.info(
            f"Turn done: lane={lane.value} ok={summary.ok} [{timer.summary()}]",
            extra={
                "turn_id": turn.turn_id,
                "session_key": turn.session_key,
                "lane": lane.value,
                "provider": summary.provider,
                "model": summary.model,
                "duration_ms": summary.latency_ms,
                "status": "ok" if summary.ok else "failed",
            },
        )
        return summary

    async def _run_chat(self, turn: Turn, streamer: ResponseStreamer, timer: PipelineTimer) -> RunSummary:
        cfg = config_module.config
        summary = RunSummary.for_lane(Lane.CHAT)
        tool_defs = self.tool_registry.to_openai_tools() if self.tool_registry else []

        resolution = self.resolver.resolve(cfg, ResolverRequirements(needs_tools=bool(tool_defs)))
        summary.provider = resolution.provider
        summary.model = resolution.model
        summary.route_reason = resolution.route_reason
        provider = await self.provider_pool.get(resolution.runtime)
        timer.mark("route")

        history = await self.session_store.get_turns(turn.session_key, limit=cfg.session.max_turns)
        built = await self.context_builder.build(turn, history, resolution.runtime)
        summary.prompt_hash = built.prompt_hash
        summary.memory_recall_used = built.used_memory_recall
        summary.web_search_preload_used = built.used_web_search_preload
        summary.link_understanding_used = built.used_link_understanding
        timer.mark("context")

        outcome = await self.loop.run(built.messages, tool_defs or None, provider, on_delta=streamer.delta)
        timer.mark("loop")
        self._apply_outcome(summary, outcome)

        if outcome.ok:
            normalized = streamer.finish(outcome.reply)
            summary.reply = normalized.text
            valid, reason = validate_output(summary.reply, built.constraints)
            if not valid:
                logger.warning(f"Reply missed output constraints: {reason}")
        else:
            message = EXHAUSTED_MESSAGE if outcome.status == LoopStatus.EXHAUSTED else outcome.error
            streamer.error(message)
            summary.reply = streamer.text.strip()
            summary.fail(outcome.error or EXHAUSTED_ERROR)
        return summary

    @staticmethod
    def _apply_outcome(summary: RunSummary, outcome: LoopOutcome) -> None:
        summary.apply_usage(outcome.usage)
        summary.model = outcome.model or summary.model
        summary.tool_calls = list(outcome.tool_calls)
        summary.retries = list(outcome.retries)
        summary.estimated_cost_usd = estimate_cost_usd(
            summary.model, summary.prompt_tokens, summary.completion_tokens
        )

    async def _tool_free_provider(self) -> tuple[LLMProvider, ProviderResolution]:
        resolution = self.resolver.resolve(
            config_module.config, ResolverRequirements(needs_tools=False)
        )
        provider = await self.provider_pool.get(resolution.runtime)
        return provider, resolution

    # ─── Delivery ─────────────────────────────────────────────────

    async def _deliver(
        self, turn: Turn, options: InputOptions, summary: RunSummary, streamer: ResponseStreamer
    ) -> None:
        # Closed means the handler already delivered (shutdown farewell).
        if streamer.closed:
            return
        if not streamer.emitted:
            normalized = streamer.finish(summary.reply)
            summary.reply = normalized.text
        if not (options.use_voice and self.voice is not None and summary.reply):
            return
        try:
            await self.voice.speak(summary.reply, options.voice_id, turn.user_context_id)
        except Exception as e:
            logger.error(f"Speech output failed: {e}", exc_info=True)

    # ─── Session locks ────────────────────────────────────────────

    def _acquire_session_lock(self, session_key: str) -> asyncio.Lock:
        lock, refs = self._session_locks.get(session_key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._session_locks[session_key] = (lock, refs + 1)
        return lock

    def _release_session_lock(self, session_key: str) -> None:
        lock, refs = self._session_locks[session_key]
        if refs <= 1:
            del self._session_locks[session_key]
        else:
            self._session_locks[session_key] = (lock, refs - 1)
