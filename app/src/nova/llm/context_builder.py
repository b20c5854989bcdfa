"""
Prompt Context Builder: assembles the budgeted message list for a turn.

Assembly order (matters for what survives a tight budget):
1. Base prompt: persona, tools, runtime metadata (always included)
2. Persona sections from the workspace: preferences, memory, identity,
   personality, then short-term continuity (outer fallback if rejected)
3. Enrichment, fetched concurrently with independent timeouts:
   web search preload, link context, memory recall (dropped if no room)
4. Strict output requirements (always last, outer fallback)
5. Transcript history, trimmed oldest-first to the remaining budget

Enrichment is skipped on the fast lane: short chat with no links, no
recency words and no question about memory.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import nova.core.config as config_module
from nova.core.metrics import metrics
from nova.llm.budget import (
    BudgetProfile,
    PromptLedger,
    SectionDecision,
    count_tokens,
    resolve_budget_profile,
    trim_history,
)
from nova.llm.constraints import OutputConstraints, parse_output_constraints
from nova.tools.web_fetch import extract_links
from nova.tools.web_search import NO_RESULTS
from nova.turn.contracts import ToolCall, Turn
from nova.turn.router import should_preload_web_search

if TYPE_CHECKING:
    from nova.memory.notes import PersonaWorkspace
    from nova.memory.recall import MemoryIndex
    from nova.providers.base import ProviderRuntime
    from nova.session.models import TranscriptEntry
    from nova.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

SYSTEM_PROMPT_BASE = """You are Nova, a personal assistant running on the user's own machine. You speak naturally and conversationally.

Key behaviors:
- Be concise. Respond in 1-3 sentences for casual conversation. Go longer only when depth is needed.
- Reference memories naturally: "You mentioned..." not "Based on our previous conversation..."
- Match the user's energy. Brief if they're brief, deep if they want depth.
- Never say "As an AI". Just be present and helpful.

Tools:
- When a tool can answer with live data, use it instead of guessing.
- You do have live web search in this runtime. Never claim you cannot browse or access current information.
- After tool use, summarize the result naturally. Don't dump raw output.
- If a tool fails, explain what happened and suggest alternatives.
"""

TONE_DIRECTIVES = {
    "neutral": "Keep a balanced, even tone.",
    "enthusiastic": "Be upbeat and energetic without overdoing it.",
    "calm": "Be steady, gentle and unhurried.",
    "direct": "Be blunt and to the point. Skip pleasantries.",
    "relaxed": "Be casual and easygoing, like a friend.",
}

_MEMORY_QUESTION = re.compile(
    r"\b(remember|memory|recall|forgot|forget|what do you know about me|my name)\b", re.I
)
_LINK = re.compile(r"https?://", re.I)


def is_fast_lane(text: str, hints: dict[str, Any] | None = None) -> bool:
    """Simple chat that doesn't need any context enrichment."""
    hints = hints or {}
    if hints.get("fast_lane"):
        return True
    raw = str(text or "").strip()
    if not raw or len(raw.split()) > 6:
        return False
    if _LINK.search(raw) or should_preload_web_search(raw):
        return False
    return not _MEMORY_QUESTION.search(raw)


def prompt_hash(messages: list[dict[str, Any]]) -> str:
    payload = json.dumps(messages, ensure_ascii=False, sort_keys=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:24]


@dataclass
class PromptBuildResult:
    messages: list[dict[str, Any]]
    prompt_hash: str
    profile: BudgetProfile
    fast_lane: bool = False
    constraints: OutputConstraints = field(default_factory=OutputConstraints)
    used_memory_recall: bool = False
    used_web_search_preload: bool = False
    used_link_understanding: bool = False
    decisions: list[SectionDecision] = field(default_factory=list)
    system_tokens: int = 0
    history_tokens: int = 0

    @property
    def section_tokens(self) -> dict[str, int]:
        return {d.title: d.tokens for d in self.decisions if d.included}


class PromptContextBuilder:
    def __init__(
        self,
        tool_registry: "ToolRegistry | None" = None,
        workspace: "PersonaWorkspace | None" = None,
        memory_index: "MemoryIndex | None" = None,
    ):
        self.tool_registry = tool_registry
        self.workspace = workspace
        self.memory_index = memory_index

    async def build(
        self,
        turn: Turn,
        session: "list[TranscriptEntry]",
        provider: "ProviderRuntime",
    ) -> PromptBuildResult:
        cfg = config_module.config
        text = turn.text
        fast_lane = is_fast_lane(text, turn.hints)
        constraints = parse_output_constraints(text)
        profile = resolve_budget_profile(cfg.prompt, fast_lane=fast_lane, strict=constraints.enabled)

        ledger = PromptLedger(profile, self._base_prompt(turn, provider), text)

        # Persona sections: outer fallback keeps them if the ledger says no
        for title, body in await self._persona_sections(turn):
            ledger.append_forced(title, body)

        result = PromptBuildResult(
            messages=[], prompt_hash="", profile=profile, fast_lane=fast_lane, constraints=constraints
        )

        if fast_lane:
            logger.debug("Context enrichment skipped (fast lane)")
        else:
            web, links, memory = await self._enrich(turn)
            if web and ledger.append("Live Web Search Context", web):
                result.used_web_search_preload = True
            if links and ledger.append("Link Context", links):
                result.used_link_understanding = True
            if memory and ledger.append("Live Memory Recall", memory):
                result.used_memory_recall = True

        if constraints.enabled:
            ledger.append_forced("Strict Output Requirements", constraints.instructions)

        history = [entry.to_openai_message() for entry in session if entry.text]
        history = trim_history(history, ledger.history_budget(cfg.session.max_history_tokens))

        messages = [{"role": "system", "content": ledger.prompt}, *history, {"role": "user", "content": text}]
        result.messages = messages
        result.prompt_hash = prompt_hash(messages)
        result.decisions = list(ledger.decisions)
        result.system_tokens = ledger.used
        result.history_tokens = sum(count_tokens(m["content"]) for m in history)

        logger.info(
            f"Prompt built: profile={profile.name} system={result.system_tokens} "
            f"history={result.history_tokens} ({len(history)} msgs) user={ledger.user_tokens}"
        )
        return result

    # ─── Sections ─────────────────────────────────────────────────

    def _base_prompt(self, turn: Turn, provider: "ProviderRuntime") -> str:
        parts = [SYSTEM_PROMPT_BASE.strip()]

        if self.tool_registry and self.tool_registry.tool_names():
            parts.append("Available tools: " + ", ".join(self.tool_registry.tool_names()))

        tone = str(turn.hints.get("tone") or "").strip().lower()
        if tone in TONE_DIRECTIVES:
            parts.append(f"Tone: {tone}. {TONE_DIRECTIVES[tone]}")
        style = str(turn.hints.get("style") or "").strip()
        if style:
            parts.append(f"Communication style: {style}")

        now = datetime.now().astimezone()
        parts.append(
            "Runtime:\n"
            f"- Date: {now.strftime('%A, %Y-%m-%d %H:%M %Z')}\n"
            f"- Channel: {turn.source}\n"
            f"- Model: {provider.model} ({provider.provider_id})"
        )
        return "\n\n".join(parts)

    async def _persona_sections(self, turn: Turn) -> list[tuple[str, str]]:
        sections: list[tuple[str, str]] = []
        if self.workspace is not None:
            uid = turn.user_context_id
            notes = await asyncio.gather(
                self.workspace.read_note(uid, "USER.md"),
                self.workspace.read_note(uid, "MEMORY.md"),
                self.workspace.read_note(uid, "IDENTITY.md"),
                self.workspace.read_note(uid, "PERSONALITY.md"),
            )
            titles = (
                "User Preference Memory",
                "Persistent Memory",
                "Identity Intelligence",
                "Personality Calibration",
            )
            sections.extend((title, body) for title, body in zip(titles, notes) if body.strip())

        short_term = str(turn.hints.get("short_term_context") or "").strip()
        if short_term:
            follow_up = "true" if turn.hints.get("follow_up") else "false"
            sections.append(("Short-Term Context", f"follow_up: {follow_up}\n{short_term}"))
        return sections

    # ─── Enrichment ───────────────────────────────────────────────

    async def _enrich(self, turn: Turn) -> tuple[str, str, str]:
        """(web, links, memory) bodies; "" for anything skipped, failed or late."""
        ecfg = config_module.config.enrichment
        names = ("web_search", "link", "memory")
        tasks = [
            self._timed("web_search", self._web_search(turn.text), max(250, ecfg.web_timeout_ms)),
            self._timed("link", self._link_context(turn.text), max(250, ecfg.link_timeout_ms)),
            self._timed("memory", self._memory_recall(turn), max(150, ecfg.memory_timeout_ms)),
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        bodies = []
        for name, value in zip(names, results):
            if isinstance(value, BaseException):
                logger.warning(f"Context enrichment '{name}' failed: {value}")
                bodies.append("")
            else:
                bodies.append(value or "")
        return bodies[0], bodies[1], bodies[2]

    async def _timed(self, name: str, coro, timeout_ms: int) -> str:
        try:
            return await asyncio.wait_for(coro, timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            metrics.inc("enrichment.timeout", labels={"source": name})
            logger.warning(f"Context enrichment '{name}' timed out after {timeout_ms}ms")
            return ""

    async def _web_search(self, text: str) -> str:
        if not self.tool_registry or not self.tool_registry.has("web_search"):
            return ""
        if not should_preload_web_search(text):
            return ""
        result = await self.tool_registry.execute_tool_use(
            ToolCall(id="tool_preload_web_search", name="web_search", input={"query": text})
        )
        content = result.content.strip()
        if result.errored or not content or content == NO_RESULTS:
            return ""
        return f"Use these current results when answering:\n{content}"

    async def _link_context(self, text: str) -> str:
        if not self.tool_registry or not self.tool_registry.has("web_fetch"):
            return ""
        ecfg = config_module.config.enrichment
        links = extract_links(text, max_links=ecfg.max_links)
        if not links:
            return ""
        results = await asyncio.gather(
            *(
                self.tool_registry.execute_tool_use(
                    ToolCall(
                        id=f"tool_preload_web_fetch_{i}",
                        name="web_fetch",
                        input={"url": url, "max_chars": ecfg.link_max_chars},
                    )
                )
                for i, url in enumerate(links)
            ),
            return_exceptions=True,
        )
        blocks = []
        for url, result in zip(links, results):
            if isinstance(result, BaseException):
                logger.warning(f"Link fetch failed for {url}: {result}")
                continue
            if result.errored or not result.content.strip():
                continue
            blocks.append(f"[{len(blocks) + 1}] {url}\n{result.content.strip()}")
        if not blocks:
            return ""
        return "Use this fetched URL context when relevant:\n" + "\n\n".join(blocks)

    async def _memory_recall(self, turn: Turn) -> str:
        if self.memory_index is None or not self.memory_index.started:
            return ""
        ecfg = config_module.config.enrichment
        recalled = await self.memory_index.search(
            turn.user_context_id, turn.text, limit=ecfg.memory_top_k
        )
        if not recalled:
            return ""
        lines = [
            f"[{i + 1}] {str(item.get('fact', ''))[: ecfg.memory_item_chars]}"
            for i, item in enumerate(recalled)
        ]
        logger.info(f"Memory: {len(lines)} matches")
        return "Use this indexed context when relevant:\n" + "\n\n".join(lines)
