"""
Provider Resolver: picks a generation provider and model for a turn.

Resolution order:
1. the user's active provider, if connected, keyed and (when the turn
   needs tools) tool-capable
2. when fallback is enabled, the first eligible provider in preference order
3. otherwise ProviderUnavailableError, before any provider call is made

The route reason and the full ranked candidate list are kept on the
resolution for logging and the RunSummary.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from nova.core.config import PROVIDER_PREFERENCE, NovaConfig, ProviderSettings
from nova.providers.base import ProviderRuntime, ProviderUnavailableError

logger = logging.getLogger(__name__)


# USD per 1M tokens
MODEL_PRICING_USD_PER_1M: dict[str, tuple[float, float]] = {
    "gpt-5": (1.25, 10.0),
    "gpt-5-mini": (0.25, 2.0),
    "gpt-5-nano": (0.05, 0.4),
    "gpt-4.1": (2.0, 8.0),
    "gpt-4.1-mini": (0.4, 1.6),
    "gpt-4.1-nano": (0.1, 0.4),
    "gpt-4o": (5.0, 15.0),
    "gpt-4o-mini": (0.6, 2.4),
    "claude-opus-4-1-20250805": (15.0, 75.0),
    "claude-opus-4-20250514": (15.0, 75.0),
    "claude-sonnet-4-20250514": (3.0, 15.0),
}

# Family fallbacks for dated model ids not in the table
_FAMILY_PRICING: tuple[tuple[str, tuple[float, float]], ...] = (
    ("claude-opus-4", (15.0, 75.0)),
    ("claude-sonnet-4", (3.0, 15.0)),
    ("claude-3-7-sonnet", (3.0, 15.0)),
    ("claude-3-5-sonnet", (3.0, 15.0)),
    ("claude-3-5-haiku", (0.8, 4.0)),
)


def estimate_cost_usd(model: str, prompt_tokens: int, completion_tokens: int) -> float | None:
    """Estimated cost of a turn, or None for models without known pricing."""
    normalized = (model or "").strip().lower()
    pricing = MODEL_PRICING_USD_PER_1M.get(normalized)
    if pricing is None:
        for prefix, family in _FAMILY_PRICING:
            if prefix in normalized:
                pricing = family
                break
    if pricing is None:
        return None
    input_rate, output_rate = pricing
    cost = (prompt_tokens / 1_000_000) * input_rate + (completion_tokens / 1_000_000) * output_rate
    return round(cost, 6)


@dataclass(frozen=True)
class ResolverRequirements:
    needs_tools: bool = True


@dataclass(frozen=True)
class CandidateRank:
    provider: str
    eligible: bool
    reason: str


@dataclass(frozen=True)
class ProviderResolution:
    runtime: ProviderRuntime
    route_reason: str
    ranked_candidates: list[CandidateRank] = field(default_factory=list)

    @property
    def provider(self) -> str:
        return self.runtime.provider_id

    @property
    def model(self) -> str:
        return self.runtime.model


def _ineligibility(settings: ProviderSettings, requirements: ResolverRequirements) -> str:
    """Empty string when eligible, otherwise the reason it isn't."""
    if not settings.connected:
        return "disconnected"
    if not settings.api_key.strip():
        return "missing-api-key"
    if not settings.model.strip():
        return "missing-model"
    if requirements.needs_tools and not settings.tool_calling:
        return "no-tool-calling"
    return ""


def _to_runtime(settings: ProviderSettings) -> ProviderRuntime:
    return ProviderRuntime(
        provider_id=settings.provider_id,
        kind=settings.kind,
        api_key=settings.api_key,
        base_url=settings.base_url,
        model=settings.model,
        connected=settings.connected,
        tool_calling_capable=settings.tool_calling,
    )


class ProviderResolver:
    """Convention-agnostic selection over the integrations config."""

    def __init__(self, preference: tuple[str, ...] = PROVIDER_PREFERENCE):
        self.preference = preference

    def resolve(
        self,
        cfg: NovaConfig,
        requirements: ResolverRequirements | None = None,
    ) -> ProviderResolution:
        requirements = requirements or ResolverRequirements()
        active_id = cfg.llm.active_provider
        ordered = [active_id] + [p for p in self.preference if p != active_id]

        ranked: list[CandidateRank] = []
        chosen: ProviderSettings | None = None
        reason = ""

        for position, provider_id in enumerate(ordered):
            settings = cfg.providers.get(provider_id)
            if settings is None:
                ranked.append(CandidateRank(provider_id, False, "unknown-provider"))
                continue
            problem = _ineligibility(settings, requirements)
            if position > 0 and not cfg.llm.allow_fallback:
                problem = problem or "fallback-disabled"
            ranked.append(CandidateRank(provider_id, not problem, problem or "eligible"))
            if not problem and chosen is None:
                chosen = settings
                reason = (
                    "active-provider-ready" if position == 0 else f"ranked-fallback:{provider_id}"
                )

        if chosen is None:
            summary = ", ".join(f"{c.provider}={c.reason}" for c in ranked)
            raise ProviderUnavailableError(
                f"No generation provider available (active={active_id}; {summary})"
            )

        if reason != "active-provider-ready":
            logger.warning(f"Active provider '{active_id}' unavailable, using {reason}")
        return ProviderResolution(
            runtime=_to_runtime(chosen), route_reason=reason, ranked_candidates=ranked
        )
