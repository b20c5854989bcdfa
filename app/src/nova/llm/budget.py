"""
Prompt Budget: token ledger for the assembled system prompt.

Token counts are approximations (about four characters per token); the
ledger only ever compares approximations against approximations, so
the ceiling holds regardless of the provider's real tokenizer.

Usage:
    profile = resolve_budget_profile(config.prompt, fast_lane=False, strict=False)
    ledger = PromptLedger(profile, base_prompt, user_message)
    ledger.append("User Preferences", prefs)            # admitted or dropped
    ledger.append_forced("Identity", identity)          # outer fallback
    history = trim_history(entries, ledger.history_budget(max_history))
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from nova.core.config import PromptConfig

logger = logging.getLogger(__name__)

# Below these the section isn't worth its header
MIN_AVAILABLE_SYSTEM_TOKENS = 28
MIN_SECTION_BODY_TOKENS = 18
MIN_SECTION_TOKENS = 48
MIN_INPUT_BUDGET = 480
MIN_SYSTEM_BUDGET = 240


def count_tokens(text: str) -> int:
    text = str(text or "")
    return math.ceil(len(text) / 4) if text else 0


def _normalize(text: str) -> str:
    return str(text or "").replace("\r\n", "\n").strip()


def _truncate_at_word_boundary(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    window = text[: max(1, max_chars + 1)]
    cut = max(
        window.rfind("\n"),
        window.rfind(". "),
        window.rfind("; "),
        window.rfind(", "),
        window.rfind(" "),
    )
    index = cut if cut >= int(max_chars * 0.6) else max_chars
    return window[:index].strip() + "..."


def compact_to_budget(text: str, max_tokens: int, min_chars: int = 96) -> str:
    """Shorten text at a word boundary until it fits max_tokens.

    Returns "" when nothing useful fits.
    """
    normalized = _normalize(text)
    if not normalized or max_tokens <= 0:
        return ""
    if count_tokens(normalized) <= max_tokens:
        return normalized

    max_chars = max(min_chars, min(len(normalized), int(max_tokens * 3.4)))
    compacted = _truncate_at_word_boundary(normalized, max_chars)
    for _ in range(8):
        if count_tokens(compacted) <= max_tokens or max_chars <= min_chars:
            break
        max_chars = max(min_chars, min(len(normalized), int(max_chars * 0.82)))
        compacted = _truncate_at_word_boundary(normalized, max_chars)
    # min_chars can still overshoot a tiny budget; hard cut as last resort
    while compacted and count_tokens(compacted) > max_tokens:
        compacted = compacted[: max(0, max_tokens * 4 - 3)].rstrip()
        compacted = compacted + "..." if compacted else ""
    return compacted


@dataclass(frozen=True)
class BudgetProfile:
    """Per-turn token limits."""

    name: str
    max_prompt_tokens: int
    response_reserve_tokens: int
    history_target_tokens: int
    min_history_tokens: int
    section_max_tokens: int

    @property
    def input_budget(self) -> int:
        return max(MIN_INPUT_BUDGET, self.max_prompt_tokens - self.response_reserve_tokens)


def resolve_budget_profile(
    prompt_cfg: PromptConfig, fast_lane: bool = False, strict: bool = False
) -> BudgetProfile:
    """Normal and fast-lane profiles; strict output constraints tighten either."""
    if fast_lane:
        profile = BudgetProfile(
            name="fast",
            max_prompt_tokens=prompt_cfg.fast_max_prompt_tokens,
            response_reserve_tokens=prompt_cfg.fast_response_reserve_tokens,
            history_target_tokens=prompt_cfg.fast_history_target_tokens,
            min_history_tokens=min(prompt_cfg.min_history_tokens, prompt_cfg.fast_history_target_tokens),
            section_max_tokens=prompt_cfg.fast_section_max_tokens,
        )
    else:
        profile = BudgetProfile(
            name="normal",
            max_prompt_tokens=prompt_cfg.max_prompt_tokens,
            response_reserve_tokens=prompt_cfg.response_reserve_tokens,
            history_target_tokens=prompt_cfg.history_target_tokens,
            min_history_tokens=prompt_cfg.min_history_tokens,
            section_max_tokens=prompt_cfg.section_max_tokens,
        )
    if strict:
        profile = BudgetProfile(
            name=f"{profile.name}+strict",
            max_prompt_tokens=profile.max_prompt_tokens,
            response_reserve_tokens=profile.response_reserve_tokens,
            history_target_tokens=int(profile.history_target_tokens * 0.75),
            min_history_tokens=profile.min_history_tokens,
            section_max_tokens=max(MIN_SECTION_TOKENS, int(profile.section_max_tokens * 0.6)),
        )
    return profile


@dataclass
class SectionDecision:
    title: str
    included: bool
    reason: str
    tokens: int = 0
    forced: bool = False


@dataclass
class PromptLedger:
    """Remaining-token counter that gates optional prompt sections.

    The base prompt is the floor and is never checked. Every appended
    section must fit below ``max_system_tokens``; forced sections use the
    hard ceiling of the profile instead, so the prompt as a whole never
    exceeds ``max_prompt_tokens``.
    """

    profile: BudgetProfile
    base_prompt: str
    user_message: str = ""
    decisions: list[SectionDecision] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.prompt = _normalize(self.base_prompt)
        self.user_tokens = count_tokens(self.user_message)
        soft = self.profile.input_budget - self.user_tokens - self.profile.history_target_tokens
        self.max_system_tokens = min(
            max(MIN_SYSTEM_BUDGET, soft), self.hard_ceiling
        )

    @property
    def hard_ceiling(self) -> int:
        """Largest system prompt that still leaves room for the user message."""
        return max(0, self.profile.max_prompt_tokens - self.user_tokens)

    @property
    def used(self) -> int:
        return count_tokens(self.prompt)

    @property
    def remaining(self) -> int:
        return self.max_system_tokens - self.used

    def append(self, title: str, body: str) -> bool:
        """Admit a section if it fits the ledger. Never exceeds the ceiling."""
        return self._append(title, body, self.max_system_tokens, forced=False)

    def append_forced(self, title: str, body: str) -> bool:
        """Ledger first, then the outer fallback against the hard ceiling."""
        if self.append(title, body):
            return True
        if not _normalize(body):
            return False
        return self._append(title, body, self.hard_ceiling, forced=True)

    def _append(self, title: str, body: str, ceiling: int, forced: bool) -> bool:
        body = _normalize(body)
        title = _normalize(title) or "Context"
        if not body:
            self._decide(title, False, "empty_body", forced=forced)
            return False

        available = ceiling - self.used
        if available <= MIN_AVAILABLE_SYSTEM_TOKENS:
            self._decide(title, False, "no_system_budget", forced=forced)
            return False

        header = f"\n\n## {title}\n"
        # Measure the header together with the running prompt, rounding included
        header_tokens = count_tokens(self.prompt + header) - self.used
        section_budget = min(available, max(MIN_SECTION_TOKENS, self.profile.section_max_tokens))
        body_budget = section_budget - header_tokens
        if body_budget <= MIN_SECTION_BODY_TOKENS:
            self._decide(title, False, "header_exhausted", forced=forced)
            return False

        compacted = compact_to_budget(body, body_budget, min_chars=120)
        candidate = f"{self.prompt}{header}{compacted}"
        if compacted and count_tokens(candidate) > ceiling:
            overflow = count_tokens(candidate) - ceiling
            compacted = compact_to_budget(body, max(1, body_budget - overflow - 8), min_chars=120)
            candidate = f"{self.prompt}{header}{compacted}"

        if not compacted or count_tokens(candidate) > ceiling:
            self._decide(title, False, "overflow", forced=forced)
            return False

        self.prompt = candidate
        reason = "compacted" if len(compacted) < len(body) else "full"
        self._decide(title, True, reason, tokens=count_tokens(compacted), forced=forced)
        return True

    def _decide(self, title: str, included: bool, reason: str, tokens: int = 0, forced: bool = False) -> None:
        self.decisions.append(SectionDecision(title, included, reason, tokens, forced))
        logger.debug(
            f"Prompt section '{title}': {'include' if included else 'skip'} "
            f"({reason}{', forced' if forced else ''}) used={self.used}/{self.max_system_tokens}"
        )

    def history_budget(self, max_history_tokens: int) -> int:
        """Tokens left for transcript history once system and user are placed."""
        available = max(0, self.profile.input_budget - self.used - self.user_tokens)
        # Never let history push the whole prompt past the profile maximum
        available = min(
            available, max(0, self.profile.max_prompt_tokens - self.used - self.user_tokens)
        )
        minimum = self.profile.min_history_tokens
        target = max(minimum, self.profile.history_target_tokens)
        if available <= minimum:
            return min(max_history_tokens, available)
        return min(max_history_tokens, max(minimum, min(target, available)))


def trim_history(messages: list[dict], budget_tokens: int) -> list[dict]:
    """Drop the oldest messages until the remainder fits the budget."""
    kept: list[dict] = []
    total = 0
    for msg in reversed(messages):
        tokens = count_tokens(str(msg.get("content") or ""))
        if total + tokens > budget_tokens:
            break
        kept.append(msg)
        total += tokens
    kept.reverse()
    return kept
