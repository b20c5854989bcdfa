"""Tests for the prompt token ledger."""

import pytest

from nova.core.config import PromptConfig
from nova.llm.budget import (
    PromptLedger,
    compact_to_budget,
    count_tokens,
    resolve_budget_profile,
    trim_history,
)

BIG_SECTION = "lorem ipsum dolor sit amet, " * 300  # ~2100 tokens


@pytest.mark.parametrize(
    "fast_lane, strict",
    [(False, False), (True, False), (False, True), (True, True)],
)
def test_ledger_never_exceeds_budget(fast_lane, strict):
    profile = resolve_budget_profile(PromptConfig(), fast_lane=fast_lane, strict=strict)
    ledger = PromptLedger(profile, "You are Nova.", "what's new?")

    for i in range(10):
        ledger.append(f"Section {i}", BIG_SECTION)

    assert ledger.used <= ledger.max_system_tokens
    assert ledger.used + ledger.user_tokens <= profile.max_prompt_tokens
    assert any(d.included for d in ledger.decisions)
    assert any(not d.included for d in ledger.decisions)


def test_profiles():
    cfg = PromptConfig()
    assert resolve_budget_profile(cfg).name == "normal"
    fast = resolve_budget_profile(cfg, fast_lane=True)
    assert fast.name == "fast"
    assert fast.max_prompt_tokens == cfg.fast_max_prompt_tokens
    strict = resolve_budget_profile(cfg, strict=True)
    assert strict.name == "normal+strict"
    assert strict.section_max_tokens < cfg.section_max_tokens
    assert strict.history_target_tokens < cfg.history_target_tokens


def test_small_section_included_in_full():
    profile = resolve_budget_profile(PromptConfig())
    ledger = PromptLedger(profile, "Base prompt.")
    assert ledger.append("User Preference Memory", "Prefers short answers.") is True
    assert "## User Preference Memory\nPrefers short answers." in ledger.prompt
    assert ledger.decisions[-1].reason == "full"


def test_large_section_is_compacted_to_section_cap():
    profile = resolve_budget_profile(PromptConfig())
    ledger = PromptLedger(profile, "Base prompt.")
    assert ledger.append("Live Web Search Context", BIG_SECTION) is True
    decision = ledger.decisions[-1]
    assert decision.reason == "compacted"
    assert decision.tokens <= profile.section_max_tokens


def test_empty_section_is_skipped():
    ledger = PromptLedger(resolve_budget_profile(PromptConfig()), "Base")
    assert ledger.append("Link Context", "   ") is False
    assert ledger.decisions[-1].reason == "empty_body"


def test_forced_section_uses_hard_ceiling():
    profile = resolve_budget_profile(PromptConfig(), fast_lane=True)
    ledger = PromptLedger(profile, "Base")
    while ledger.append("Filler", BIG_SECTION):
        pass

    assert ledger.append_forced("Strict Output Requirements", "Return exactly one word.") is True
    assert ledger.decisions[-1].forced is True
    assert ledger.used <= ledger.hard_ceiling
    assert ledger.prompt.endswith("Return exactly one word.")


def test_history_budget_keeps_prompt_under_maximum():
    profile = resolve_budget_profile(PromptConfig())
    ledger = PromptLedger(profile, "Base", "hello there")
    ledger.append("Context", BIG_SECTION)
    budget = ledger.history_budget(3200)
    assert 0 <= budget <= 3200
    assert ledger.used + ledger.user_tokens + budget <= profile.max_prompt_tokens


def test_history_budget_respects_configured_max():
    ledger = PromptLedger(resolve_budget_profile(PromptConfig()), "Base", "hi")
    assert ledger.history_budget(100) == 100


def test_trim_history_keeps_newest():
    messages = [{"role": "user", "content": "x" * 400} for _ in range(5)]
    messages.append({"role": "assistant", "content": "latest"})
    trimmed = trim_history(messages, 250)
    assert trimmed[-1]["content"] == "latest"
    assert sum(count_tokens(m["content"]) for m in trimmed) <= 250
    assert len(trimmed) == 3


def test_compact_to_budget():
    assert compact_to_budget("short text", 100) == "short text"
    assert compact_to_budget("anything", 0) == ""
    compacted = compact_to_budget(BIG_SECTION, 50)
    assert count_tokens(compacted) <= 50
    assert compacted.endswith("...")
