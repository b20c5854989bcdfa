"""Tests for the config system."""

import pytest

import nova.core.config as config_module
from nova.core.config import (
    DedupeConfig,
    LLMConfig,
    NovaConfig,
    PromptConfig,
    ProvidersConfig,
    ServerConfig,
    WorkflowConfig,
)


def test_llm_defaults():
    cfg = LLMConfig()
    assert cfg.active_provider == "openai"
    assert cfg.allow_fallback is False
    assert cfg.max_tool_steps == 6
    assert cfg.temperature == 0.7


def test_prompt_defaults():
    cfg = PromptConfig()
    assert cfg.max_prompt_tokens == 6000
    assert cfg.response_reserve_tokens == 1400
    assert cfg.fast_max_prompt_tokens == 3200


def test_dedupe_defaults():
    cfg = DedupeConfig()
    assert cfg.short_window_s == 6.0
    assert cfg.long_window_s == 900.0


def test_llm_from_env(monkeypatch):
    monkeypatch.setenv("NOVA_ACTIVE_PROVIDER", " Claude ")
    monkeypatch.setenv("NOVA_ALLOW_PROVIDER_FALLBACK", "yes")
    monkeypatch.setenv("NOVA_TOOL_LOOP_MAX_STEPS", "99")
    cfg = LLMConfig.from_env()
    assert cfg.active_provider == "claude"
    assert cfg.allow_fallback is True
    assert cfg.max_tool_steps == 32  # clamped


def test_bad_int_falls_back_to_default(monkeypatch):
    monkeypatch.setenv("NOVA_MAX_PROMPT_TOKENS", "lots")
    assert PromptConfig.from_env().max_prompt_tokens == 6000


def test_provider_with_key_counts_as_connected(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    monkeypatch.delenv("NOVA_CLAUDE_CONNECTED", raising=False)
    providers = ProvidersConfig.from_env()
    assert providers.claude.connected is True
    assert providers.claude.kind == "message-block"


def test_provider_can_be_disconnected_explicitly(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("NOVA_OPENAI_CONNECTED", "false")
    assert ProvidersConfig.from_env().openai.connected is False


def test_workflow_timeout_floor(monkeypatch):
    monkeypatch.setenv("NOVA_WORKFLOW_BUILD_TIMEOUT_S", "1")
    monkeypatch.setenv("NOVA_HUD_API_BASE_URL", "http://hud.local:3000/")
    cfg = WorkflowConfig.from_env()
    assert cfg.timeout == 5.0
    assert cfg.builder_url == "http://hud.local:3000"


def test_server_concurrency(monkeypatch):
    monkeypatch.setenv("NOVA_MAX_CONCURRENT_TURNS", "3")
    assert ServerConfig.from_env().max_concurrent_turns == 3


def test_config_frozen():
    cfg = LLMConfig()
    with pytest.raises(Exception):
        cfg.max_tokens = 1  # type: ignore


def test_nova_config_composition():
    cfg = NovaConfig()
    assert cfg.providers.get("gemini").provider_id == "gemini"
    assert cfg.providers.get("nope") is None
    assert cfg.session.max_turns == 20
    assert cfg.workflow.pending_ttl_s == 120.0


def test_reload_config_replaces_singleton(monkeypatch):
    monkeypatch.setenv("NOVA_SESSION_MAX_TURNS", "7")
    cfg = config_module.reload_config()
    assert config_module.config is cfg
    assert cfg.session.max_turns == 7
