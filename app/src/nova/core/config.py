"""
Nova Configuration: single source of truth for all settings.

Reads from environment variables with sensible defaults.
No config files, no YAML. Just env vars (and an optional .env).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

# Preference order used when the active provider can't serve a turn
PROVIDER_PREFERENCE = ("openai", "claude", "grok", "gemini")


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int, lo: int | None = None, hi: int | None = None) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        value = default
    if lo is not None:
        value = max(lo, value)
    if hi is not None:
        value = min(hi, value)
    return value


@dataclass(frozen=True)
class ProviderSettings:
    """Connection settings for one generation provider."""

    provider_id: str
    kind: str = "openai-compatible"  # or "message-block"
    api_key: str = ""
    base_url: str = ""
    model: str = ""
    connected: bool = False
    tool_calling: bool = True

    @classmethod
    def from_env(
        cls,
        provider_id: str,
        kind: str,
        key_var: str,
        default_base_url: str,
        default_model: str,
    ) -> ProviderSettings:
        prefix = f"NOVA_{provider_id.upper()}"
        api_key = os.getenv(key_var, "")
        return cls(
            provider_id=provider_id,
            kind=kind,
            api_key=api_key,
            base_url=os.getenv(f"{prefix}_BASE_URL", default_base_url),
            model=os.getenv(f"{prefix}_MODEL", default_model),
            # A provider with a key counts as connected unless explicitly disabled
            connected=_env_bool(f"{prefix}_CONNECTED", bool(api_key)),
            tool_calling=_env_bool(f"{prefix}_TOOL_CALLING", True),
        )


@dataclass(frozen=True)
class ProvidersConfig:
    """Integrations store: one entry per configured provider variant."""

    openai: ProviderSettings = field(
        default_factory=lambda: ProviderSettings(
            "openai", base_url="https://api.openai.com/v1", model="gpt-4.1-mini"
        )
    )
    claude: ProviderSettings = field(
        default_factory=lambda: ProviderSettings(
            "claude",
            kind="message-block",
            base_url="https://api.anthropic.com",
            model="claude-sonnet-4-20250514",
        )
    )
    grok: ProviderSettings = field(
        default_factory=lambda: ProviderSettings(
            "grok", base_url="https://api.x.ai/v1", model="grok-4-0709"
        )
    )
    gemini: ProviderSettings = field(
        default_factory=lambda: ProviderSettings(
            "gemini",
            base_url="https://generativelanguage.googleapis.com/v1beta/openai",
            model="gemini-2.5-pro",
        )
    )

    def get(self, provider_id: str) -> ProviderSettings | None:
        return getattr(self, provider_id, None)

    def all(self) -> list[ProviderSettings]:
        return [self.openai, self.claude, self.grok, self.gemini]

    @classmethod
    def from_env(cls) -> ProvidersConfig:
        return cls(
            openai=ProviderSettings.from_env(
                "openai",
                "openai-compatible",
                "OPENAI_API_KEY",
                "https://api.openai.com/v1",
                "gpt-4.1-mini",
            ),
            claude=ProviderSettings.from_env(
                "claude",
                "message-block",
                "ANTHROPIC_API_KEY",
                "https://api.anthropic.com",
                "claude-sonnet-4-20250514",
            ),
            grok=ProviderSettings.from_env(
                "grok",
                "openai-compatible",
                "XAI_API_KEY",
                "https://api.x.ai/v1",
                "grok-4-0709",
            ),
            gemini=ProviderSettings.from_env(
                "gemini",
                "openai-compatible",
                "GEMINI_API_KEY",
                "https://generativelanguage.googleapis.com/v1beta/openai",
                "gemini-2.5-pro",
            ),
        )


@dataclass(frozen=True)
class LLMConfig:
    """Generation settings shared by every provider."""

    active_provider: str = "openai"
    allow_fallback: bool = False
    fallback_model: str = ""
    max_tokens: int = 1200
    temperature: float = 0.7
    max_tool_steps: int = 6
    request_timeout: float = 60.0

    @classmethod
    def from_env(cls) -> LLMConfig:
        return cls(
            active_provider=os.getenv("NOVA_ACTIVE_PROVIDER", "openai").strip().lower(),
            allow_fallback=_env_bool("NOVA_ALLOW_PROVIDER_FALLBACK"),
            fallback_model=os.getenv("NOVA_FALLBACK_MODEL", "").strip(),
            max_tokens=_env_int("NOVA_LLM_MAX_TOKENS", 1200, lo=64),
            temperature=float(os.getenv("NOVA_LLM_TEMPERATURE", "0.7")),
            max_tool_steps=_env_int("NOVA_TOOL_LOOP_MAX_STEPS", 6, lo=1, hi=32),
            request_timeout=float(os.getenv("NOVA_LLM_REQUEST_TIMEOUT", "60.0")),
        )


@dataclass(frozen=True)
class PromptConfig:
    """Token budget for the assembled prompt."""

    max_prompt_tokens: int = 6000
    response_reserve_tokens: int = 1400
    history_target_tokens: int = 1400
    min_history_tokens: int = 220
    section_max_tokens: int = 1000
    # Fast lane: simple chat, no enrichment
    fast_max_prompt_tokens: int = 3200
    fast_response_reserve_tokens: int = 900
    fast_history_target_tokens: int = 900
    fast_section_max_tokens: int = 500

    @classmethod
    def from_env(cls) -> PromptConfig:
        return cls(
            max_prompt_tokens=_env_int("NOVA_MAX_PROMPT_TOKENS", 6000, lo=1200, hi=64000),
            response_reserve_tokens=_env_int(
                "NOVA_PROMPT_RESPONSE_RESERVE_TOKENS", 1400, lo=128, hi=16000
            ),
            history_target_tokens=_env_int(
                "NOVA_PROMPT_HISTORY_TARGET_TOKENS", 1400, lo=0, hi=32000
            ),
            min_history_tokens=_env_int(
                "NOVA_PROMPT_MIN_HISTORY_TOKENS", 220, lo=0, hi=8000
            ),
            section_max_tokens=_env_int(
                "NOVA_PROMPT_CONTEXT_SECTION_MAX_TOKENS", 1000, lo=48, hi=8000
            ),
            fast_max_prompt_tokens=_env_int("NOVA_FAST_MAX_PROMPT_TOKENS", 3200, lo=800),
            fast_response_reserve_tokens=_env_int(
                "NOVA_FAST_RESPONSE_RESERVE_TOKENS", 900, lo=128
            ),
            fast_history_target_tokens=_env_int(
                "NOVA_FAST_HISTORY_TARGET_TOKENS", 900, lo=0
            ),
            fast_section_max_tokens=_env_int("NOVA_FAST_SECTION_MAX_TOKENS", 500, lo=48),
        )


@dataclass(frozen=True)
class EnrichmentConfig:
    """Concurrent context lookups and their time limits (milliseconds)."""

    memory_timeout_ms: int = 450
    web_timeout_ms: int = 900
    link_timeout_ms: int = 900
    max_links: int = 2
    link_max_chars: int = 1800
    memory_top_k: int = 3
    memory_item_chars: int = 600

    @classmethod
    def from_env(cls) -> EnrichmentConfig:
        return cls(
            memory_timeout_ms=_env_int("NOVA_MEMORY_RECALL_TIMEOUT_MS", 450, lo=150),
            web_timeout_ms=_env_int("NOVA_WEB_PRELOAD_TIMEOUT_MS", 900, lo=250),
            link_timeout_ms=_env_int("NOVA_LINK_PRELOAD_TIMEOUT_MS", 900, lo=250),
            max_links=_env_int("NOVA_LINK_MAX", 2, lo=1, hi=5),
            link_max_chars=_env_int("NOVA_LINK_MAX_CHARS", 1800, lo=200),
            memory_top_k=_env_int("NOVA_MEMORY_RECALL_TOP_K", 3, lo=1, hi=10),
            memory_item_chars=_env_int("NOVA_MEMORY_RECALL_ITEM_CHARS", 600, lo=80),
        )


@dataclass(frozen=True)
class DedupeConfig:
    """Inbound duplicate suppression windows."""

    short_window_s: float = 6.0
    long_window_s: float = 900.0
    max_entries: int = 2000

    @classmethod
    def from_env(cls) -> DedupeConfig:
        return cls(
            short_window_s=float(os.getenv("NOVA_DEDUPE_CONTENT_WINDOW_S", "6")),
            long_window_s=float(os.getenv("NOVA_DEDUPE_ID_WINDOW_S", "900")),
            max_entries=_env_int("NOVA_DEDUPE_MAX_ENTRIES", 2000, lo=16),
        )


@dataclass(frozen=True)
class MemoryConfig:
    """Recall index settings."""

    db_path: str = "nova_memory.db"
    embedding_model: str = "text-embedding-3-small"
    similarity_threshold: float = 0.3

    @classmethod
    def from_env(cls) -> MemoryConfig:
        return cls(
            db_path=os.getenv("NOVA_MEMORY_DB_PATH", "nova_memory.db"),
            embedding_model=os.getenv("NOVA_EMBEDDING_MODEL", "text-embedding-3-small"),
            similarity_threshold=float(os.getenv("NOVA_MEMORY_THRESHOLD", "0.3")),
        )


@dataclass(frozen=True)
class SessionConfig:
    """Transcript store settings."""

    db_path: str = "nova_sessions.db"
    max_turns: int = 20
    max_history_tokens: int = 3200

    @classmethod
    def from_env(cls) -> SessionConfig:
        return cls(
            db_path=os.getenv("NOVA_SESSION_DB_PATH", "nova_sessions.db"),
            max_turns=_env_int("NOVA_SESSION_MAX_TURNS", 20, lo=1, hi=1000),
            max_history_tokens=_env_int(
                "NOVA_SESSION_MAX_HISTORY_TOKENS", 3200, lo=0, hi=64000
            ),
        )


@dataclass(frozen=True)
class WorkspaceConfig:
    """Persona workspace (MEMORY.md and friends)."""

    root: str = "workspace"
    memory_max_facts: int = 80

    @classmethod
    def from_env(cls) -> WorkspaceConfig:
        return cls(
            root=os.getenv("NOVA_WORKSPACE_DIR", "workspace"),
            memory_max_facts=_env_int("NOVA_MEMORY_MAX_FACTS", 80, lo=1),
        )


@dataclass(frozen=True)
class WorkflowConfig:
    """External mission builder service."""

    builder_url: str = "http://localhost:3000"
    engine: str = "src"
    timeout: float = 45.0
    access_token: str = ""
    pending_ttl_s: float = 120.0
    result_ttl_s: float = 300.0

    @classmethod
    def from_env(cls) -> WorkflowConfig:
        return cls(
            builder_url=os.getenv("NOVA_HUD_API_BASE_URL", "http://localhost:3000").rstrip("/"),
            engine=os.getenv("NOVA_WORKFLOW_ENGINE", "src"),
            timeout=max(5.0, float(os.getenv("NOVA_WORKFLOW_BUILD_TIMEOUT_S", "45"))),
            access_token=os.getenv("NOVA_MISSIONS_TOKEN", ""),
            pending_ttl_s=float(os.getenv("NOVA_MISSION_BUILD_PENDING_TTL_S", "120")),
            result_ttl_s=float(os.getenv("NOVA_MISSION_BUILD_RESULT_TTL_S", "300")),
        )


@dataclass(frozen=True)
class MediaConfig:
    """Media control backends."""

    spotify_token: str = ""
    intent_max_tokens: int = 160

    @classmethod
    def from_env(cls) -> MediaConfig:
        return cls(
            spotify_token=os.getenv("SPOTIFY_ACCESS_TOKEN", ""),
            intent_max_tokens=_env_int("NOVA_SPOTIFY_INTENT_MAX_TOKENS", 160, lo=32),
        )


@dataclass(frozen=True)
class ServerConfig:
    """Server and process settings."""

    host: str = "0.0.0.0"
    port: int = 8000
    max_concurrent_turns: int = 8

    @classmethod
    def from_env(cls) -> ServerConfig:
        return cls(
            host=os.getenv("NOVA_HOST", "0.0.0.0"),
            port=int(os.getenv("NOVA_PORT", "8000")),
            max_concurrent_turns=_env_int("NOVA_MAX_CONCURRENT_TURNS", 8, lo=1, hi=256),
        )


@dataclass(frozen=True)
class NovaConfig:
    """Root configuration: one object to rule them all."""

    providers: ProvidersConfig = field(default_factory=ProvidersConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    prompt: PromptConfig = field(default_factory=PromptConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    dedupe: DedupeConfig = field(default_factory=DedupeConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    media: MediaConfig = field(default_factory=MediaConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls) -> NovaConfig:
        return cls(
            providers=ProvidersConfig.from_env(),
            llm=LLMConfig.from_env(),
            prompt=PromptConfig.from_env(),
            enrichment=EnrichmentConfig.from_env(),
            dedupe=DedupeConfig.from_env(),
            memory=MemoryConfig.from_env(),
            session=SessionConfig.from_env(),
            workspace=WorkspaceConfig.from_env(),
            workflow=WorkflowConfig.from_env(),
            media=MediaConfig.from_env(),
            server=ServerConfig.from_env(),
        )


# Singleton: import this wherever you need config
config = NovaConfig.from_env()


def reload_config() -> NovaConfig:
    """Re-read the environment and replace the module singleton."""
    global config
    config = NovaConfig.from_env()
    return config
