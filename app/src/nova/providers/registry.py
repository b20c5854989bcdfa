"""
Provider Registry: build the right adapter for a resolved runtime.

Add a new calling convention? Just add an elif. No plugin systems.
"""

from __future__ import annotations

from nova.providers.base import LLMProvider, ProviderRuntime


def build_provider(runtime: ProviderRuntime) -> LLMProvider:
    kind = runtime.kind.lower()
    if kind == "openai-compatible":
        from nova.providers.openai_llm import OpenAICompatibleProvider

        return OpenAICompatibleProvider(runtime)
    elif kind == "message-block":
        from nova.providers.claude_llm import ClaudeProvider

        return ClaudeProvider(runtime)
    raise ValueError(f"Unknown provider kind: {runtime.kind}")


class ProviderPool:
    """Keeps one started adapter per (provider, base_url, key) so turns
    reuse HTTP connections instead of reconnecting every time."""

    def __init__(self, factory=build_provider):
        self._factory = factory
        self._providers: dict[tuple[str, str, str], LLMProvider] = {}

    async def get(self, runtime: ProviderRuntime) -> LLMProvider:
        key = (runtime.provider_id, runtime.base_url, runtime.api_key)
        provider = self._providers.get(key)
        if provider is None or provider.runtime != runtime:
            provider = self._factory(runtime)
            await provider.start()
            self._providers[key] = provider
        return provider

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.stop()
        self._providers.clear()
