"""
Nova Providers: generation adapters and provider selection.

The resolver picks a provider from config; the registry builds the
adapter for its calling convention (openai-compatible or message-block).
"""

from nova.providers.base import (
    LLMProvider,
    ProviderRuntime,
    ProviderTransportError,
    ProviderUnavailableError,
)
from nova.providers.registry import ProviderPool, build_provider
from nova.providers.resolver import ProviderResolution, ProviderResolver, ResolverRequirements

__all__ = [
    "LLMProvider",
    "ProviderRuntime",
    "ProviderTransportError",
    "ProviderUnavailableError",
    "ProviderPool",
    "build_provider",
    "ProviderResolution",
    "ProviderResolver",
    "ResolverRequirements",
]
