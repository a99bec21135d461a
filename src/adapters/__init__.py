"""
AI Routing Engine - Adapters Module

Provider-specific adapters that translate between the canonical
request/response shapes and each provider's native API format.
"""

from typing import Dict, Optional, Type

import httpx

from .base import AdapterConfig, ProviderAdapter
from .openai_adapter import OpenAIAdapter
from .anthropic_adapter import AnthropicAdapter
from .google_adapter import GoogleAdapter
from .stub_adapter import StubAdapter
from ..core.errors import ConfigurationError

__all__ = [
    "AdapterConfig",
    "ProviderAdapter",
    "OpenAIAdapter",
    "AnthropicAdapter",
    "GoogleAdapter",
    "StubAdapter",
    "ADAPTER_CLASSES",
    "get_adapter",
]


ADAPTER_CLASSES: Dict[str, Type] = {
    "openai": OpenAIAdapter,
    "anthropic": AnthropicAdapter,
    "google": GoogleAdapter,
    "stub": StubAdapter,
}


def get_adapter(
    provider: str,
    config: AdapterConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> ProviderAdapter:
    """
    Factory function to get the appropriate adapter for a provider.

    Args:
        provider: Provider name ("openai", "anthropic", "google", "stub")
        config: Adapter configuration with API key
        transport: Optional httpx transport (tests inject a MockTransport)

    Returns:
        Configured adapter instance

    Raises:
        ConfigurationError: If provider is not supported
    """
    adapter_class = ADAPTER_CLASSES.get(provider.lower())
    if not adapter_class:
        raise ConfigurationError(
            f"Unsupported provider: {provider}",
            details={"supported": sorted(ADAPTER_CLASSES)}
        )

    if adapter_class is StubAdapter:
        return adapter_class(config)
    return adapter_class(config, transport=transport)
