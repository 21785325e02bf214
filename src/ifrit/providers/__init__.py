"""AI provider clients, key rotation and handler factories."""

from ifrit.providers.catalog import PROVIDERS, ProviderInfo, get_provider_info
from ifrit.providers.clients import (
    GeminiClient,
    OpenAICompatibleClient,
    OpenRouterClient,
    ProviderClient,
    ProviderError,
    create_client,
)
from ifrit.providers.keys import KeyPool, KeyPoolStats, ProviderKey
from ifrit.providers.router import create_provider_handler, create_provider_handlers, load_keys

__all__ = [
    "GeminiClient",
    "KeyPool",
    "KeyPoolStats",
    "OpenAICompatibleClient",
    "OpenRouterClient",
    "PROVIDERS",
    "ProviderClient",
    "ProviderError",
    "ProviderInfo",
    "ProviderKey",
    "create_client",
    "create_provider_handler",
    "create_provider_handlers",
    "get_provider_info",
    "load_keys",
]
