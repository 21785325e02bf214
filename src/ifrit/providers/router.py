"""Handler factory functions for raw provider API keys."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

import httpx

from ifrit.capabilities.base import CapabilityHandler, ExecuteRequest, ExecuteResult, HandlerSource
from ifrit.providers.catalog import get_provider_info
from ifrit.providers.clients import ProviderClient, ProviderError, create_client
from ifrit.providers.keys import KeyPool

logger = logging.getLogger(__name__)

KeysMap = Mapping[str, str | Sequence[str]]


def load_keys(key_pool: KeyPool, keys_map: KeysMap) -> list[str]:
    """Add every key in *keys_map* to *key_pool*; return providers with keys.

    Raises:
        ValueError: if a provider name is unknown.
    """
    providers: list[str] = []
    for provider, keys in keys_map.items():
        get_provider_info(provider)
        values = [keys] if isinstance(keys, str) else list(keys)
        values = [value.strip() for value in values if value and value.strip()]
        for value in values:
            key_pool.add_key(provider, value)
        if values:
            providers.append(provider)
    return providers


def create_provider_handler(
    provider: str,
    key_pool: KeyPool,
    *,
    client: ProviderClient | None = None,
) -> CapabilityHandler:
    """Wrap one provider client as a capability handler drawing keys from *key_pool*."""
    info = get_provider_info(provider)
    client = client or create_client(provider)

    async def execute(request: ExecuteRequest) -> ExecuteResult:
        key = key_pool.get_next_key(provider)
        if key is None:
            return ExecuteResult.failure(
                f"No API key available for provider: {provider}",
                source=HandlerSource.AI_PROVIDER,
            )
        try:
            result = await client.chat(key.key, request)
        except ProviderError as exc:
            key_pool.mark_failed(provider, key.key, rate_limited=exc.rate_limited)
            raise
        if result.success:
            key_pool.mark_used(provider, key.key)
            key_pool.reset_failures(provider, key.key)
        else:
            key_pool.mark_failed(provider, key.key)
        return result

    return CapabilityHandler(
        id=provider,
        name=info.name,
        capabilities=info.capabilities,
        execute=execute,
        source=HandlerSource.AI_PROVIDER,
        provider_id=provider,
        priority=info.priority,
        requires_api_key=True,
    )


def create_provider_handlers(
    keys_map: KeysMap,
    *,
    key_pool: KeyPool | None = None,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 60.0,
) -> list[CapabilityHandler]:
    """Create one handler per provider that has at least one key.

    Raises:
        ValueError: if a provider name is unknown.
    """
    key_pool = key_pool or KeyPool()
    handlers = [
        create_provider_handler(
            provider,
            key_pool,
            client=create_client(provider, http_client=http_client, timeout=timeout),
        )
        for provider in load_keys(key_pool, keys_map)
    ]
    logger.debug("Built %d provider handler(s): %s", len(handlers), ", ".join(h.id for h in handlers))
    return handlers
