"""Capability engine: registry, executor and configuration behind one service."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Any

import httpx

from ifrit.capabilities.base import (
    DEFAULT_CAPABILITIES,
    Capability,
    CapabilityError,
    CapabilityHandler,
    ExecuteRequest,
    ExecuteResult,
    HandlerSource,
)
from ifrit.capabilities.eligibility import resolve_handlers
from ifrit.capabilities.executor import CapabilityExecutor
from ifrit.capabilities.registry import HandlerRegistry
from ifrit.capabilities.settings import CapabilitiesConfig, CapabilitySetting
from ifrit.providers.keys import KeyPool
from ifrit.providers.router import KeysMap, create_provider_handlers

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EngineDiagnostics:
    total_handlers: int
    available_handlers: int
    capabilities_covered: list[str]


class CapabilityEngine:
    """Entry point for capability execution.

    Construct one per application (or per request for isolation) and pass it to
    whatever needs it; nothing here is module-global.
    """

    def __init__(
        self,
        *,
        registry: HandlerRegistry | None = None,
        executor: CapabilityExecutor | None = None,
        config: CapabilitiesConfig | None = None,
        key_pool: KeyPool | None = None,
        http_client: httpx.AsyncClient | None = None,
        capabilities: tuple[Capability, ...] = DEFAULT_CAPABILITIES,
    ) -> None:
        self.registry = registry or HandlerRegistry()
        self.executor = executor or CapabilityExecutor()
        self.key_pool = key_pool or KeyPool()
        self.http_client = http_client
        self._config = config or CapabilitiesConfig()
        self._capabilities: dict[str, Capability] = {cap.id: cap for cap in capabilities}

    # Capabilities

    def get_capabilities(self) -> list[Capability]:
        return list(self._capabilities.values())

    def get_capability(self, capability_id: str) -> Capability | None:
        return self._capabilities.get(capability_id)

    def add_capability(self, capability: Capability) -> None:
        self._capabilities[capability.id] = capability

    def remove_capability(self, capability_id: str) -> None:
        self._capabilities.pop(capability_id, None)

    # Handlers

    def register_handler(self, handler: CapabilityHandler) -> None:
        self.registry.register(handler)

    def get_handlers(self) -> list[CapabilityHandler]:
        return self.registry.list()

    def get_handlers_for(self, capability_id: str) -> list[CapabilityHandler]:
        return self.registry.list_for_capability(capability_id)

    # Configuration

    @property
    def config(self) -> CapabilitiesConfig:
        return self._config

    def update_config(self, config: CapabilitiesConfig) -> None:
        self._config = config

    def update_capability_settings(self, capability_id: str, **changes: Any) -> CapabilitySetting:
        """Merge *changes* into one capability's setting and return it."""
        current = self._config.setting_for(capability_id) or CapabilitySetting()
        updated = CapabilitySetting.model_validate({**current.model_dump(), **changes})
        self._config = self._config.model_copy(
            update={"capability_settings": {**self._config.capability_settings, capability_id: updated}}
        )
        return updated

    def get_diagnostics(self) -> EngineDiagnostics:
        handlers = self.registry.list()
        available = [h for h in handlers if h.is_available]
        covered = sorted({cap for h in available for cap in h.capabilities})
        return EngineDiagnostics(
            total_handlers=len(handlers),
            available_handlers=len(available),
            capabilities_covered=covered,
        )

    # Execution

    async def execute(
        self,
        request: ExecuteRequest,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ExecuteResult:
        """Execute *request* against the registered handlers."""
        if request.capability not in self._capabilities:
            return _unknown_capability(request)
        return await self.executor.execute(
            request,
            self.registry.list(),
            self._config,
            cancel=cancel,
        )

    async def execute_with_keys(
        self,
        request: ExecuteRequest,
        keys_map: KeysMap,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ExecuteResult:
        """Build provider handlers from raw API keys, then execute on them only.

        Keys go into this engine's key pool so rotation and failure tracking
        carry across calls.

        Raises:
            ValueError: if *keys_map* names an unknown provider.
        """
        if request.capability not in self._capabilities:
            return _unknown_capability(request)
        handlers = create_provider_handlers(
            keys_map,
            key_pool=self.key_pool,
            http_client=self.http_client,
        )
        return await self.executor.execute(request, handlers, self._config, cancel=cancel)

    async def execute_aggregate(self, request: ExecuteRequest) -> ExecuteResult:
        """Run every eligible handler concurrently and combine their data.

        Succeeds when at least one handler succeeded. List payloads are
        flattened into one list. Per-handler outcomes land in
        ``metadata["sources"]``.
        """
        started_at = time.monotonic()
        if request.capability not in self._capabilities:
            return _unknown_capability(request)
        try:
            handlers = resolve_handlers(request, self.registry.list(), self._config)
        except CapabilityError as exc:
            return ExecuteResult.failure(str(exc), metadata={"error_code": exc.code})

        outcomes = await asyncio.gather(
            *(self._run_single(handler, request) for handler in handlers),
        )

        data: list[Any] = []
        errors: list[str] = []
        sources: dict[str, dict[str, Any]] = {}
        for handler, outcome in zip(handlers, outcomes):
            if outcome.success:
                if isinstance(outcome.data, list):
                    data.extend(outcome.data)
                else:
                    data.append(outcome.payload)
            else:
                errors.append(f"{handler.id}: {outcome.error}")
            sources[handler.id] = {
                "success": outcome.success,
                "error": outcome.error,
                "count": len(outcome.data) if isinstance(outcome.data, list) else 0,
            }

        succeeded = sum(1 for outcome in outcomes if outcome.success)
        logger.info(
            "Aggregate %s: %d succeeded, %d failed",
            request.capability,
            succeeded,
            len(handlers) - succeeded,
        )
        return ExecuteResult(
            success=succeeded > 0,
            data=data,
            error=None if succeeded else f"All handlers failed: {'; '.join(errors)}",
            handler_used="aggregate",
            source=HandlerSource.LOCAL,
            latency_ms=round((time.monotonic() - started_at) * 1000, 3),
            metadata={
                "sources": sources,
                "total": len(handlers),
                "successful": succeeded,
                "failed": len(handlers) - succeeded,
            },
        )

    async def _run_single(self, handler: CapabilityHandler, request: ExecuteRequest) -> ExecuteResult:
        pinned = replace(request, preferred_handler=handler.id, use_fallback=False)
        return await self.executor.execute(pinned, [handler], self._config)

    # Convenience wrappers

    async def summarize(self, content: str, max_length: int | None = None) -> str:
        result = await self.execute(
            ExecuteRequest(capability="summarize", prompt=content, context={"max_length": max_length})
        )
        return result.text or ""

    async def translate(self, content: str, target_language: str) -> str:
        result = await self.execute(
            ExecuteRequest(
                capability="translate",
                prompt=content,
                context={"target_language": target_language},
            )
        )
        return result.text or ""

    async def research(self, query: str, **context: Any) -> ExecuteResult:
        return await self.execute(ExecuteRequest(capability="research", prompt=query, context=context))


def _unknown_capability(request: ExecuteRequest) -> ExecuteResult:
    return ExecuteResult.failure(
        f"Unknown capability: {request.capability}",
        metadata={"error_code": "unknown_capability"},
    )
