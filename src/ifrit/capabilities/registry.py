"""Registry of capability handlers."""

from __future__ import annotations

import logging
import threading

from ifrit.capabilities.base import CapabilityHandler

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Authoritative list of handlers, kept in registration order."""

    def __init__(self, handlers: list[CapabilityHandler] | None = None) -> None:
        self._handlers: dict[str, CapabilityHandler] = {}
        self._lock = threading.Lock()
        for handler in handlers or []:
            self.register(handler)

    def register(self, handler: CapabilityHandler) -> None:
        """Add or replace a handler by id. Replacement keeps the original slot."""
        if not isinstance(handler, CapabilityHandler):
            raise TypeError(f"Expected CapabilityHandler, got {type(handler).__name__}")
        with self._lock:
            replaced = handler.id in self._handlers
            self._handlers[handler.id] = handler
        if replaced:
            logger.debug("Replaced handler %s", handler.id)
        else:
            logger.debug("Registered handler %s for %s", handler.id, sorted(handler.capabilities))

    def unregister(self, handler_id: str) -> bool:
        with self._lock:
            return self._handlers.pop(handler_id, None) is not None

    def get(self, handler_id: str) -> CapabilityHandler | None:
        with self._lock:
            return self._handlers.get(handler_id)

    def list(self) -> list[CapabilityHandler]:
        with self._lock:
            return list(self._handlers.values())

    def list_for_capability(self, capability: str) -> list[CapabilityHandler]:
        return [handler for handler in self.list() if handler.supports(capability)]

    def set_availability(self, handler_id: str, available: bool) -> bool:
        """Toggle availability from an external health check."""
        with self._lock:
            handler = self._handlers.get(handler_id)
            if handler is None:
                return False
            handler.is_available = available
        logger.info("Handler %s availability set to %s", handler_id, available)
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)

    def __contains__(self, handler_id: object) -> bool:
        with self._lock:
            return handler_id in self._handlers
