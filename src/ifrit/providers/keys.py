"""API key pool with rotation, cooldown and failure tracking."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from ifrit.providers.catalog import get_provider_info

logger = logging.getLogger(__name__)

RATE_LIMIT_COOLDOWN = 60.0
MAX_FAILURES = 10


@dataclass(slots=True)
class ProviderKey:
    key: str
    provider: str
    label: str | None = None
    usage_count: int = 0
    last_used: float = 0.0
    failure_count: int = 0
    disabled: bool = False


@dataclass(frozen=True, slots=True)
class KeyPoolStats:
    provider: str
    total_keys: int
    active_keys: int
    total_usage: int


class KeyPool:
    """Round-robin key selection per provider.

    The least recently used enabled key past its provider cooldown is picked.
    When every key is cooling down the least recently used one is returned
    anyway. Rate-limit failures push a key's cooldown forward without counting
    as a failure; any other failure counts, and ``MAX_FAILURES`` disables it.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._keys: dict[str, list[ProviderKey]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def add_key(self, provider: str, key: str, label: str | None = None) -> bool:
        get_provider_info(provider)
        with self._lock:
            keys = self._keys.setdefault(provider, [])
            if any(existing.key == key for existing in keys):
                return False
            keys.append(ProviderKey(key=key, provider=provider, label=label))
        return True

    def remove_key(self, provider: str, key: str) -> None:
        with self._lock:
            self._keys[provider] = [k for k in self._keys.get(provider, []) if k.key != key]

    def get_keys(self, provider: str) -> list[ProviderKey]:
        with self._lock:
            return list(self._keys.get(provider, []))

    def providers(self) -> list[str]:
        with self._lock:
            return [provider for provider, keys in self._keys.items() if keys]

    def get_next_key(self, provider: str) -> ProviderKey | None:
        cooldown = get_provider_info(provider).cooldown_seconds
        now = self._clock()
        with self._lock:
            enabled = [k for k in self._keys.get(provider, []) if not k.disabled]
            if not enabled:
                return None
            ready = [k for k in enabled if now - k.last_used >= cooldown]
            return min(ready or enabled, key=lambda k: k.last_used)

    def mark_used(self, provider: str, key: str) -> None:
        with self._lock:
            entry = self._find(provider, key)
            if entry is not None:
                entry.usage_count += 1
                entry.last_used = self._clock()

    def mark_failed(
        self,
        provider: str,
        key: str,
        *,
        disable: bool = False,
        rate_limited: bool = False,
    ) -> None:
        with self._lock:
            entry = self._find(provider, key)
            if entry is None:
                return
            if rate_limited:
                entry.last_used = self._clock() + RATE_LIMIT_COOLDOWN
                return
            entry.failure_count += 1
            if disable or entry.failure_count >= MAX_FAILURES:
                entry.disabled = True
                logger.warning("Disabled %s key %s after %d failures", provider, _mask(key), entry.failure_count)

    def reset_failures(self, provider: str, key: str) -> None:
        with self._lock:
            entry = self._find(provider, key)
            if entry is not None:
                entry.failure_count = 0

    def enable_key(self, provider: str, key: str) -> None:
        with self._lock:
            entry = self._find(provider, key)
            if entry is not None:
                entry.disabled = False
                entry.failure_count = 0

    def stats(self) -> list[KeyPoolStats]:
        with self._lock:
            return [
                KeyPoolStats(
                    provider=provider,
                    total_keys=len(keys),
                    active_keys=sum(1 for k in keys if not k.disabled),
                    total_usage=sum(k.usage_count for k in keys),
                )
                for provider, keys in self._keys.items()
            ]

    def _find(self, provider: str, key: str) -> ProviderKey | None:
        for entry in self._keys.get(provider, []):
            if entry.key == key:
                return entry
        return None


def _mask(key: str) -> str:
    return f"{key[:4]}...{key[-4:]}" if len(key) > 8 else "****"
