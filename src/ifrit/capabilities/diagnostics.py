"""In-memory record of execution attempts and derived provider statistics."""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DiagnosticsRecord:
    """One handler attempt."""

    provider_id: str
    handler_id: str
    capability: str
    request_time: float
    response_time: float = 0.0
    latency_ms: float = 0.0
    model: str | None = None
    tokens_input: int | None = None
    tokens_output: int | None = None
    retry_count: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def error(self) -> str | None:
        return self.errors[-1] if self.errors else None

    @property
    def tokens_used(self) -> int | None:
        if self.tokens_input is None and self.tokens_output is None:
            return None
        return (self.tokens_input or 0) + (self.tokens_output or 0)


@dataclass(frozen=True, slots=True)
class ProviderStats:
    calls: int
    errors: int
    success_rate: int
    avg_latency_ms: int


DiagnosticsListener = Callable[[DiagnosticsRecord], None]


class DiagnosticsLog:
    """Append-only attempt log shared by concurrent executions.

    Entries are only dropped by :meth:`clear`, or when an explicit
    ``max_entries`` bound is configured (oldest first).
    """

    def __init__(
        self,
        *,
        max_entries: int | None = None,
        listener: DiagnosticsListener | None = None,
    ) -> None:
        self._records: list[DiagnosticsRecord] = []
        self._lock = threading.Lock()
        self.max_entries = max_entries
        self.listener = listener

    def record(self, entry: DiagnosticsRecord) -> None:
        with self._lock:
            self._records.append(entry)
            if self.max_entries is not None and len(self._records) > self.max_entries:
                del self._records[: len(self._records) - self.max_entries]
        if self.listener is not None:
            try:
                self.listener(entry)
            except Exception:
                logger.exception("Diagnostics listener failed for %s", entry.handler_id)

    def get_log(self) -> list[DiagnosticsRecord]:
        with self._lock:
            return list(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def get_provider_stats(self) -> dict[str, ProviderStats]:
        """Group records by provider and compute call/error/latency aggregates."""
        totals: dict[str, list[float]] = {}
        for entry in self.get_log():
            calls, errors, latency = totals.get(entry.provider_id, [0, 0, 0.0])
            totals[entry.provider_id] = [
                calls + 1,
                errors + (0 if entry.success else 1),
                latency + entry.latency_ms,
            ]

        return {
            provider_id: ProviderStats(
                calls=int(calls),
                errors=int(errors),
                success_rate=_round_half_up(100 * (calls - errors) / calls),
                avg_latency_ms=_round_half_up(latency / calls),
            )
            for provider_id, (calls, errors, latency) in totals.items()
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def _round_half_up(value: float) -> int:
    # Halves round up (62.5 -> 63); inputs are never negative.
    return math.floor(value + 0.5)
