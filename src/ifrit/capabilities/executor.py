"""Retry/fallback execution of capability requests across handlers.

The executor never knows which provider will run. It receives a request, the
registered handlers and the caller's capability settings, then tries eligible
handlers one at a time: each handler gets ``max_retries + 1`` attempts before
the executor falls back to the next one. Attempts are strictly sequential so a
paid API is never called twice in parallel for the same request.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable
from dataclasses import replace
from functools import lru_cache

from ifrit.capabilities.base import (
    CapabilityError,
    CapabilityHandler,
    ExecuteRequest,
    ExecuteResult,
)
from ifrit.capabilities.diagnostics import (
    DiagnosticsListener,
    DiagnosticsLog,
    DiagnosticsRecord,
    ProviderStats,
)
from ifrit.capabilities.eligibility import resolve_handlers
from ifrit.capabilities.settings import CapabilitiesConfig, ExecutorConfig
from ifrit.capabilities.validation import ResultValidator
from ifrit.config import get_settings

logger = logging.getLogger(__name__)

CANCELLED_ERROR = "Execution cancelled"


class ExecutionCancelled(Exception):
    """Raised internally when the caller's cancel signal fires mid-attempt."""

    def __init__(self, record: DiagnosticsRecord | None = None) -> None:
        super().__init__(CANCELLED_ERROR)
        self.record = record


class CapabilityExecutor:
    """Provider-agnostic executor with retry, fallback and diagnostics."""

    def __init__(
        self,
        config: ExecutorConfig | None = None,
        *,
        validator: ResultValidator | None = None,
        diagnostics: DiagnosticsLog | None = None,
        on_diagnostics: DiagnosticsListener | None = None,
    ) -> None:
        self.config = config or ExecutorConfig()
        self.validator = validator or ResultValidator()
        self.diagnostics = diagnostics or DiagnosticsLog(max_entries=self.config.max_log_entries)
        if on_diagnostics is not None:
            self.diagnostics.listener = on_diagnostics

    async def execute(
        self,
        request: ExecuteRequest,
        handlers: Iterable[CapabilityHandler],
        capabilities_config: CapabilitiesConfig | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ExecuteResult:
        """Execute *request* and return one terminal result.

        Expected failures (disabled capability, no handlers, provider errors,
        timeouts, cancellation) come back as ``success=False`` results.

        Raises:
            ValueError: if ``request.max_retries`` is negative or
                ``request.timeout`` is not positive.
        """
        started_at = time.monotonic()
        capabilities_config = capabilities_config or CapabilitiesConfig()
        max_retries = (
            self.config.default_max_retries if request.max_retries is None else request.max_retries
        )
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        timeout = self.config.default_timeout if request.timeout is None else request.timeout
        if timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {timeout}")
        use_fallback = (
            capabilities_config.auto_fallback if request.use_fallback is None else request.use_fallback
        )

        try:
            candidates = resolve_handlers(
                request,
                handlers,
                capabilities_config,
                use_fallback=use_fallback,
            )
        except CapabilityError as exc:
            logger.warning("Rejected %s: %s", request.capability, exc)
            return ExecuteResult.failure(
                str(exc),
                latency_ms=_elapsed_ms(started_at),
                metadata={"error_code": exc.code},
            )

        logger.debug(
            "Executing %s with %d candidate handler(s): %s",
            request.capability,
            len(candidates),
            ", ".join(h.id for h in candidates),
        )

        attempted: list[str] = []
        last_error = ""
        last_record: DiagnosticsRecord | None = None

        for handler in candidates:
            attempted.append(handler.id)
            for attempt in range(max_retries + 1):
                if cancel is not None and cancel.is_set():
                    tried = attempted if attempt > 0 else attempted[:-1]
                    return self._cancelled_result(started_at, tried, last_record)
                if attempt > 0:
                    await self._backoff(attempt)

                try:
                    accepted, record = await self._attempt(handler, request, attempt, timeout, cancel)
                except ExecutionCancelled as exc:
                    return self._cancelled_result(started_at, attempted, exc.record)
                last_record = record

                if accepted is not None:
                    logger.info(
                        "%s fulfilled by %s (attempt %d, %.0f ms)",
                        request.capability,
                        handler.id,
                        attempt + 1,
                        record.latency_ms,
                    )
                    return replace(
                        accepted,
                        handler_used=handler.id,
                        source=handler.source,
                        latency_ms=record.latency_ms,
                        diagnostics=record,
                        fallbacks_attempted=attempted[:-1],
                    )

                last_error = record.error or "Unknown error"
                logger.warning(
                    "Handler %s failed %s (attempt %d/%d): %s",
                    handler.id,
                    request.capability,
                    attempt + 1,
                    max_retries + 1,
                    last_error,
                )

            if not use_fallback:
                break

        logger.error("All handlers failed for %s: %s", request.capability, ", ".join(attempted))
        return ExecuteResult.failure(
            f"All handlers failed for {request.capability}. Last error: {last_error}",
            latency_ms=_elapsed_ms(started_at),
            diagnostics=last_record,
            fallbacks_attempted=attempted,
            metadata={"error_code": "handlers_exhausted"},
        )

    async def _attempt(
        self,
        handler: CapabilityHandler,
        request: ExecuteRequest,
        attempt: int,
        timeout: float,
        cancel: asyncio.Event | None,
    ) -> tuple[ExecuteResult | None, DiagnosticsRecord]:
        """Run one invocation and record it. Returns the result only when accepted."""
        record = DiagnosticsRecord(
            provider_id=handler.stats_key,
            handler_id=handler.id,
            capability=request.capability,
            request_time=time.time(),
            model=request.model,
            retry_count=attempt,
        )
        accepted: ExecuteResult | None = None
        started_at = time.monotonic()
        logger.debug("Trying %s for %s (attempt %d)", handler.id, request.capability, attempt + 1)

        try:
            result = await self._invoke(handler, request, timeout, cancel)
            accepted = self._inspect(handler, request, result, record)
        except ExecutionCancelled as exc:
            record.errors.append(CANCELLED_ERROR)
            exc.record = record
            raise
        except asyncio.CancelledError:
            record.errors.append(CANCELLED_ERROR)
            raise
        except TimeoutError:
            record.errors.append(f"Timeout after {timeout:g}s")
        except Exception as exc:
            record.errors.append(str(exc) or type(exc).__name__)
        finally:
            record.response_time = time.time()
            record.latency_ms = _elapsed_ms(started_at)
            self._record(record)

        return accepted, record

    def _inspect(
        self,
        handler: CapabilityHandler,
        request: ExecuteRequest,
        result: object,
        record: DiagnosticsRecord,
    ) -> ExecuteResult | None:
        if not isinstance(result, ExecuteResult):
            raise TypeError(
                f"Handler {handler.id} returned {type(result).__name__}, expected ExecuteResult"
            )
        if result.usage is not None:
            record.tokens_input = result.usage.input_tokens
            record.tokens_output = result.usage.output_tokens
        if result.model:
            record.model = result.model
        if not result.success:
            record.errors.append(result.error or "Unknown error")
            return None
        validation_error = self.validator.validate(request.capability, result.payload)
        if validation_error:
            record.errors.append(validation_error)
            return None
        return result

    async def _invoke(
        self,
        handler: CapabilityHandler,
        request: ExecuteRequest,
        timeout: float,
        cancel: asyncio.Event | None,
    ) -> ExecuteResult:
        if cancel is None:
            return await asyncio.wait_for(handler.execute(request), timeout)

        call = asyncio.ensure_future(handler.execute(request))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {call, waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()
            if not call.done():
                await _discard(call)

        if call in done:
            return call.result()
        if waiter in done:
            raise ExecutionCancelled
        raise TimeoutError

    async def _backoff(self, attempt: int) -> None:
        if self.config.retry_backoff <= 0:
            return
        delay = min(self.config.retry_backoff * (2 ** (attempt - 1)), self.config.retry_backoff_max)
        logger.debug("Backing off %.2fs before retry %d", delay, attempt)
        await asyncio.sleep(delay)

    def _record(self, record: DiagnosticsRecord) -> None:
        self.diagnostics.record(record)
        if self.config.log_diagnostics:
            logger.debug(
                "Attempt %s/%s capability=%s latency=%.0fms tokens=%s errors=%s",
                record.provider_id,
                record.handler_id,
                record.capability,
                record.latency_ms,
                record.tokens_used,
                record.errors,
            )

    def _cancelled_result(
        self,
        started_at: float,
        attempted: list[str],
        last_record: DiagnosticsRecord | None,
    ) -> ExecuteResult:
        logger.info("Execution cancelled after trying: %s", ", ".join(attempted) or "nothing")
        return ExecuteResult.failure(
            CANCELLED_ERROR,
            latency_ms=_elapsed_ms(started_at),
            diagnostics=last_record,
            fallbacks_attempted=list(attempted),
            metadata={"error_code": "cancelled"},
        )

    def get_diagnostics_log(self) -> list[DiagnosticsRecord]:
        return self.diagnostics.get_log()

    def clear_diagnostics_log(self) -> None:
        self.diagnostics.clear()

    def get_provider_stats(self) -> dict[str, ProviderStats]:
        return self.diagnostics.get_provider_stats()

    def update_config(self, **changes: object) -> ExecutorConfig:
        """Apply *changes* to the executor config, re-validating the result."""
        self.config = self.config.merged(**changes)
        self.diagnostics.max_entries = self.config.max_log_entries
        return self.config


def _elapsed_ms(started_at: float) -> float:
    return round((time.monotonic() - started_at) * 1000, 3)


async def _discard(call: asyncio.Future) -> None:
    """Cancel an abandoned handler call and wait for it to unwind."""
    call.cancel()
    await asyncio.wait({call})
    if not call.cancelled() and call.exception() is not None:
        logger.debug("Abandoned handler call ended with %r", call.exception())


@lru_cache(maxsize=1)
def get_capability_executor() -> CapabilityExecutor:
    """Process-wide executor built from application settings.

    Prefer constructing a :class:`CapabilityExecutor` and passing it where it is
    needed; this accessor serves scripts and quick entry points.
    """
    settings = get_settings()
    return CapabilityExecutor(
        ExecutorConfig(
            default_max_retries=settings.default_max_retries,
            default_timeout=settings.default_timeout,
            retry_backoff=settings.retry_backoff,
            log_diagnostics=settings.log_diagnostics,
        )
    )
