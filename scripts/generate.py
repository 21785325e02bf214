#!/usr/bin/env python
"""Run one capability request against the providers configured in the environment."""

import asyncio
import logging
import sys
from pathlib import Path

import httpx

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ifrit.capabilities import CapabilitiesConfig, CapabilityExecutor, ExecuteRequest, ExecutorConfig
from ifrit.capabilities.engine import CapabilityEngine
from ifrit.config import get_settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def main(capability: str, prompt: str) -> int:
    """Execute *prompt* with raw provider keys and print the result."""
    settings = get_settings()
    keys = settings.provider_keys
    if not keys:
        logger.error("No provider keys configured (set IFRIT_GEMINI_API_KEYS, IFRIT_DEEPSEEK_API_KEYS, ...)")
        return 1

    executor = CapabilityExecutor(
        ExecutorConfig(
            default_max_retries=settings.default_max_retries,
            default_timeout=settings.default_timeout,
            retry_backoff=settings.retry_backoff,
            log_diagnostics=settings.log_diagnostics,
        )
    )
    request = ExecuteRequest(
        capability=capability,
        prompt=prompt,
        preferred_handler=settings.preferred_provider or None,
    )
    async with httpx.AsyncClient(timeout=settings.http_timeout) as http_client:
        engine = CapabilityEngine(executor=executor, config=CapabilitiesConfig(), http_client=http_client)
        result = await engine.execute_with_keys(request, keys)

    for provider_id, stats in executor.get_provider_stats().items():
        logger.info(
            "%s: %d call(s), %d error(s), %d%% success, %d ms avg",
            provider_id,
            stats.calls,
            stats.errors,
            stats.success_rate,
            stats.avg_latency_ms,
        )

    if not result.success:
        logger.error("Execution failed: %s (tried: %s)", result.error, ", ".join(result.fallbacks_attempted))
        return 1

    logger.info("Fulfilled by %s in %.0f ms", result.handler_used, result.latency_ms)
    print(result.text or result.data)
    return 0


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(f"Usage: {sys.argv[0]} PROMPT [CAPABILITY]", file=sys.stderr)
        sys.exit(2)
    sys.exit(asyncio.run(main(sys.argv[2] if len(sys.argv) > 2 else "generate", sys.argv[1])))
