"""Static catalog of supported AI providers."""

from dataclasses import dataclass
from typing import Final

TEXT_CAPABILITIES: Final[frozenset[str]] = frozenset(
    {"generate", "summarize", "translate", "keywords", "reasoning", "code"}
)


@dataclass(frozen=True, slots=True)
class ProviderInfo:
    """Connection details and rate limits for one provider."""

    id: str
    name: str
    base_url: str
    default_model: str
    requests_per_minute: int
    requests_per_day: int
    cooldown_seconds: float
    priority: int
    capabilities: frozenset[str] = TEXT_CAPABILITIES
    api_style: str = "openai"


PROVIDERS: Final[dict[str, ProviderInfo]] = {
    "gemini": ProviderInfo(
        id="gemini",
        name="Google Gemini",
        base_url="https://generativelanguage.googleapis.com/v1beta",
        default_model="gemini-2.5-flash",
        requests_per_minute=15,
        requests_per_day=1500,
        cooldown_seconds=4.0,
        priority=100,
        api_style="gemini",
    ),
    "deepseek": ProviderInfo(
        id="deepseek",
        name="DeepSeek",
        base_url="https://api.deepseek.com/v1",
        default_model="deepseek-chat",
        requests_per_minute=60,
        requests_per_day=10000,
        cooldown_seconds=1.0,
        priority=80,
    ),
    "openrouter": ProviderInfo(
        id="openrouter",
        name="OpenRouter",
        base_url="https://openrouter.ai/api/v1",
        default_model="deepseek/deepseek-chat:free",
        requests_per_minute=20,
        requests_per_day=50,
        cooldown_seconds=3.0,
        priority=60,
    ),
    "vercel": ProviderInfo(
        id="vercel",
        name="Vercel AI Gateway",
        base_url="https://api.vercel.ai/v1",
        default_model="anthropic/claude-sonnet-4",
        requests_per_minute=60,
        requests_per_day=1000,
        cooldown_seconds=1.0,
        priority=50,
    ),
    "perplexity": ProviderInfo(
        id="perplexity",
        name="Perplexity AI",
        base_url="https://api.perplexity.ai",
        default_model="sonar",
        requests_per_minute=3,
        requests_per_day=5000,
        cooldown_seconds=0.35,
        priority=40,
        capabilities=TEXT_CAPABILITIES | {"research"},
    ),
}


def get_provider_info(provider: str) -> ProviderInfo:
    """Return catalog entry for *provider*.

    Raises:
        ValueError: if the provider is unknown.
    """
    try:
        return PROVIDERS[provider]
    except KeyError:
        valid = ", ".join(PROVIDERS)
        raise ValueError(f"Unsupported AI provider: {provider!r}. Valid: {valid}") from None
