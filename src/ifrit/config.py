"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

PROVIDER_KEY_FIELDS = {
    "gemini": "gemini_api_keys",
    "deepseek": "deepseek_api_keys",
    "openrouter": "openrouter_api_keys",
    "vercel": "vercel_api_keys",
    "perplexity": "perplexity_api_keys",
}

KeyList = Annotated[list[str], NoDecode]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="IFRIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    gemini_api_keys: KeyList = Field(default_factory=list, description="Google Gemini API keys")
    deepseek_api_keys: KeyList = Field(default_factory=list, description="DeepSeek API keys")
    openrouter_api_keys: KeyList = Field(default_factory=list, description="OpenRouter API keys")
    vercel_api_keys: KeyList = Field(default_factory=list, description="Vercel AI Gateway keys")
    perplexity_api_keys: KeyList = Field(default_factory=list, description="Perplexity API keys")
    preferred_provider: str = Field(
        default="",
        description="Provider tried first when executing with raw keys",
    )
    default_max_retries: int = Field(
        default=1,
        ge=0,
        description="Extra attempts per handler after the first failure",
    )
    default_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Per-attempt timeout in seconds",
    )
    retry_backoff: float = Field(
        default=0.0,
        ge=0,
        description="Base delay in seconds between retries (0 disables backoff)",
    )
    http_timeout: float = Field(default=60.0, gt=0, description="Provider HTTP timeout in seconds")
    log_diagnostics: bool = Field(default=True, description="Log every execution attempt")

    @field_validator(*PROVIDER_KEY_FIELDS.values(), mode="before")
    @classmethod
    def split_keys(cls, value: object) -> object:
        """Accept comma-separated key lists from the environment."""
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @model_validator(mode="after")
    def validate_preferred_provider(self) -> "Settings":
        """Preferred provider must be a known provider name."""
        if self.preferred_provider and self.preferred_provider not in PROVIDER_KEY_FIELDS:
            valid = ", ".join(sorted(PROVIDER_KEY_FIELDS))
            raise ValueError(
                f"IFRIT_PREFERRED_PROVIDER={self.preferred_provider!r} is not one of: {valid}"
            )
        return self

    @property
    def provider_keys(self) -> dict[str, list[str]]:
        """Configured API keys grouped by provider, empty providers omitted."""
        keys: dict[str, list[str]] = {}
        for provider, field_name in PROVIDER_KEY_FIELDS.items():
            values = getattr(self, field_name)
            if values:
                keys[provider] = list(values)
        return keys


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings instance."""
    return Settings()
