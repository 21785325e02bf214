"""Configuration models consumed by the executor."""

from pydantic import BaseModel, ConfigDict, Field


class CapabilitySetting(BaseModel):
    """User preferences for a single capability."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    default_handler_id: str | None = None
    fallback_handler_ids: list[str] = Field(default_factory=list)


class CapabilitiesConfig(BaseModel):
    """Per-capability settings supplied by the caller on each execution."""

    model_config = ConfigDict(extra="forbid")

    capability_settings: dict[str, CapabilitySetting] = Field(default_factory=dict)
    auto_fallback: bool = True

    def setting_for(self, capability: str) -> CapabilitySetting | None:
        return self.capability_settings.get(capability)


class ExecutorConfig(BaseModel):
    """Executor-level defaults, all materialized at construction."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    default_max_retries: int = Field(default=1, ge=0)
    default_timeout: float = Field(default=30.0, gt=0)
    retry_backoff: float = Field(default=0.0, ge=0)
    retry_backoff_max: float = Field(default=10.0, ge=0)
    log_diagnostics: bool = True
    max_log_entries: int | None = Field(default=None, gt=0)

    def merged(self, **changes: object) -> "ExecutorConfig":
        """Return a re-validated copy with *changes* applied."""
        return ExecutorConfig.model_validate({**self.model_dump(), **changes})
