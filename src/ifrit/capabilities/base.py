"""Core capability abstractions and shared data models."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ifrit.capabilities.diagnostics import DiagnosticsRecord


class HandlerSource(str, Enum):
    """Where a handler comes from."""

    AI_PROVIDER = "ai-provider"
    MCP = "mcp"
    LOCAL = "local"
    INTEGRATION = "integration"


class CapabilityError(Exception):
    """Capability execution exception with structured metadata."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.retryable = retryable
        self.details = details or {}


@dataclass(frozen=True, slots=True)
class Capability:
    """A logical operation that one or more handlers can satisfy."""

    id: str
    name: str
    description: str = ""
    is_default: bool = False


DEFAULT_CAPABILITIES: tuple[Capability, ...] = (
    Capability("generate", "Text Generation", "Generate text content using AI", True),
    Capability("research", "Web Research", "Research topics using web search", True),
    Capability("keywords", "Keyword Discovery", "Discover SEO keywords for topics", True),
    Capability("analyze", "Content Analysis", "Analyze content for SEO, readability, E-E-A-T", True),
    Capability("scrape", "Web Scraping", "Extract content from web pages", True),
    Capability("summarize", "Summarization", "Summarize long content into key points", True),
    Capability("translate", "Translation", "Translate content between languages", True),
    Capability("images", "Image Generation", "Generate images using AI", True),
    Capability("reasoning", "Deep Reasoning", "Complex reasoning and planning tasks", True),
    Capability("code", "Code Generation", "Generate or analyze code", True),
)


@dataclass(frozen=True, slots=True)
class Usage:
    """Token usage reported by a provider."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True, slots=True)
class ExecuteRequest:
    """One logical capability call. Immutable for the duration of execution."""

    capability: str
    prompt: str = ""
    context: Mapping[str, Any] = field(default_factory=dict)
    max_retries: int | None = None
    use_fallback: bool | None = None
    preferred_handler: str | None = None
    timeout: float | None = None
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    system_prompt: str | None = None

    def with_context(self, **values: Any) -> ExecuteRequest:
        """Return a copy with *values* merged into the context."""
        return replace(self, context={**self.context, **values})


@dataclass(slots=True)
class ExecuteResult:
    """Outcome of one handler attempt or of a whole execution."""

    success: bool
    data: Any = None
    text: str | None = None
    error: str | None = None
    handler_used: str = "none"
    source: HandlerSource = HandlerSource.LOCAL
    latency_ms: float = 0.0
    model: str | None = None
    usage: Usage | None = None
    diagnostics: DiagnosticsRecord | None = None
    fallbacks_attempted: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def payload(self) -> Any:
        """Content used for validation: ``data`` when set, otherwise ``text``."""
        if self.data is not None and self.data != "":
            return self.data
        return self.text

    @classmethod
    def failure(cls, error: str, **kwargs: Any) -> ExecuteResult:
        return cls(success=False, error=error or "Unknown error", **kwargs)


HandlerCallable = Callable[[ExecuteRequest], Awaitable[ExecuteResult]]


@dataclass(slots=True, eq=False)
class CapabilityHandler:
    """Something that can fulfil one or more capabilities.

    ``is_available`` may be toggled by external health checks; everything else
    is fixed once the handler is registered.
    """

    id: str
    name: str
    capabilities: frozenset[str]
    execute: HandlerCallable
    source: HandlerSource = HandlerSource.AI_PROVIDER
    provider_id: str | None = None
    priority: int = 0
    is_available: bool = True
    requires_api_key: bool = False

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Handler id must not be empty")
        if isinstance(self.capabilities, str):
            raise ValueError(f"Handler {self.id}: capabilities must be a collection, not a string")
        self.capabilities = frozenset(self.capabilities)
        if not self.capabilities:
            raise ValueError(f"Handler {self.id} declares no capabilities")
        if not isinstance(self.source, HandlerSource):
            try:
                self.source = HandlerSource(self.source)
            except ValueError as exc:
                raise ValueError(f"Handler {self.id} has unknown source: {self.source!r}") from exc
        if not callable(self.execute):
            raise ValueError(f"Handler {self.id} has no execute function")

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities

    @property
    def stats_key(self) -> str:
        """Key used to group diagnostics for this handler."""
        return self.provider_id or self.id
