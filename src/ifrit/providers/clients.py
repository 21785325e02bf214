"""Thin async HTTP clients for AI provider chat APIs."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, ClassVar

import httpx

from ifrit.capabilities.base import ExecuteRequest, ExecuteResult, HandlerSource, Usage
from ifrit.providers.catalog import ProviderInfo, get_provider_info

DEFAULT_MAX_TOKENS = 4000
DEFAULT_TEMPERATURE = 0.7
RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "quota", "resource_exhausted", "resource exhausted")


class ProviderError(Exception):
    """Raised when a provider call cannot be completed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def rate_limited(self) -> bool:
        if self.status_code == 429:
            return True
        message = str(self).lower()
        return any(marker in message for marker in RATE_LIMIT_MARKERS)


class ProviderClient(ABC):
    """Low-level provider interface (transport + response parsing)."""

    def __init__(
        self,
        info: ProviderInfo,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.info = info
        self.http_client = http_client
        self.timeout = timeout

    @property
    def name(self) -> str:
        return self.info.id

    async def chat(self, api_key: str, request: ExecuteRequest) -> ExecuteResult:
        """Send *request* as a single-turn chat and return the parsed result.

        Raises:
            ProviderError: on transport failures, HTTP errors or malformed JSON.
        """
        if not api_key:
            raise ProviderError(f"{self.info.name} API key is required")

        model = request.model or self.info.default_model
        url, headers, payload = self._build_request(api_key, request, model)
        data = await self._post(url, headers, payload)
        content, usage = self._parse_response(data)
        if not content:
            return ExecuteResult.failure(
                f"{self.info.name}: no content in response",
                source=HandlerSource.AI_PROVIDER,
                model=model,
                usage=usage,
            )
        return ExecuteResult(
            success=True,
            data=content,
            text=content,
            source=HandlerSource.AI_PROVIDER,
            model=model,
            usage=usage,
        )

    async def _post(self, url: str, headers: dict[str, str], payload: dict[str, Any]) -> dict[str, Any]:
        try:
            if self.http_client is not None:
                response = await self.http_client.post(url, headers=headers, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, headers=headers, json=payload)
        except httpx.TimeoutException as exc:
            raise ProviderError(f"{self.info.name} request timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.info.name} transport error: {type(exc).__name__}") from exc

        if response.status_code >= 400:
            body = response.text[:200]
            raise ProviderError(
                f"{self.info.name} API error {response.status_code}: {body}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise ProviderError(f"{self.info.name} response is not valid JSON") from exc
        if not isinstance(data, dict):
            raise ProviderError(f"{self.info.name} response is not a JSON object")
        return data

    @abstractmethod
    def _build_request(
        self,
        api_key: str,
        request: ExecuteRequest,
        model: str,
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        """Return URL, headers and JSON payload for a chat call."""

    @abstractmethod
    def _parse_response(self, data: dict[str, Any]) -> tuple[str, Usage | None]:
        """Extract generated text and token usage."""


class OpenAICompatibleClient(ProviderClient):
    """Chat Completions API (DeepSeek, Perplexity, Vercel AI Gateway, OpenRouter)."""

    extra_headers: ClassVar[Mapping[str, str]] = MappingProxyType({})

    def _build_request(
        self,
        api_key: str,
        request: ExecuteRequest,
        model: str,
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        messages: list[dict[str, str]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            **self.extra_headers,
        }
        payload = {
            "model": model,
            "messages": messages,
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            "temperature": DEFAULT_TEMPERATURE if request.temperature is None else request.temperature,
        }
        return f"{self.info.base_url}/chat/completions", headers, payload

    def _parse_response(self, data: dict[str, Any]) -> tuple[str, Usage | None]:
        try:
            content = data["choices"][0]["message"].get("content") or ""
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise ProviderError(f"{self.info.name} response missing message payload") from exc
        usage = data.get("usage") or {}
        return str(content), _usage(usage.get("prompt_tokens"), usage.get("completion_tokens"))


class OpenRouterClient(OpenAICompatibleClient):
    extra_headers = MappingProxyType(
        {
            "HTTP-Referer": "https://adsense-ifrit.vercel.app",
            "X-Title": "AdSense Ifrit",
        }
    )


class GeminiClient(ProviderClient):
    """Google Generative Language ``generateContent`` API."""

    def _build_request(
        self,
        api_key: str,
        request: ExecuteRequest,
        model: str,
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": request.prompt}]}],
            "generationConfig": {
                "maxOutputTokens": request.max_tokens or DEFAULT_MAX_TOKENS,
                "temperature": DEFAULT_TEMPERATURE if request.temperature is None else request.temperature,
            },
        }
        if request.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": request.system_prompt}]}
        headers = {"Content-Type": "application/json", "x-goog-api-key": api_key}
        return f"{self.info.base_url}/models/{model}:generateContent", headers, payload

    def _parse_response(self, data: dict[str, Any]) -> tuple[str, Usage | None]:
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            parts = []
        content = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        usage = data.get("usageMetadata") or {}
        return content, _usage(usage.get("promptTokenCount"), usage.get("candidatesTokenCount"))


def _usage(input_tokens: Any, output_tokens: Any) -> Usage | None:
    if input_tokens is None and output_tokens is None:
        return None
    return Usage(input_tokens=int(input_tokens or 0), output_tokens=int(output_tokens or 0))


def create_client(
    provider: str,
    *,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 60.0,
) -> ProviderClient:
    """Create the client matching *provider*'s API style.

    Raises:
        ValueError: if the provider is unknown.
    """
    info = get_provider_info(provider)
    if info.api_style == "gemini":
        client_cls: type[ProviderClient] = GeminiClient
    elif provider == "openrouter":
        client_cls = OpenRouterClient
    else:
        client_cls = OpenAICompatibleClient
    return client_cls(info, http_client=http_client, timeout=timeout)
