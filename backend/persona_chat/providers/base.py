from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Optional, Protocol

import httpx

TokenCallback = Callable[[str], None]


@dataclass
class ProviderRuntimeConfig:
    """Runtime configuration needed by an LLM adapter."""

    provider: str
    model_name: str
    base_url: str | None = None
    api_key: str | None = None


@dataclass
class LLMResult:
    """Result returned from a streamed generation call."""

    content: str
    model_provider: str
    model_name: str
    token_in: int | None = None
    token_out: int | None = None


class LLMAdapter(Protocol):
    """Adapter interface for streaming LLM providers."""

    async def stream_chat(
        self, cfg: ProviderRuntimeConfig, messages: list[dict], on_token: TokenCallback
    ) -> LLMResult:
        """Stream a chat completion, calling ``on_token`` per text delta, in order."""


class ProviderError(RuntimeError):
    """Raised when a provider operation fails."""

    def __init__(
        self,
        code: str,
        message: str,
        retryable: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.status_code = status_code


def build_status_error(response: httpx.Response) -> ProviderError:
    """Build a normalized provider error from an HTTP response."""

    status = response.status_code
    message = _extract_response_message(response)
    formatted = f"Provider returned {status}: {message}"
    if status in {408, 429}:
        code = "PROVIDER_TIMEOUT" if status == 408 else "PROVIDER_RATE_LIMIT"
        return ProviderError(code, formatted, retryable=True, status_code=status)
    if status >= 500:
        return ProviderError(
            "PROVIDER_UPSTREAM",
            formatted,
            retryable=True,
            status_code=status,
        )
    return ProviderError("PROVIDER_BAD_STATUS", formatted, status_code=status)


def require_api_key(api_key: Optional[str], provider_name: str) -> str:
    """Return an API key or raise a normalized configuration error."""

    if api_key:
        return api_key
    raise ProviderError("API_KEY_REQUIRED", f"API key is required for {provider_name}.")


def join_url(base_url: Optional[str], path: str, provider_name: str) -> str:
    """Join a base URL and an API path without duplicating a version prefix."""

    if not base_url:
        raise ProviderError(
            "PROVIDER_BASE_URL_MISSING", f"Base URL is required for {provider_name}."
        )
    base = base_url.rstrip("/")
    prefix = "/" + path.lstrip("/").split("/", 1)[0]
    if base.endswith(prefix) and path.startswith(prefix + "/"):
        return base + path[len(prefix):]
    return base + path


def _extract_response_message(response: httpx.Response) -> str:
    """Extract a concise error message from provider JSON/text payloads."""

    try:
        payload: Any = response.json()
    except ValueError:
        return (response.text or "Unknown error from provider.").strip()

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            detail = error.get("message") or error.get("code")
            if isinstance(detail, str) and detail.strip():
                return detail.strip()
        if isinstance(error, str) and error.strip():
            return error.strip()
        message = payload.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return (response.text or "Unknown error from provider.").strip()


class HTTPProviderAdapter:
    """Shared streaming HTTP behavior for provider adapters."""

    def __init__(
        self, timeout_sec: float = 90, http_client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self._timeout = timeout_sec
        self._client = http_client

    async def _stream_lines(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> AsyncIterator[str]:
        """Yield non-empty response lines of a streamed request."""

        async with self._open_stream(method, url, headers=headers, json=json) as response:
            try:
                async for line in response.aiter_lines():
                    line = line.strip()
                    if line:
                        yield line
            except httpx.TimeoutException as exc:
                raise ProviderError(
                    "PROVIDER_TIMEOUT", "Provider stream timed out.", retryable=True
                ) from exc
            except httpx.RequestError as exc:
                raise ProviderError(
                    "PROVIDER_CONNECTION_ERROR",
                    "Provider stream was interrupted.",
                    retryable=True,
                ) from exc

    @asynccontextmanager
    async def _open_stream(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> AsyncIterator[httpx.Response]:
        try:
            if self._client:
                async with self._client.stream(
                    method, url, headers=headers, json=json, timeout=self._timeout
                ) as response:
                    await self._raise_for_status(response)
                    yield response
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    async with client.stream(
                        method, url, headers=headers, json=json
                    ) as response:
                        await self._raise_for_status(response)
                        yield response
        except httpx.TimeoutException as exc:
            raise ProviderError(
                "PROVIDER_TIMEOUT", "Provider request timed out.", retryable=True
            ) from exc
        except httpx.RequestError as exc:
            raise ProviderError(
                "PROVIDER_CONNECTION_ERROR",
                "Provider connection failed.",
                retryable=True,
            ) from exc

    @staticmethod
    async def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        await response.aread()
        raise build_status_error(response)


class MockAdapter:
    """Offline adapter that streams a short deterministic reply word by word."""

    def __init__(self, token_delay_sec: float = 0.02) -> None:
        self._token_delay = token_delay_sec

    async def stream_chat(
        self, cfg: ProviderRuntimeConfig, messages: list[dict], on_token: TokenCallback
    ) -> LLMResult:
        heard = ""
        for message in reversed(messages):
            if message.get("role") == "user":
                heard = message.get("content", "")
                break
        text = heard.split(": ", 1)[-1].strip() if heard else ""
        content = f"I heard you say: {text}" if text else "I am listening."
        parts = content.split(" ")
        for index, word in enumerate(parts):
            await asyncio.sleep(self._token_delay)
            on_token(word if index == 0 else f" {word}")
        return LLMResult(
            content=content,
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=None,
            token_out=len(parts),
        )
