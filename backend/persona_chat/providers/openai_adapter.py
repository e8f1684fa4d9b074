from __future__ import annotations

import json
from contextlib import aclosing
from typing import Any, Optional

from persona_chat.providers.base import (
    HTTPProviderAdapter,
    LLMResult,
    ProviderError,
    ProviderRuntimeConfig,
    TokenCallback,
    join_url,
    require_api_key,
)


class OpenAIAdapter(HTTPProviderAdapter):
    """Adapter for OpenAI-compatible chat completion streams (SSE)."""

    async def stream_chat(
        self, cfg: ProviderRuntimeConfig, messages: list[dict], on_token: TokenCallback
    ) -> LLMResult:
        url = join_url(cfg.base_url, "/v1/chat/completions", "OpenAI")
        headers = {"Authorization": f"Bearer {require_api_key(cfg.api_key, 'OpenAI')}"}
        payload = {
            "model": cfg.model_name,
            "messages": messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        parts: list[str] = []
        token_in: Optional[int] = None
        token_out: Optional[int] = None
        async with aclosing(self._stream_lines("POST", url, headers=headers, json=payload)) as lines:
            async for line in lines:
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if data == "[DONE]":
                    break
                chunk = self._parse_chunk(data)
                delta = self._extract_delta(chunk)
                if delta:
                    parts.append(delta)
                    on_token(delta)
                usage = chunk.get("usage")
                if isinstance(usage, dict):
                    token_in = self._get_int(usage, "prompt_tokens")
                    token_out = self._get_int(usage, "completion_tokens")

        return LLMResult(
            content="".join(parts),
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=token_in,
            token_out=token_out,
        )

    @staticmethod
    def _parse_chunk(data: str) -> dict[str, Any]:
        try:
            chunk = json.loads(data)
        except ValueError as exc:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Invalid stream chunk from provider.") from exc
        if not isinstance(chunk, dict):
            raise ProviderError("PROVIDER_PARSE_ERROR", "Provider returned invalid stream chunk.")
        error = chunk.get("error")
        if error:
            detail = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderError("PROVIDER_STREAM_ERROR", f"Provider stream failed: {detail}")
        return chunk

    @staticmethod
    def _extract_delta(chunk: dict[str, Any]) -> str:
        choices = chunk.get("choices") or []
        if not choices:
            return ""
        content = (choices[0].get("delta") or {}).get("content")
        return content if isinstance(content, str) else ""

    @staticmethod
    def _get_int(data: dict[str, Any], key: str) -> Optional[int]:
        value = data.get(key)
        return int(value) if isinstance(value, int) else None
