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
)


class OllamaAdapter(HTTPProviderAdapter):
    """Adapter for the Ollama local chat API (newline-delimited JSON stream)."""

    async def stream_chat(
        self, cfg: ProviderRuntimeConfig, messages: list[dict], on_token: TokenCallback
    ) -> LLMResult:
        url = join_url(cfg.base_url, "/api/chat", "Ollama")
        payload = {"model": cfg.model_name, "messages": messages, "stream": True}
        parts: list[str] = []
        token_in: Optional[int] = None
        token_out: Optional[int] = None
        async with aclosing(self._stream_lines("POST", url, json=payload)) as lines:
            async for line in lines:
                try:
                    chunk: Any = json.loads(line)
                except ValueError as exc:
                    raise ProviderError(
                        "PROVIDER_PARSE_ERROR", "Invalid stream chunk from provider."
                    ) from exc
                if not isinstance(chunk, dict):
                    raise ProviderError(
                        "PROVIDER_PARSE_ERROR", "Provider returned invalid stream chunk."
                    )
                if chunk.get("error"):
                    raise ProviderError(
                        "PROVIDER_STREAM_ERROR", f"Provider stream failed: {chunk['error']}"
                    )
                content = (chunk.get("message") or {}).get("content")
                if isinstance(content, str) and content:
                    parts.append(content)
                    on_token(content)
                if chunk.get("done"):
                    token_in = self._get_int(chunk, "prompt_eval_count")
                    token_out = self._get_int(chunk, "eval_count")
                    break

        return LLMResult(
            content="".join(parts),
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=token_in,
            token_out=token_out,
        )

    @staticmethod
    def _get_int(data: dict[str, Any], key: str) -> Optional[int]:
        value = data.get(key)
        return int(value) if isinstance(value, int) else None
