from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import Request

from persona_chat.core.config import Settings, get_settings
from persona_chat.providers.base import (
    LLMAdapter,
    MockAdapter,
    ProviderError,
    ProviderRuntimeConfig,
    TokenCallback,
)
from persona_chat.providers.ollama_adapter import OllamaAdapter
from persona_chat.providers.openai_adapter import OpenAIAdapter

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("mock", "openai", "ollama")
_MAX_PENDING_ABORTS = 1024


class GenerationService:
    """Streaming text-generation backend keyed by request id.

    ``generate_stream`` resolves with the final text, or None when the model
    produced nothing, the provider failed, or the request was aborted. The
    three cases are logged differently but never raised to the caller.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        adapters: Optional[dict[str, LLMAdapter]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        timeout = self._settings.llm_timeout_sec
        self._adapters: dict[str, LLMAdapter] = adapters or {
            "mock": MockAdapter(),
            "openai": OpenAIAdapter(timeout_sec=timeout),
            "ollama": OllamaAdapter(timeout_sec=timeout),
        }
        self._inflight: dict[str, asyncio.Task] = {}
        self._aborted: dict[str, None] = {}

    def set_adapters(self, adapters: dict[str, LLMAdapter]) -> None:
        """Override adapter registry (useful for tests)."""

        self._adapters = adapters

    def runtime_config(self) -> ProviderRuntimeConfig:
        """Build the provider runtime config from settings."""

        settings = self._settings
        return ProviderRuntimeConfig(
            provider=self._normalize_provider(settings.llm_provider),
            model_name=settings.llm_model,
            base_url=settings.resolved_llm_base_url(),
            api_key=settings.llm_api_key,
        )

    async def generate_stream(
        self,
        system_prompt: str,
        user_prompt: str,
        request_id: str,
        on_token: TokenCallback,
    ) -> Optional[str]:
        """Run one streamed generation and return its final text, if any."""

        cfg = self.runtime_config()
        try:
            adapter = self._get_adapter(cfg.provider)
        except ProviderError as exc:
            logger.warning("Generation %s not dispatched: %s %s", request_id, exc.code, exc.message)
            return None

        if request_id in self._aborted:
            self._aborted.pop(request_id, None)
            logger.info("Generation %s aborted before dispatch", request_id)
            return None

        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        task = asyncio.create_task(adapter.stream_chat(cfg, messages, on_token))
        self._inflight[request_id] = task
        try:
            result = await task
        except asyncio.CancelledError:
            if request_id not in self._aborted:
                raise
            logger.info("Generation %s aborted", request_id)
            return None
        except ProviderError as exc:
            logger.warning(
                "Generation %s failed: %s %s (retryable=%s)",
                request_id,
                exc.code,
                exc.message,
                exc.retryable,
            )
            return None
        except Exception:  # noqa: BLE001
            logger.exception("Generation %s failed unexpectedly", request_id)
            return None
        finally:
            self._inflight.pop(request_id, None)
            self._aborted.pop(request_id, None)

        if not result.content:
            logger.info("Generation %s produced no text", request_id)
            return None
        logger.info(
            "Generation %s finished via %s/%s (tokens in=%s out=%s)",
            request_id,
            result.model_provider,
            result.model_name,
            result.token_in,
            result.token_out,
        )
        return result.content

    def abort(self, request_id: str) -> None:
        """Best-effort cancel of a generation.

        An id that is not in flight yet is remembered, and its generation
        resolves to None without calling the provider.
        """

        if request_id in self._aborted:
            return
        task = self._inflight.get(request_id)
        if task is not None and task.done():
            return
        self._aborted[request_id] = None
        # Oldest entries go first; ids aborted before dispatch may never be claimed.
        while len(self._aborted) > _MAX_PENDING_ABORTS:
            self._aborted.pop(next(iter(self._aborted)))
        if task is not None:
            task.cancel()

    async def shutdown(self) -> None:
        """Cancel every in-flight generation."""

        tasks = list(self._inflight.values())
        for request_id in list(self._inflight):
            self.abort(request_id)
        await asyncio.gather(*tasks, return_exceptions=True)

    def _get_adapter(self, provider: str) -> LLMAdapter:
        adapter = self._adapters.get(provider)
        if adapter is None:
            raise ProviderError("PROVIDER_UNSUPPORTED", f"Unsupported provider: {provider}")
        return adapter

    @staticmethod
    def _normalize_provider(provider: str) -> str:
        return provider.strip().lower()


def get_generation_service(request: Request) -> GenerationService:
    """Dependency to access the generation service from app state."""

    return request.app.state.generation_service
