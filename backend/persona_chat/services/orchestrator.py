from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol, Union

from fastapi import Request

from persona_chat.core.config import Settings, get_settings
from persona_chat.providers.base import TokenCallback
from persona_chat.services.conversation_manager import (
    ContextSnapshot,
    ConversationManager,
    Message,
    QueryMessage,
)
from persona_chat.services.prompt_builder import PromptBuilder
from persona_chat.services.stream_response import StreamResponse, StreamStatus
from persona_chat.utils.time_utils import now_millis

logger = logging.getLogger(__name__)

# Tokens arriving in these states are discarded and the request is aborted.
_ABORT_ON_TOKEN = (StreamStatus.CANCELED, StreamStatus.TIMED_OUT)


class GenerationBackend(Protocol):
    """The streaming generator the orchestrator dispatches prompts to."""

    async def generate_stream(
        self,
        system_prompt: str,
        user_prompt: str,
        request_id: str,
        on_token: TokenCallback,
    ) -> Optional[str]:
        """Resolve with the final text, or None when there is nothing to keep."""

    def abort(self, request_id: str) -> None:
        """Stop producing tokens for ``request_id``; fire-and-forget."""


@dataclass(frozen=True)
class Unavailable:
    """``ask`` did nothing: memory is not available for the room."""

    reason: str


@dataclass(frozen=True)
class Dispatched:
    """``ask`` persisted the inbound message and started generation."""

    stream: StreamResponse


AskResult = Union[Unavailable, Dispatched]


class ResponseOrchestrator:
    """Turn one inbound message into a streamed, persisted reply.

    Ordering: the inbound message is stored before the backend is called,
    and the reply is stored only after the backend resolved with text and
    the stream was finished. Generation runs as a detached task; ``ask``
    returns the stream handle as soon as it is dispatched.
    """

    def __init__(
        self,
        conversation: ConversationManager,
        prompt_builder: PromptBuilder,
        backend: GenerationBackend,
        settings: Optional[Settings] = None,
    ) -> None:
        self._conversation = conversation
        self._prompt_builder = prompt_builder
        self._backend = backend
        self._settings = settings or get_settings()
        self._tasks: set[asyncio.Task] = set()

    async def ask(self, message: QueryMessage) -> AskResult:
        """Assemble context, store the inbound message and dispatch generation."""

        settings = self._settings
        ctx = await self._conversation.get_snapshot(message.room_id)
        if ctx.memory is None:
            logger.info("Memory unavailable for room %s; skipping reply", ctx.room.id)
            return Unavailable(reason="memory unavailable")

        recent_messages = await self._conversation.get_messages(
            ctx.room.id, take=settings.history_take
        )
        short_term = await ctx.memory.get_short_term_memories(take=settings.memory_take)
        long_term = await ctx.memory.get_long_term_memories(take=settings.memory_take)
        prompts = self._prompt_builder.build_prompts(
            ctx,
            recent_messages,
            short_term[0] if short_term else None,
            long_term[0] if long_term else None,
            message,
        )

        await self._conversation.on_message(
            ctx,
            Message(sender=ctx.master, text=message.text, timestamp_ms=message.timestamp_ms),
        )

        request_id = uuid.uuid4().hex
        stream = StreamResponse(
            request_id,
            first_token_timeout=settings.first_token_timeout_sec,
            on_cancel=lambda: self._backend.abort(request_id),
        )
        task = asyncio.create_task(
            self._run_generation(ctx, stream, prompts.system_prompt, prompts.user_prompt)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Dispatched request %s for room %s", request_id, ctx.room.id)
        return Dispatched(stream=stream)

    async def shutdown(self) -> None:
        """Cancel all generations still in flight."""

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_generation(
        self,
        ctx: ContextSnapshot,
        stream: StreamResponse,
        system_prompt: str,
        user_prompt: str,
    ) -> None:
        request_id = stream.request_id

        def on_token(text: str) -> None:
            if stream.status in _ABORT_ON_TOKEN:
                self._backend.abort(request_id)
                return
            stream.add_response(text)

        try:
            answer = await self._backend.generate_stream(
                system_prompt, user_prompt, request_id, on_token
            )
        except Exception:  # noqa: BLE001
            logger.exception("Generation failed for request %s", request_id)
            return
        if not answer:
            logger.info(
                "Request %s resolved without text; stream left %s",
                request_id,
                stream.status.value,
            )
            return

        stream.finish(answer)
        reply = Message(sender=ctx.bot, text=answer, timestamp_ms=now_millis())
        try:
            await self._conversation.on_message(ctx, reply)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to store reply for request %s", request_id)


def get_orchestrator(request: Request) -> ResponseOrchestrator:
    """Dependency to access the response orchestrator from app state."""

    return request.app.state.orchestrator
