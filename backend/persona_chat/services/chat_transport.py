from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from fastapi import Request, WebSocket

from persona_chat.core.security import sanitize_text
from persona_chat.services.conversation_manager import QueryMessage
from persona_chat.services.orchestrator import AskResult, Dispatched
from persona_chat.services.stream_response import StreamResponse
from persona_chat.utils.time_utils import is_valid_millis, now_millis

logger = logging.getLogger(__name__)

AskHandler = Callable[[QueryMessage], Awaitable[AskResult]]


class TransportClosedError(RuntimeError):
    """Raised when a message arrives while the transport is stopped."""


class InvalidTimestampError(ValueError):
    """Raised when a client timestamp cannot be represented as a datetime."""


class ChatTransport:
    """Deliver inbound chat messages to the ask handler and track open streams.

    The handler is fixed at construction; HTTP and WebSocket endpoints both
    submit through this object so cancel-by-request-id works for either.
    """

    def __init__(self, handler: AskHandler, max_message_len: int = 2000) -> None:
        self._handler = handler
        self._max_message_len = max_message_len
        self._streams: dict[str, StreamResponse] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        self._running = True
        logger.info("Chat transport started")

    async def stop(self) -> None:
        """Refuse new messages and cancel every stream still open."""

        self._running = False
        streams = list(self._streams.values())
        self._streams.clear()
        for stream in streams:
            stream.cancel()
        logger.info("Chat transport stopped; canceled %s open streams", len(streams))

    async def submit(
        self, text: str, room_id: Optional[str] = None, timestamp_ms: Optional[int] = None
    ) -> AskResult:
        """Hand one inbound message to the ask handler."""

        if not self._running:
            raise TransportClosedError("Chat transport is not running")
        cleaned = sanitize_text(text, self._max_message_len)
        if not cleaned:
            raise ValueError("Message text must not be empty")
        if timestamp_ms is None:
            timestamp_ms = now_millis()
        elif not is_valid_millis(timestamp_ms):
            raise InvalidTimestampError(f"Timestamp out of range: {timestamp_ms}")
        message = QueryMessage(
            text=cleaned,
            timestamp_ms=timestamp_ms,
            room_id=room_id,
        )
        result = await self._handler(message)
        if isinstance(result, Dispatched):
            self._prune()
            self._streams[result.stream.request_id] = result.stream
        return result

    def get_stream(self, request_id: str) -> Optional[StreamResponse]:
        return self._streams.get(request_id)

    def cancel(self, request_id: str) -> bool:
        """Cancel an open stream; False when unknown or already closed."""

        stream = self._streams.pop(request_id, None)
        if stream is None or stream.is_terminal:
            return False
        stream.cancel()
        return True

    def _prune(self) -> None:
        for request_id, stream in list(self._streams.items()):
            if stream.is_terminal:
                self._streams.pop(request_id, None)


def get_chat_transport(request: Request) -> ChatTransport:
    """Dependency to access the chat transport from app state."""

    return request.app.state.chat_transport


def get_ws_chat_transport(websocket: WebSocket) -> ChatTransport:
    """Dependency to access the chat transport from a WebSocket scope."""

    return websocket.app.state.chat_transport
