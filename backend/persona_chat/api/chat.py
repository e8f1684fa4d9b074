from __future__ import annotations

from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from persona_chat.schemas.chat import AskRequest, CancelResponse, StreamStateResponse
from persona_chat.services.chat_transport import (
    ChatTransport,
    TransportClosedError,
    get_chat_transport,
)
from persona_chat.services.conversation_manager import ConversationError
from persona_chat.services.orchestrator import AskResult, Unavailable
from persona_chat.services.stream_response import StreamResponse

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.post("/{room_id}/ask")
async def ask(
    room_id: str,
    payload: AskRequest,
    transport: ChatTransport = Depends(get_chat_transport),
) -> StreamingResponse:
    """Send a message to the bot and stream its reply as plain text."""

    result = await _submit(transport, room_id, payload)
    if isinstance(result, Unavailable):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result.reason)
    stream = result.stream
    return StreamingResponse(
        _stream_body(stream),
        media_type="text/plain; charset=utf-8",
        headers={"X-Request-Id": stream.request_id},
    )


@router.get("/stream/{request_id}", response_model=StreamStateResponse)
async def get_stream(
    request_id: str,
    transport: ChatTransport = Depends(get_chat_transport),
) -> StreamStateResponse:
    """Return the current state of an open stream."""

    stream = transport.get_stream(request_id)
    if stream is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Stream not found")
    return StreamStateResponse(
        request_id=stream.request_id, status=stream.status.value, text=stream.buffered_text
    )


@router.post("/stream/{request_id}/cancel", response_model=CancelResponse)
async def cancel_stream(
    request_id: str,
    transport: ChatTransport = Depends(get_chat_transport),
) -> CancelResponse:
    """Cancel an open stream; already closed streams report ``canceled=False``."""

    return CancelResponse(request_id=request_id, canceled=transport.cancel(request_id))


async def _submit(transport: ChatTransport, room_id: str, payload: AskRequest) -> AskResult:
    try:
        return await transport.submit(payload.text, room_id=room_id, timestamp_ms=payload.timestamp)
    except TransportClosedError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ConversationError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc


async def _stream_body(stream: StreamResponse) -> AsyncIterator[str]:
    try:
        async for delta in stream.iter_deltas():
            yield delta
    finally:
        # Client went away before the reply was complete.
        if not stream.is_terminal:
            stream.cancel()
