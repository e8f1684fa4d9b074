from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from persona_chat.services.chat_transport import (
    ChatTransport,
    InvalidTimestampError,
    TransportClosedError,
    get_ws_chat_transport,
)
from persona_chat.services.conversation_manager import ConversationError
from persona_chat.services.orchestrator import Unavailable
from persona_chat.services.stream_response import StreamResponse

logger = logging.getLogger(__name__)

router = APIRouter()


class ChatSocketSession:
    """One WebSocket client: reads ask/cancel frames, pushes stream events."""

    def __init__(self, websocket: WebSocket, room_id: str, transport: ChatTransport) -> None:
        self._websocket = websocket
        self._room_id = room_id
        self._transport = transport
        self._streams: dict[str, StreamResponse] = {}
        self._pumps: set[asyncio.Task] = set()
        self._send_lock = asyncio.Lock()

    async def run(self) -> None:
        await self._websocket.accept()
        try:
            while True:
                raw = await self._websocket.receive_text()
                await self._handle_frame(raw)
        except WebSocketDisconnect:
            pass
        finally:
            await self._close()

    async def _handle_frame(self, raw: str) -> None:
        try:
            frame: Any = json.loads(raw)
        except ValueError:
            await self._send({"event": "error", "code": "BAD_FRAME", "message": "Invalid JSON"})
            return
        if not isinstance(frame, dict):
            await self._send({"event": "error", "code": "BAD_FRAME", "message": "Expected object"})
            return

        frame_type = frame.get("type")
        if frame_type == "ask":
            await self._ask(frame)
        elif frame_type == "cancel":
            request_id = str(frame.get("request_id") or "")
            canceled = self._transport.cancel(request_id)
            await self._send({"event": "cancel_ack", "request_id": request_id, "canceled": canceled})
        else:
            await self._send(
                {"event": "error", "code": "BAD_FRAME", "message": f"Unknown type: {frame_type}"}
            )

    async def _ask(self, frame: dict[str, Any]) -> None:
        timestamp = frame.get("timestamp")
        try:
            result = await self._transport.submit(
                str(frame.get("text") or ""),
                room_id=self._room_id,
                timestamp_ms=timestamp if isinstance(timestamp, int) else None,
            )
        except TransportClosedError as exc:
            await self._send({"event": "error", "code": "TRANSPORT_CLOSED", "message": str(exc)})
            return
        except InvalidTimestampError as exc:
            await self._send({"event": "error", "code": "BAD_TIMESTAMP", "message": str(exc)})
            return
        except ValueError as exc:
            await self._send({"event": "error", "code": "EMPTY_MESSAGE", "message": str(exc)})
            return
        except ConversationError as exc:
            await self._send({"event": "error", "code": exc.code, "message": exc.message})
            return

        if isinstance(result, Unavailable):
            await self._send({"event": "unavailable", "reason": result.reason})
            return

        stream = result.stream
        self._streams[stream.request_id] = stream
        await self._send({"event": "stream_started", "request_id": stream.request_id})
        pump = asyncio.create_task(self._pump(stream))
        self._pumps.add(pump)
        pump.add_done_callback(self._pumps.discard)

    async def _pump(self, stream: StreamResponse) -> None:
        try:
            async for delta in stream.iter_deltas():
                await self._send({"event": "delta", "request_id": stream.request_id, "text": delta})
            await self._send(
                {
                    "event": "stream_closed",
                    "request_id": stream.request_id,
                    "status": stream.status.value,
                    "text": stream.buffered_text,
                }
            )
        except Exception:  # noqa: BLE001
            logger.debug("Socket for %s closed while streaming", stream.request_id)
        finally:
            self._streams.pop(stream.request_id, None)

    async def _send(self, payload: dict) -> None:
        async with self._send_lock:
            await self._websocket.send_json(payload)

    async def _close(self) -> None:
        for request_id in list(self._streams):
            self._transport.cancel(request_id)
        pumps = list(self._pumps)
        for pump in pumps:
            pump.cancel()
        await asyncio.gather(*pumps, return_exceptions=True)


@router.websocket("/ws/chat/{room_id}")
async def ws_chat(
    websocket: WebSocket,
    room_id: str,
    transport: ChatTransport = Depends(get_ws_chat_transport),
) -> None:
    """WebSocket endpoint: ``ask`` and ``cancel`` frames in, stream events out."""

    await ChatSocketSession(websocket, room_id, transport).run()
