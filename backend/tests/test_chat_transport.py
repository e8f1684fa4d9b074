from __future__ import annotations

import pytest

from persona_chat.services.chat_transport import (
    ChatTransport,
    InvalidTimestampError,
    TransportClosedError,
)
from persona_chat.services.orchestrator import Dispatched, Unavailable
from persona_chat.services.stream_response import StreamResponse, StreamStatus
from persona_chat.utils.time_utils import MAX_TIMESTAMP_MS


class RecordingHandler:
    def __init__(self) -> None:
        self.messages = []

    async def __call__(self, message):
        self.messages.append(message)
        return Dispatched(stream=StreamResponse(f"req-{len(self.messages)}", first_token_timeout=5))


async def started_transport(handler) -> ChatTransport:
    transport = ChatTransport(handler, max_message_len=10)
    await transport.start()
    return transport


@pytest.mark.anyio
async def test_submit_clamps_text_and_tracks_stream():
    handler = RecordingHandler()
    transport = await started_transport(handler)

    result = await transport.submit("  a very long message  ", room_id="lab", timestamp_ms=42)

    assert isinstance(result, Dispatched)
    assert handler.messages[0].text == "a very lon"
    assert handler.messages[0].timestamp_ms == 42
    assert handler.messages[0].room_id == "lab"
    assert transport.get_stream(result.stream.request_id) is result.stream
    await transport.stop()
    assert result.stream.status is StreamStatus.CANCELED


@pytest.mark.anyio
async def test_timestamp_bounds_are_checked_before_dispatch():
    handler = RecordingHandler()
    transport = await started_transport(handler)

    await transport.submit("edge", timestamp_ms=MAX_TIMESTAMP_MS)
    for timestamp_ms in (MAX_TIMESTAMP_MS + 1, 10**20, -1):
        with pytest.raises(InvalidTimestampError):
            await transport.submit("late", timestamp_ms=timestamp_ms)

    assert [message.text for message in handler.messages] == ["edge"]
    await transport.stop()


@pytest.mark.anyio
async def test_stopped_transport_refuses_messages():
    handler = RecordingHandler()
    transport = ChatTransport(handler)

    with pytest.raises(TransportClosedError):
        await transport.submit("hello")
    assert handler.messages == []


@pytest.mark.anyio
async def test_cancel_reports_only_open_streams():
    handler = RecordingHandler()
    transport = await started_transport(handler)
    result = await transport.submit("hello")

    assert transport.cancel(result.stream.request_id) is True
    assert transport.cancel(result.stream.request_id) is False
    assert transport.cancel("unknown") is False


@pytest.mark.anyio
async def test_unavailable_result_is_not_tracked():
    async def unavailable(message):
        return Unavailable(reason="memory unavailable")

    transport = await started_transport(unavailable)

    result = await transport.submit("hello")

    assert isinstance(result, Unavailable)
    assert transport.get_stream("req-1") is None
