from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

from persona_chat.providers.base import LLMResult


class BlockingAdapter:
    """Streams one token, then waits until the generation is aborted."""

    async def stream_chat(self, cfg, messages, on_token):
        on_token("thinking")
        await asyncio.Event().wait()
        return LLMResult(content="never", model_provider=cfg.provider, model_name=cfg.model_name)


def receive_until_closed(websocket) -> list[dict]:
    events = []
    while True:
        event = websocket.receive_json()
        events.append(event)
        if event["event"] == "stream_closed":
            return events


def test_ask_streams_deltas_and_closes(app):
    with TestClient(app) as client:
        with client.websocket_connect("/ws/chat/default") as websocket:
            websocket.send_json({"type": "ask", "text": "hello there", "timestamp": 1_000})

            started = websocket.receive_json()
            assert started["event"] == "stream_started"
            events = receive_until_closed(websocket)

    deltas = [event["text"] for event in events if event["event"] == "delta"]
    closed = events[-1]
    assert "".join(deltas) == "Hello there"
    assert all(event["request_id"] == started["request_id"] for event in events)
    assert closed["status"] == "finished"
    assert closed["text"] == "Hello there"


def test_cancel_frame_stops_the_stream(app):
    app.state.generation_service.set_adapters({"stub": BlockingAdapter()})

    with TestClient(app) as client:
        with client.websocket_connect("/ws/chat/default") as websocket:
            websocket.send_json({"type": "ask", "text": "take your time"})
            started = websocket.receive_json()
            assert started["event"] == "stream_started"
            request_id = started["request_id"]
            delta = websocket.receive_json()
            assert delta == {"event": "delta", "request_id": request_id, "text": "thinking"}

            websocket.send_json({"type": "cancel", "request_id": request_id})
            first = websocket.receive_json()
            second = websocket.receive_json()

    by_event = {event["event"]: event for event in (first, second)}
    assert by_event["cancel_ack"] == {
        "event": "cancel_ack",
        "request_id": request_id,
        "canceled": True,
    }
    assert by_event["stream_closed"]["status"] == "canceled"
    assert by_event["stream_closed"]["text"] == "thinking"


def test_bad_frames_are_reported(app):
    with TestClient(app) as client:
        with client.websocket_connect("/ws/chat/default") as websocket:
            websocket.send_text("not json")
            assert websocket.receive_json()["code"] == "BAD_FRAME"

            websocket.send_json({"type": "dance"})
            assert websocket.receive_json()["code"] == "BAD_FRAME"

            websocket.send_json({"type": "ask", "text": ""})
            assert websocket.receive_json()["code"] == "EMPTY_MESSAGE"


def test_unknown_room_reports_error(app):
    with TestClient(app) as client:
        with client.websocket_connect("/ws/chat/nowhere") as websocket:
            websocket.send_json({"type": "ask", "text": "anyone?"})
            event = websocket.receive_json()

    assert event["event"] == "error"
    assert event["code"] == "ROOM_NOT_FOUND"


def test_memory_unavailable_is_reported(app):
    app.state.memory_service.enabled = False

    with TestClient(app) as client:
        with client.websocket_connect("/ws/chat/default") as websocket:
            websocket.send_json({"type": "ask", "text": "remember me?"})
            event = websocket.receive_json()

    assert event == {"event": "unavailable", "reason": "memory unavailable"}


def test_out_of_range_timestamp_keeps_socket_open(app):
    with TestClient(app) as client:
        with client.websocket_connect("/ws/chat/default") as websocket:
            websocket.send_json({"type": "ask", "text": "hello", "timestamp": 10**20})
            error = websocket.receive_json()

            websocket.send_json({"type": "ask", "text": "hello again"})
            started = websocket.receive_json()
            events = receive_until_closed(websocket)

    assert error["event"] == "error"
    assert error["code"] == "BAD_TIMESTAMP"
    assert started["event"] == "stream_started"
    assert events[-1]["status"] == "finished"
