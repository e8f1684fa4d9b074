from __future__ import annotations

import asyncio

import pytest

from persona_chat.core.config import get_settings


async def create_room(client, room_id: str = "lab") -> dict:
    payload = {
        "room_id": room_id,
        "name": "Lab",
        "description": "Late-night experiments.",
        "bot": {"name": "Echo", "profile": "Dry humor."},
        "master": {"name": "Alice", "profile": "Chemist."},
    }
    response = await client.post("/api/room/create", json=payload)
    assert response.status_code == 200
    return response.json()


async def wait_for_messages(client, room_id: str, count: int) -> list[dict]:
    for _ in range(100):
        response = await client.get(f"/api/room/{room_id}/messages")
        assert response.status_code == 200
        messages = response.json()["messages"]
        if len(messages) >= count:
            return messages
        await asyncio.sleep(0.02)
    raise AssertionError(f"Expected {count} messages in room {room_id}")


@pytest.mark.anyio
async def test_default_room_is_bootstrapped(client):
    settings = get_settings()

    response = await client.get(f"/api/room/{settings.default_room_id}")

    assert response.status_code == 200
    data = response.json()
    assert data["name"] == settings.default_room_name
    assert data["bot"]["name"] == settings.bot_name
    assert data["memory_available"] is True


@pytest.mark.anyio
async def test_create_room_and_reject_duplicate(client):
    room = await create_room(client)
    assert room["id"] == "lab"
    assert room["bot"]["profile"] == "Dry humor."

    response = await client.post(
        "/api/room/create",
        json={"room_id": "lab", "name": "Again", "bot": {"name": "B"}, "master": {"name": "M"}},
    )
    assert response.status_code == 409


@pytest.mark.anyio
async def test_unknown_room_returns_404(client):
    assert (await client.get("/api/room/missing")).status_code == 404
    assert (await client.get("/api/room/missing/messages")).status_code == 404
    assert (await client.get("/api/memory/missing")).status_code == 404

    response = await client.post("/api/chat/missing/ask", json={"text": "hi"})
    assert response.status_code == 404


@pytest.mark.anyio
async def test_ask_streams_reply_and_persists_both_messages(client, stub_adapter):
    await create_room(client)

    response = await client.post(
        "/api/chat/lab/ask", json={"text": "Hi bot", "timestamp": 1_700_000_000_000}
    )

    assert response.status_code == 200
    assert response.headers["x-request-id"]
    assert response.text == "Hello there"
    assert len(stub_adapter.calls) == 1
    system_prompt = stub_adapter.calls[0][0]["content"]
    user_prompt = stub_adapter.calls[0][1]["content"]
    assert "Dry humor." in system_prompt
    assert user_prompt == "[2023-11-14 22:13:20] Alice: Hi bot"

    messages = await wait_for_messages(client, "lab", 2)
    assert [item["sender_name"] for item in messages] == ["Alice", "Echo"]
    assert [item["text"] for item in messages] == ["Hi bot", "Hello there"]
    assert messages[0]["timestamp"] == 1_700_000_000_000


@pytest.mark.anyio
async def test_previous_turns_reach_the_next_prompt(client, stub_adapter):
    await create_room(client)
    await client.post("/api/chat/lab/ask", json={"text": "first question"})
    await wait_for_messages(client, "lab", 2)

    await client.post("/api/chat/lab/ask", json={"text": "second question"})

    system_prompt = stub_adapter.calls[1][0]["content"]
    assert "first question" in system_prompt
    assert "Hello there" in system_prompt
    assert "second question" not in system_prompt


@pytest.mark.anyio
async def test_memories_are_listed_and_used_in_prompt(client, stub_adapter):
    await create_room(client)

    for text in ["likes tea", "likes coffee"]:
        response = await client.post("/api/memory/lab", json={"kind": "short_term", "text": text})
        assert response.status_code == 200
        await asyncio.sleep(0.01)
    response = await client.post(
        "/api/memory/lab", json={"kind": "long_term", "text": "grew up by the sea"}
    )
    assert response.status_code == 200

    response = await client.get("/api/memory/lab?kind=short_term")
    assert [item["text"] for item in response.json()["memories"]] == ["likes coffee", "likes tea"]

    await client.post("/api/chat/lab/ask", json={"text": "hello"})
    system_prompt = stub_adapter.calls[0][0]["content"]
    assert "likes coffee" in system_prompt
    assert "likes tea" not in system_prompt
    assert "grew up by the sea" in system_prompt


@pytest.mark.anyio
async def test_invalid_memory_kind_is_rejected(client):
    await create_room(client)

    response = await client.post("/api/memory/lab", json={"kind": "episodic", "text": "x"})

    assert response.status_code == 422


@pytest.mark.anyio
async def test_empty_message_returns_400(client, stub_adapter):
    await create_room(client)

    response = await client.post("/api/chat/lab/ask", json={"text": "   "})

    assert response.status_code == 400
    assert stub_adapter.calls == []


@pytest.mark.anyio
async def test_cancel_unknown_stream_reports_false(client):
    response = await client.post("/api/chat/stream/nope/cancel")

    assert response.status_code == 200
    assert response.json() == {"request_id": "nope", "canceled": False}
    assert (await client.get("/api/chat/stream/nope")).status_code == 404


@pytest.mark.anyio
async def test_memory_disabled_returns_503(app, client, stub_adapter):
    app.state.memory_service.enabled = False
    await create_room(client)

    response = await client.post("/api/chat/lab/ask", json={"text": "hello"})

    assert response.status_code == 503
    assert stub_adapter.calls == []
    room = (await client.get("/api/room/lab")).json()
    assert room["memory_available"] is False
    assert (await client.get("/api/room/lab/messages")).json()["messages"] == []


@pytest.mark.anyio
async def test_ask_after_transport_stop_returns_503(app, client):
    await app.state.chat_transport.stop()

    response = await client.post("/api/chat/default/ask", json={"text": "hello"})

    assert response.status_code == 503


@pytest.mark.anyio
@pytest.mark.parametrize("timestamp", [10**15, 10**20])
async def test_out_of_range_timestamp_returns_400(client, stub_adapter, timestamp):
    await create_room(client)

    response = await client.post("/api/chat/lab/ask", json={"text": "hello", "timestamp": timestamp})

    assert response.status_code == 400
    assert "Timestamp out of range" in response.json()["detail"]
    assert stub_adapter.calls == []
    assert (await client.get("/api/room/lab/messages")).json()["messages"] == []
