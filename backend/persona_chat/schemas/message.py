from __future__ import annotations

from typing import List

from persona_chat.schemas.common import APIModel


class MessageOut(APIModel):
    """Serialized chat message."""

    sender_id: str
    sender_name: str
    text: str
    timestamp: int


class MessageListResponse(APIModel):
    """Messages of a room, oldest first."""

    messages: List[MessageOut]
