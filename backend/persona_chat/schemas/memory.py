from __future__ import annotations

from typing import List, Literal

from pydantic import Field

from persona_chat.schemas.common import APIModel

MemoryKind = Literal["short_term", "long_term"]


class MemoryCreateRequest(APIModel):
    """Payload for storing one memory text."""

    kind: MemoryKind
    text: str = Field(min_length=1, max_length=4000)


class MemoryOut(APIModel):
    """Serialized memory row."""

    id: str
    room_id: str
    kind: str
    text: str
    created_at_ms: int


class MemoryListResponse(APIModel):
    """Memories of one kind, newest first."""

    memories: List[MemoryOut]
