from __future__ import annotations

from typing import Optional

from pydantic import Field

from persona_chat.schemas.common import APIModel


class PersonaIn(APIModel):
    """Persona fields supplied when creating a room."""

    name: str = Field(min_length=1, max_length=100)
    profile: str = Field(default="", max_length=8000)


class PersonaOut(APIModel):
    """Serialized persona."""

    id: str
    name: str
    profile: str


class RoomCreateRequest(APIModel):
    """Payload for creating a conversation room."""

    room_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=8000)
    bot: PersonaIn
    master: PersonaIn


class RoomOut(APIModel):
    """Room with the personas taking part in it."""

    id: str
    name: str
    description: str
    bot: PersonaOut
    master: PersonaOut
    memory_available: bool
