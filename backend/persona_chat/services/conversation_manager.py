from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from persona_chat.core.config import Settings, get_settings
from persona_chat.db.models import Persona, Room
from persona_chat.repos.message_repo import MessageRepo
from persona_chat.repos.persona_repo import PersonaRepo
from persona_chat.repos.room_repo import RoomRepo
from persona_chat.services.memory_service import MemoryAccess, MemoryService
from persona_chat.utils.time_utils import datetime_to_millis, millis_to_datetime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersonaRef:
    """Identity and profile of a chat participant."""

    id: str
    name: str
    profile: str


@dataclass(frozen=True)
class RoomInfo:
    """Descriptor of the room a conversation happens in."""

    id: str
    name: str
    description: str


@dataclass(frozen=True)
class Message:
    """An immutable chat line ready to be rendered or stored."""

    sender: PersonaRef
    text: str
    timestamp_ms: int


@dataclass(frozen=True)
class QueryMessage:
    """Inbound message delivered by a transport."""

    text: str
    timestamp_ms: int
    room_id: Optional[str] = None


@dataclass(frozen=True)
class ContextSnapshot:
    """Everything one request needs to know about who is talking, and where.

    ``memory`` is None when memory is unavailable for the room.
    """

    bot: PersonaRef
    master: PersonaRef
    room: RoomInfo
    memory: Optional[MemoryAccess]


class ConversationError(RuntimeError):
    """Domain error for room and persona lookups."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class ConversationManager:
    """Provide per-request context snapshots and durable message history."""

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        memory_service: MemoryService,
        settings: Optional[Settings] = None,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._memory_service = memory_service
        self._settings = settings or get_settings()

    @property
    def default_room_id(self) -> str:
        return self._settings.default_room_id

    async def init(self) -> RoomInfo:
        """Ensure the configured default room and its personas exist."""

        settings = self._settings
        async with self._sessionmaker() as db:
            async with db.begin():
                room_repo = RoomRepo(db)
                room = await room_repo.get_room(settings.default_room_id)
                if room is None:
                    persona_repo = PersonaRepo(db)
                    bot = await persona_repo.create_persona(
                        uuid.uuid4().hex, settings.bot_name, settings.bot_profile
                    )
                    master = await persona_repo.create_persona(
                        uuid.uuid4().hex, settings.master_name, settings.master_profile
                    )
                    room = await room_repo.create_room(
                        room_id=settings.default_room_id,
                        name=settings.default_room_name,
                        description=settings.default_room_description,
                        bot_id=bot.id,
                        master_id=master.id,
                    )
                    logger.info("Created default room %s", room.id)
        return _room_info(room)

    async def create_room(
        self,
        *,
        name: str,
        description: str,
        bot_name: str,
        bot_profile: str,
        master_name: str,
        master_profile: str,
        room_id: Optional[str] = None,
    ) -> ContextSnapshot:
        """Create a room with a fresh bot and interlocutor persona."""

        async with self._sessionmaker() as db:
            async with db.begin():
                room_repo = RoomRepo(db)
                target_id = room_id or uuid.uuid4().hex
                if await room_repo.get_room(target_id):
                    raise ConversationError("ROOM_EXISTS", "Room already exists")
                persona_repo = PersonaRepo(db)
                bot = await persona_repo.create_persona(uuid.uuid4().hex, bot_name, bot_profile)
                master = await persona_repo.create_persona(
                    uuid.uuid4().hex, master_name, master_profile
                )
                room = await room_repo.create_room(
                    room_id=target_id,
                    name=name,
                    description=description,
                    bot_id=bot.id,
                    master_id=master.id,
                )
        return self._snapshot(room, bot, master)

    async def get_snapshot(self, room_id: Optional[str] = None) -> ContextSnapshot:
        """Read the current bot, master, room and memory handle for a room."""

        target_id = room_id or self.default_room_id
        async with self._sessionmaker() as db:
            row = await RoomRepo(db).get_room_with_personas(target_id)
        if row is None:
            raise ConversationError("ROOM_NOT_FOUND", "Room not found")
        room, bot, master = row
        return self._snapshot(room, bot, master)

    async def get_messages(self, room_id: str, *, take: int) -> list[Message]:
        """Return up to ``take`` messages of a room, most recent first."""

        if take < 1:
            return []
        async with self._sessionmaker() as db:
            rows = await MessageRepo(db).list_recent(room_id, take)
        return [
            Message(
                sender=_persona_ref(sender),
                text=message.text,
                timestamp_ms=datetime_to_millis(message.created_at),
            )
            for message, sender in rows
        ]

    async def on_message(self, ctx: ContextSnapshot, message: Message) -> str:
        """Append a message to the room of ``ctx`` and return the stored id."""

        message_id = uuid.uuid4().hex
        async with self._sessionmaker() as db:
            async with db.begin():
                await MessageRepo(db).add_message(
                    message_id=message_id,
                    room_id=ctx.room.id,
                    sender_id=message.sender.id,
                    text=message.text,
                    created_at=millis_to_datetime(message.timestamp_ms),
                )
        logger.debug(
            "Stored message %s from %s in room %s", message_id, message.sender.name, ctx.room.id
        )
        return message_id

    def _snapshot(self, room: Room, bot: Persona, master: Persona) -> ContextSnapshot:
        return ContextSnapshot(
            bot=_persona_ref(bot),
            master=_persona_ref(master),
            room=_room_info(room),
            memory=self._memory_service.access_for(room.id),
        )


def _persona_ref(persona: Persona) -> PersonaRef:
    return PersonaRef(id=persona.id, name=persona.name, profile=persona.profile or "")


def _room_info(room: Room) -> RoomInfo:
    return RoomInfo(id=room.id, name=room.name, description=room.description or "")


def get_conversation_manager(request: Request) -> ConversationManager:
    """Dependency to access the conversation manager from app state."""

    return request.app.state.conversation_manager
