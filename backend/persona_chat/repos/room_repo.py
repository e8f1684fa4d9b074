from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from persona_chat.db.models import Persona, Room
from persona_chat.utils.time_utils import utc_now


class RoomRepo:
    """Repository for conversation room persistence."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def create_room(
        self,
        room_id: str,
        name: str,
        description: str,
        bot_id: str,
        master_id: str,
    ) -> Room:
        """Persist a new room and return it."""

        room = Room(
            id=room_id,
            name=name,
            description=description,
            bot_id=bot_id,
            master_id=master_id,
            created_at=utc_now(),
            updated_at=utc_now(),
        )
        self._db.add(room)
        await self._db.flush()
        return room

    async def get_room(self, room_id: str) -> Optional[Room]:
        """Fetch a room by ID."""

        result = await self._db.execute(select(Room).where(Room.id == room_id))
        return result.scalar_one_or_none()

    async def get_room_with_personas(
        self, room_id: str
    ) -> Optional[tuple[Room, Persona, Persona]]:
        """Fetch a room together with its bot and master personas."""

        bot = aliased(Persona)
        master = aliased(Persona)
        result = await self._db.execute(
            select(Room, bot, master)
            .join(bot, bot.id == Room.bot_id)
            .join(master, master.id == Room.master_id)
            .where(Room.id == room_id)
        )
        row = result.one_or_none()
        if row is None:
            return None
        return row[0], row[1], row[2]
