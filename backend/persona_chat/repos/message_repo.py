from __future__ import annotations

from datetime import datetime
from typing import List

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.db.models import ChatMessage, Persona


class MessageRepo:
    """Repository for chat message persistence."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def _next_seq(self, room_id: str) -> int:
        result = await self._db.execute(
            select(func.max(ChatMessage.seq)).where(ChatMessage.room_id == room_id)
        )
        max_seq = result.scalar_one() or 0
        return int(max_seq) + 1

    async def add_message(
        self,
        message_id: str,
        room_id: str,
        sender_id: str,
        text: str,
        created_at: datetime,
    ) -> ChatMessage:
        """Append a message to a room with an incremented sequence number."""

        for attempt in range(3):
            try:
                seq = await self._next_seq(room_id)
                message = ChatMessage(
                    id=message_id,
                    room_id=room_id,
                    seq=seq,
                    sender_id=sender_id,
                    text=text,
                    created_at=created_at,
                )
                self._db.add(message)
                await self._db.flush()
                return message
            except IntegrityError:
                await self._db.rollback()
                if attempt == 2:
                    raise
        raise RuntimeError("Failed to insert chat message after retries")

    async def list_recent(
        self, room_id: str, limit: int
    ) -> List[tuple[ChatMessage, Persona]]:
        """Return the latest messages of a room with their senders, newest first."""

        stmt = (
            select(ChatMessage, Persona)
            .join(Persona, Persona.id == ChatMessage.sender_id)
            .where(ChatMessage.room_id == room_id)
            .order_by(ChatMessage.seq.desc())
            .limit(limit)
        )
        result = await self._db.execute(stmt)
        return [(message, sender) for message, sender in result.all()]
