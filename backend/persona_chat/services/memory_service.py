from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from persona_chat.db.models import MEMORY_KIND_LONG_TERM, MEMORY_KIND_SHORT_TERM, MEMORY_KINDS
from persona_chat.memory.types import MemoryRecord, MemorySample
from persona_chat.repos.memory_repo import MemoryRepo
from persona_chat.utils.time_utils import datetime_to_millis

logger = logging.getLogger(__name__)


class MemoryAccess(ABC):
    """Read handle over the memories of one room."""

    @abstractmethod
    async def get_short_term_memories(self, *, take: int) -> list[MemorySample]:
        """Return recent short-term memories, newest first."""

    @abstractmethod
    async def get_long_term_memories(self, *, take: int) -> list[MemorySample]:
        """Return durable long-term memories, newest first."""


class RoomMemoryAccess(MemoryAccess):
    """Database-backed memory access scoped to a single room."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], room_id: str) -> None:
        self._sessionmaker = sessionmaker
        self.room_id = room_id

    async def get_short_term_memories(self, *, take: int) -> list[MemorySample]:
        return await self._take(MEMORY_KIND_SHORT_TERM, take)

    async def get_long_term_memories(self, *, take: int) -> list[MemorySample]:
        return await self._take(MEMORY_KIND_LONG_TERM, take)

    async def _take(self, kind: str, take: int) -> list[MemorySample]:
        if take < 1:
            return []
        async with self._sessionmaker() as db:
            rows = await MemoryRepo(db).list_recent(room_id=self.room_id, kind=kind, limit=take)
        return [MemorySample(text=row.text) for row in rows]


class MemoryService:
    """Hand out per-room memory access and record new memories."""

    def __init__(
        self, sessionmaker: async_sessionmaker[AsyncSession], *, enabled: bool = True
    ) -> None:
        self._sessionmaker = sessionmaker
        self.enabled = enabled

    def access_for(self, room_id: str) -> Optional[MemoryAccess]:
        """Return memory access for a room, or None while memory is disabled."""

        if not self.enabled:
            return None
        return RoomMemoryAccess(self._sessionmaker, room_id)

    async def add_memory(self, *, room_id: str, kind: str, text: str) -> MemoryRecord:
        """Store one memory text for a room."""

        if kind not in MEMORY_KINDS:
            raise ValueError(f"Unknown memory kind: {kind}")
        async with self._sessionmaker() as db:
            async with db.begin():
                item = await MemoryRepo(db).add_memory(
                    item_id=uuid.uuid4().hex, room_id=room_id, kind=kind, text=text
                )
        logger.debug("Stored %s memory %s for room %s", kind, item.id, room_id)
        return self._to_record(item)

    async def list_memories(self, *, room_id: str, kind: str, limit: int) -> list[MemoryRecord]:
        """List stored memories of one kind, newest first."""

        async with self._sessionmaker() as db:
            rows = await MemoryRepo(db).list_recent(room_id=room_id, kind=kind, limit=limit)
        return [self._to_record(row) for row in rows]

    @staticmethod
    def _to_record(item) -> MemoryRecord:
        return MemoryRecord(
            id=item.id,
            room_id=item.room_id,
            kind=item.kind,
            text=item.text,
            created_at_ms=datetime_to_millis(item.created_at),
        )
