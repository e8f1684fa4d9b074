from __future__ import annotations

from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.db.models import MemoryItem
from persona_chat.utils.time_utils import utc_now


class MemoryRepo:
    """Repository for short-term and long-term memory rows."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def add_memory(self, *, item_id: str, room_id: str, kind: str, text: str) -> MemoryItem:
        """Insert one memory row."""

        item = MemoryItem(id=item_id, room_id=room_id, kind=kind, text=text, created_at=utc_now())
        self._db.add(item)
        await self._db.flush()
        return item

    async def list_recent(self, *, room_id: str, kind: str, limit: int) -> List[MemoryItem]:
        """List memories of one kind, newest first."""

        stmt = (
            select(MemoryItem)
            .where(MemoryItem.room_id == room_id, MemoryItem.kind == kind)
            .order_by(MemoryItem.created_at.desc())
            .limit(limit)
        )
        result = await self._db.execute(stmt)
        return list(result.scalars())
