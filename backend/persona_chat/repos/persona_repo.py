from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.db.models import Persona
from persona_chat.utils.time_utils import utc_now


class PersonaRepo:
    """Repository for persona persistence."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def create_persona(self, persona_id: str, name: str, profile: str) -> Persona:
        """Persist a new persona and return it."""

        persona = Persona(id=persona_id, name=name, profile=profile, created_at=utc_now())
        self._db.add(persona)
        await self._db.flush()
        return persona
