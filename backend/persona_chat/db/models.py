from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from persona_chat.db.base import Base
from persona_chat.utils.time_utils import utc_now

MEMORY_KIND_SHORT_TERM = "short_term"
MEMORY_KIND_LONG_TERM = "long_term"
MEMORY_KINDS = (MEMORY_KIND_SHORT_TERM, MEMORY_KIND_LONG_TERM)


class Persona(Base):
    """A named participant: either the bot or the person it talks to."""

    __tablename__ = "personas"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    profile: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class Room(Base):
    """A conversation room binding one bot persona to one interlocutor."""

    __tablename__ = "rooms"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    bot_id: Mapped[str] = mapped_column(String, ForeignKey("personas.id"), nullable=False)
    master_id: Mapped[str] = mapped_column(String, ForeignKey("personas.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class ChatMessage(Base):
    """A persisted chat line, inbound from the interlocutor or generated by the bot."""

    __tablename__ = "chat_messages"
    __table_args__ = (UniqueConstraint("room_id", "seq", name="uq_chat_message_room_seq"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    room_id: Mapped[str] = mapped_column(String, ForeignKey("rooms.id"), nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    sender_id: Mapped[str] = mapped_column(String, ForeignKey("personas.id"), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class MemoryItem(Base):
    """Short-term or long-term memory text attached to a room."""

    __tablename__ = "memory_items"
    __table_args__ = (Index("ix_memory_items_room_kind", "room_id", "kind", "created_at"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    room_id: Mapped[str] = mapped_column(String, ForeignKey("rooms.id"), nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
