from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MemorySample:
    """One remembered text fragment substituted into the system prompt."""

    text: str


@dataclass(frozen=True)
class MemoryRecord:
    """Stored memory row returned to API callers."""

    id: str
    room_id: str
    kind: str
    text: str
    created_at_ms: int
