from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from persona_chat.core.security import sanitize_text
from persona_chat.schemas.memory import (
    MemoryCreateRequest,
    MemoryKind,
    MemoryListResponse,
    MemoryOut,
)
from persona_chat.services.conversation_manager import (
    ConversationError,
    ConversationManager,
    get_conversation_manager,
)
from persona_chat.services.memory_service import MemoryService

router = APIRouter(prefix="/api/memory", tags=["memory"])

MAX_MEMORY_LEN = 4000


def get_memory_service(request: Request) -> MemoryService:
    """Dependency to access the memory service from app state."""

    return request.app.state.memory_service


@router.post("/{room_id}", response_model=MemoryOut)
async def add_memory(
    room_id: str,
    payload: MemoryCreateRequest,
    conversation: ConversationManager = Depends(get_conversation_manager),
    memory_service: MemoryService = Depends(get_memory_service),
) -> MemoryOut:
    """Store a short-term or long-term memory for a room."""

    await _ensure_room(conversation, room_id)
    text = sanitize_text(payload.text, MAX_MEMORY_LEN)
    if not text:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Memory text must not be empty"
        )
    record = await memory_service.add_memory(room_id=room_id, kind=payload.kind, text=text)
    return MemoryOut.model_validate(record)


@router.get("/{room_id}", response_model=MemoryListResponse)
async def list_memories(
    room_id: str,
    kind: MemoryKind = Query(default="short_term"),
    limit: int = Query(default=20, ge=1, le=200),
    conversation: ConversationManager = Depends(get_conversation_manager),
    memory_service: MemoryService = Depends(get_memory_service),
) -> MemoryListResponse:
    """List memories of one kind, newest first."""

    await _ensure_room(conversation, room_id)
    records = await memory_service.list_memories(room_id=room_id, kind=kind, limit=limit)
    return MemoryListResponse(memories=[MemoryOut.model_validate(item) for item in records])


async def _ensure_room(conversation: ConversationManager, room_id: str) -> None:
    try:
        await conversation.get_snapshot(room_id)
    except ConversationError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc
