from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from persona_chat.core.security import sanitize_text
from persona_chat.schemas.message import MessageListResponse, MessageOut
from persona_chat.schemas.room import PersonaOut, RoomCreateRequest, RoomOut
from persona_chat.services.conversation_manager import (
    ContextSnapshot,
    ConversationError,
    ConversationManager,
    get_conversation_manager,
)

router = APIRouter(prefix="/api/room", tags=["room"])

MAX_NAME_LEN = 200
MAX_PROFILE_LEN = 8000


@router.post("/create", response_model=RoomOut)
async def create_room(
    payload: RoomCreateRequest,
    conversation: ConversationManager = Depends(get_conversation_manager),
) -> RoomOut:
    """Create a room with its own bot and interlocutor personas."""

    name = sanitize_text(payload.name, MAX_NAME_LEN)
    bot_name = sanitize_text(payload.bot.name, MAX_NAME_LEN)
    master_name = sanitize_text(payload.master.name, MAX_NAME_LEN)
    if not name or not bot_name or not master_name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Room, bot and master names must not be empty",
        )
    try:
        snapshot = await conversation.create_room(
            room_id=payload.room_id,
            name=name,
            description=sanitize_text(payload.description, MAX_PROFILE_LEN),
            bot_name=bot_name,
            bot_profile=sanitize_text(payload.bot.profile, MAX_PROFILE_LEN),
            master_name=master_name,
            master_profile=sanitize_text(payload.master.profile, MAX_PROFILE_LEN),
        )
    except ConversationError as exc:
        raise HTTPException(status_code=_room_status(exc.code), detail=exc.message) from exc
    return _room_out(snapshot)


@router.get("/{room_id}", response_model=RoomOut)
async def get_room(
    room_id: str,
    conversation: ConversationManager = Depends(get_conversation_manager),
) -> RoomOut:
    """Return a room and its personas."""

    try:
        snapshot = await conversation.get_snapshot(room_id)
    except ConversationError as exc:
        raise HTTPException(status_code=_room_status(exc.code), detail=exc.message) from exc
    return _room_out(snapshot)


@router.get("/{room_id}/messages", response_model=MessageListResponse)
async def list_messages(
    room_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    conversation: ConversationManager = Depends(get_conversation_manager),
) -> MessageListResponse:
    """Return the latest messages of a room, oldest first."""

    try:
        snapshot = await conversation.get_snapshot(room_id)
    except ConversationError as exc:
        raise HTTPException(status_code=_room_status(exc.code), detail=exc.message) from exc
    messages = await conversation.get_messages(snapshot.room.id, take=limit)
    return MessageListResponse(
        messages=[
            MessageOut(
                sender_id=item.sender.id,
                sender_name=item.sender.name,
                text=item.text,
                timestamp=item.timestamp_ms,
            )
            for item in reversed(messages)
        ]
    )


def _room_status(code: str) -> int:
    if code == "ROOM_NOT_FOUND":
        return status.HTTP_404_NOT_FOUND
    if code == "ROOM_EXISTS":
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


def _room_out(snapshot: ContextSnapshot) -> RoomOut:
    return RoomOut(
        id=snapshot.room.id,
        name=snapshot.room.name,
        description=snapshot.room.description,
        bot=PersonaOut.model_validate(snapshot.bot),
        master=PersonaOut.model_validate(snapshot.master),
        memory_available=snapshot.memory is not None,
    )
