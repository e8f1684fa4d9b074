from __future__ import annotations

from typing import Optional

from pydantic import Field

from persona_chat.schemas.common import APIModel


class AskRequest(APIModel):
    """Inbound chat message posted over HTTP."""

    text: str
    timestamp: Optional[int] = Field(default=None, ge=0)


class StreamStateResponse(APIModel):
    """Snapshot of an open stream."""

    request_id: str
    status: str
    text: str


class CancelResponse(APIModel):
    """Result of a cancel request."""

    request_id: str
    canceled: bool
