"""Thread and message schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import UUID4, BaseModel, Field

from .users import UserRead


class MessageCreate(BaseModel):
    content: str
    thread_id: Optional[UUID4] = None
    request_id: Optional[UUID4] = None


class MessageRead(BaseModel):
    id: UUID4
    content: str
    sender: UserRead
    thread_id: UUID4
    created_at: datetime


class ThreadRead(BaseModel):
    id: UUID4
    request_id: UUID4
    participants: List[UserRead] = Field(default_factory=list)
    last_viewed_at: Optional[datetime] = None
    unread_message_count: int = 0
    updated_at: datetime


class ThreadLastViewed(BaseModel):
    time: datetime


class UnreadThread(BaseModel):
    thread_id: UUID4
    count: int
