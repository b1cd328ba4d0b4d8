"""Watch schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import UUID4, BaseModel

from .common import RequestSize
from .locations import LocationInput, LocationRead


class WatchInput(BaseModel):
    name: str
    destination: Optional[LocationInput] = None
    origin: Optional[LocationInput] = None
    meeting_id: Optional[UUID4] = None
    search_text: Optional[str] = None
    size: Optional[RequestSize] = None


class WatchRead(BaseModel):
    id: UUID4
    name: str
    destination: Optional[LocationRead] = None
    origin: Optional[LocationRead] = None
    meeting_id: Optional[UUID4] = None
    search_text: Optional[str] = None
    size: Optional[RequestSize] = None
    created_at: datetime
    updated_at: datetime
