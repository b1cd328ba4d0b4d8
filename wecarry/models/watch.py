"""Watch model: a user's standing interest in new requests."""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import IDMixin, TimestampMixin, UUIDMixin


class Watch(IDMixin, UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "watches"

    owner_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    name: str = Field(nullable=False)
    destination_id: Optional[int] = Field(default=None, foreign_key="locations.id")
    origin_id: Optional[int] = Field(default=None, foreign_key="locations.id")
    meeting_id: Optional[int] = Field(default=None, foreign_key="meetings.id")
    search_text: Optional[str] = None
    size: Optional[str] = None  # largest size of interest
