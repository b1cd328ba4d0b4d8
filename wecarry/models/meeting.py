"""Meeting models, kept to what requests and the authorization gate read."""

from datetime import date

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IDMixin, TimestampMixin, UUIDMixin


class Meeting(IDMixin, UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "meetings"

    name: str = Field(nullable=False)
    created_by_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    location_id: int = Field(foreign_key="locations.id", nullable=False)
    start_date: date = Field(nullable=False, sa_type=sa.Date())
    end_date: date = Field(nullable=False, sa_type=sa.Date())


class MeetingParticipant(IDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "meeting_participants"
    __table_args__ = (sa.UniqueConstraint("meeting_id", "user_id"),)

    meeting_id: int = Field(foreign_key="meetings.id", nullable=False, index=True)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    is_organizer: bool = Field(default=False, nullable=False)
