"""Thread, participant and message models."""

from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IDMixin, TimestampMixin, UUIDMixin, utcnow


class Thread(IDMixin, UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "threads"

    request_id: int = Field(foreign_key="requests.id", nullable=False, index=True)


class ThreadParticipant(IDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "thread_participants"
    __table_args__ = (sa.UniqueConstraint("thread_id", "user_id"),)

    thread_id: int = Field(foreign_key="threads.id", nullable=False, index=True)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    last_viewed_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=sa.DateTime())
    last_notified_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=sa.DateTime())


class Message(IDMixin, UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "messages"

    thread_id: int = Field(foreign_key="threads.id", nullable=False, index=True)
    sent_by_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    content: str = Field(nullable=False)
