"""Request, request history and potential provider models."""

from datetime import date, datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IDMixin, TimestampMixin, UUIDMixin


class Request(IDMixin, UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "requests"

    created_by_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    organization_id: int = Field(foreign_key="organizations.id", nullable=False, index=True)
    provider_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True)
    status: str = Field(default="OPEN", nullable=False, index=True)
    visibility: str = Field(default="SAME", nullable=False)  # ALL | TRUSTED | SAME
    title: str = Field(nullable=False)
    description: Optional[str] = None
    size: str = Field(nullable=False)  # TINY | SMALL | MEDIUM | LARGE | XLARGE
    url: Optional[str] = None
    kilograms: Optional[float] = None
    needed_before: Optional[date] = Field(default=None, sa_type=sa.Date())
    completed_on: Optional[date] = Field(default=None, sa_type=sa.Date())
    destination_id: int = Field(foreign_key="locations.id", nullable=False)
    origin_id: Optional[int] = Field(default=None, foreign_key="locations.id")
    meeting_id: Optional[int] = Field(default=None, foreign_key="meetings.id")
    file_id: Optional[str] = None  # photo, stored externally


class RequestHistory(IDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "request_histories"

    request_id: int = Field(foreign_key="requests.id", nullable=False, index=True)
    status: str = Field(nullable=False)
    receiver_id: int = Field(foreign_key="users.id", nullable=False)
    provider_id: Optional[int] = Field(default=None, foreign_key="users.id")


class PotentialProvider(IDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "potential_providers"
    __table_args__ = (sa.UniqueConstraint("request_id", "user_id"),)

    request_id: int = Field(foreign_key="requests.id", nullable=False, index=True)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)


class RequestNotification(IDMixin, TimestampMixin, SQLModel, table=True):
    """Per (request, user) watermark for status-change notifications."""

    __tablename__ = "request_notifications"
    __table_args__ = (sa.UniqueConstraint("request_id", "user_id"),)

    request_id: int = Field(foreign_key="requests.id", nullable=False, index=True)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    last_status: str = Field(default="", nullable=False)
    last_notified_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime())
