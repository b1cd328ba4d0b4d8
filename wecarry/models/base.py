"""Base mixins for SQLModel tables."""

from datetime import date, datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Naive UTC wall-clock time, the form every timestamp column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class IDMixin(SQLModel):
    id: Optional[int] = Field(default=None, primary_key=True)


class UUIDMixin(SQLModel):
    uuid: UUID = Field(
        default_factory=uuid4,
        unique=True,
        index=True,
        nullable=False,
    )


class TimestampMixin(SQLModel):
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=sa.DateTime(),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"onupdate": utcnow},
        sa_type=sa.DateTime(),
    )


def today() -> date:
    return utcnow().date()


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
