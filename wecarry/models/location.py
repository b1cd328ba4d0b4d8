"""Location model."""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import IDMixin, TimestampMixin


class Location(IDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "locations"

    description: str = Field(nullable=False)
    country: str = Field(default="", nullable=False)  # ISO 3166-1 alpha-2, or "" when unknown
    latitude: Optional[float] = None
    longitude: Optional[float] = None
