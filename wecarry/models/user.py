"""User and access token models."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IDMixin, TimestampMixin, UUIDMixin


class User(IDMixin, UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"

    email: str = Field(unique=True, index=True, nullable=False)
    first_name: str = Field(default="", nullable=False)
    last_name: str = Field(default="", nullable=False)
    nickname: str = Field(unique=True, nullable=False)
    admin_role: str = Field(default="user", nullable=False)  # user | salesAdmin | admin | superAdmin
    location_id: Optional[int] = Field(default=None, foreign_key="locations.id")

    @property
    def real_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.nickname


class UserAccessToken(IDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "user_access_tokens"

    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    user_organization_id: Optional[int] = Field(default=None, foreign_key="user_organizations.id")
    token_id: str = Field(unique=True, index=True, nullable=False)  # JWT jti
    client_id: str = Field(default="", nullable=False)
    expires_at: datetime = Field(nullable=False, sa_type=sa.DateTime())
