"""Organization, membership and trust models."""

from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IDMixin, TimestampMixin, UUIDMixin


class Organization(IDMixin, UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "organizations"

    name: str = Field(nullable=False, index=True)
    url: Optional[str] = None
    auth_type: str = Field(default="", nullable=False)  # saml | google | azureadv2 | ...
    auth_config: dict = Field(default_factory=dict, sa_type=sa.JSON, nullable=False)


class UserOrganization(IDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "user_organizations"
    __table_args__ = (sa.UniqueConstraint("organization_id", "user_id"),)

    organization_id: int = Field(foreign_key="organizations.id", nullable=False, index=True)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    role: str = Field(default="user", nullable=False)  # user | admin
    auth_id: str = Field(default="", nullable=False)
    auth_email: str = Field(default="", nullable=False)


class OrganizationTrust(IDMixin, TimestampMixin, SQLModel, table=True):
    """One direction of a trust relation; a mirror row always exists."""

    __tablename__ = "organization_trusts"
    __table_args__ = (
        sa.UniqueConstraint("primary_id", "secondary_id"),
        sa.CheckConstraint("primary_id <> secondary_id", name="ck_trust_not_self"),
    )

    primary_id: int = Field(foreign_key="organizations.id", nullable=False, index=True)
    secondary_id: int = Field(foreign_key="organizations.id", nullable=False, index=True)
