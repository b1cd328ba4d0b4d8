"""User and organization schemas."""

from __future__ import annotations

from typing import Optional

from pydantic import UUID4, BaseModel, ConfigDict, EmailStr


class UserCreate(BaseModel):
    email: EmailStr
    first_name: str = ""
    last_name: str = ""
    nickname: Optional[str] = None
    admin_role: Optional[str] = None


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    uuid: UUID4
    nickname: str


class OrganizationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    uuid: UUID4
    name: str


class TrustCreate(BaseModel):
    secondary_id: UUID4


class TrustedOrganizations(BaseModel):
    organization: OrganizationRead
    trusted: list[OrganizationRead]
