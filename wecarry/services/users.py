"""
User service: lookups, memberships, role checks and access tokens.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Optional, Sequence

import jwt
import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from wecarry.core import events
from wecarry.core.config import get_settings
from wecarry.core.errors import Conflict, NotFound, ValidationFailed
from wecarry.models.base import utcnow
from wecarry.models.organization import Organization, UserOrganization
from wecarry.models.user import User, UserAccessToken
from wecarry.schemas.common import OrgRole, UserAdminRole
from wecarry.schemas.users import UserCreate

log = structlog.get_logger()

SYSTEM_ADMIN_ROLES = {UserAdminRole.SUPER_ADMIN.value, UserAdminRole.SALES_ADMIN.value}

_EPOCH = datetime(1970, 1, 1)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_user(session: AsyncSession, user_id: int) -> User:
    user = await session.get(User, user_id)
    if not user:
        raise NotFound("User", user_id)
    return user


async def get_user_by_uuid(session: AsyncSession, user_uuid: uuid.UUID | str) -> User:
    try:
        key = user_uuid if isinstance(user_uuid, uuid.UUID) else uuid.UUID(str(user_uuid))
    except ValueError:
        raise NotFound("User", user_uuid)
    result = await session.execute(select(User).where(User.uuid == key))
    user = result.scalars().first()
    if not user:
        raise NotFound("User", user_uuid)
    return user


async def get_organization(session: AsyncSession, org_id: int) -> Organization:
    org = await session.get(Organization, org_id)
    if not org:
        raise NotFound("Organization", org_id)
    return org


async def get_organization_by_uuid(session: AsyncSession, org_uuid: uuid.UUID | str) -> Organization:
    try:
        key = org_uuid if isinstance(org_uuid, uuid.UUID) else uuid.UUID(str(org_uuid))
    except ValueError:
        raise NotFound("Organization", org_uuid)
    result = await session.execute(select(Organization).where(Organization.uuid == key))
    org = result.scalars().first()
    if not org:
        raise NotFound("Organization", org_uuid)
    return org


# ---------------------------------------------------------------------------
# Memberships and roles
# ---------------------------------------------------------------------------


async def get_org_ids(session: AsyncSession, user: User) -> list[int]:
    result = await session.execute(
        select(UserOrganization.organization_id)
        .where(UserOrganization.user_id == user.id)
        .order_by(UserOrganization.organization_id)
    )
    return [row[0] for row in result.all()]


async def get_org_users(session: AsyncSession, org_ids: Sequence[int]) -> list[User]:
    if not org_ids:
        return []
    result = await session.execute(
        select(User)
        .join(UserOrganization, UserOrganization.user_id == User.id)
        .where(UserOrganization.organization_id.in_(list(org_ids)))
        .distinct()
        .order_by(User.id)
    )
    return list(result.scalars().all())


async def add_membership(
    session: AsyncSession, user: User, org: Organization, role: OrgRole = OrgRole.USER
) -> UserOrganization:
    result = await session.execute(
        select(UserOrganization).where(
            UserOrganization.user_id == user.id,
            UserOrganization.organization_id == org.id,
        )
    )
    existing = result.scalars().first()
    if existing:
        return existing

    membership = UserOrganization(
        user_id=user.id,
        organization_id=org.id,
        role=role.value,
        auth_email=user.email,
    )
    session.add(membership)
    await session.flush()
    return membership


def is_super_admin(user: User) -> bool:
    return user.admin_role == UserAdminRole.SUPER_ADMIN.value


def can_create_organization_trust(user: User) -> bool:
    return user.admin_role in SYSTEM_ADMIN_ROLES


async def is_org_admin(session: AsyncSession, user: User, org_id: int) -> bool:
    result = await session.execute(
        select(UserOrganization).where(
            UserOrganization.user_id == user.id,
            UserOrganization.organization_id == org_id,
            UserOrganization.role == OrgRole.ADMIN.value,
        )
    )
    return result.scalars().first() is not None


async def can_remove_organization_trust(session: AsyncSession, user: User, org_id: int) -> bool:
    if user.admin_role in SYSTEM_ADMIN_ROLES:
        return True
    return await is_org_admin(session, user, org_id)


async def can_view_organization(session: AsyncSession, user: User, org_id: int) -> bool:
    if user.admin_role in SYSTEM_ADMIN_ROLES:
        return True
    return await is_org_admin(session, user, org_id)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


async def create_user(
    session: AsyncSession,
    user_in: UserCreate,
    org: Optional[Organization] = None,
) -> User:
    """Create a user, optionally as a member of ``org``, and emit UserCreated."""
    result = await session.execute(select(User).where(User.email == user_in.email))
    if result.scalars().first():
        raise Conflict("a user with that email already exists", details={"email": user_in.email})

    if user_in.admin_role and user_in.admin_role not in {r.value for r in UserAdminRole}:
        raise ValidationFailed("invalid admin role", details={"admin_role": user_in.admin_role})

    user = User(
        email=user_in.email,
        first_name=user_in.first_name,
        last_name=user_in.last_name,
        nickname=await _unique_nickname(session, user_in.nickname or user_in.first_name or "user"),
        admin_role=user_in.admin_role or UserAdminRole.USER.value,
    )
    session.add(user)
    await session.flush()

    if org is not None:
        await add_membership(session, user, org)

    log.info("user.created", user_id=user.id, user_uuid=str(user.uuid))
    await events.emit(
        events.USER_CREATED,
        f"Nickname: {user.nickname}  UUID: {user.uuid}",
        **{events.KEY_ID: user.id},
    )
    return user


async def _unique_nickname(session: AsyncSession, base: str) -> str:
    candidate = base
    suffix = 1
    while True:
        result = await session.execute(select(User.id).where(User.nickname == candidate))
        if result.first() is None:
            return candidate
        suffix += 1
        candidate = f"{base}{suffix}"


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


async def issue_access_token(
    session: AsyncSession,
    user: User,
    org: Optional[Organization] = None,
    client_id: str = "",
) -> tuple[str, int]:
    """Persist a new access token for ``user`` and return (bearer token, expires_at epoch)."""
    settings = get_settings()
    issued = utcnow()
    expires_at = issued + timedelta(seconds=settings.access_token_lifetime_seconds)
    token_id = uuid.uuid4().hex

    membership_id = None
    if org is not None:
        membership = await add_membership(session, user, org)
        membership_id = membership.id

    session.add(
        UserAccessToken(
            user_id=user.id,
            user_organization_id=membership_id,
            token_id=token_id,
            client_id=client_id,
            expires_at=expires_at,
        )
    )
    await session.flush()

    expires_epoch = int((expires_at - _EPOCH).total_seconds())
    token = jwt.encode(
        {
            "sub": str(user.uuid),
            "jti": token_id,
            "iat": int((issued - _EPOCH).total_seconds()),
            "exp": expires_epoch,
        },
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )

    await events.emit(
        events.USER_LOGGED_IN,
        f"Nickname: {user.nickname}  UUID: {user.uuid}",
        **{events.KEY_ID: user.id},
    )
    return token, expires_epoch


async def resolve_access_token(session: AsyncSession, token: str) -> User:
    """Return the user for a bearer token; raise NotFound if unknown or expired."""
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError:
        raise NotFound("UserAccessToken", "invalid")

    result = await session.execute(
        select(UserAccessToken).where(UserAccessToken.token_id == claims.get("jti"))
    )
    access_token = result.scalars().first()
    if not access_token or access_token.expires_at <= utcnow():
        raise NotFound("UserAccessToken", claims.get("jti"))

    return await get_user(session, access_token.user_id)


async def delete_expired_access_tokens(session: AsyncSession) -> int:
    result = await session.execute(
        delete(UserAccessToken).where(UserAccessToken.expires_at < utcnow())
    )
    await session.flush()
    return result.rowcount or 0


