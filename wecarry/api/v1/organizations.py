"""
Organization trust endpoints.

GET    /api/v1/organizations/{orgId}/trusts                List trusted organizations
POST   /api/v1/organizations/{orgId}/trusts                Trust another organization
DELETE /api/v1/organizations/{orgId}/trusts/{secondaryId}  Remove a trust
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from wecarry.core.auth import get_current_user
from wecarry.core.database import get_session
from wecarry.core.errors import Unauthorized, report_error
from wecarry.models.organization import Organization
from wecarry.models.user import User
from wecarry.schemas.users import OrganizationRead, TrustCreate, TrustedOrganizations
from wecarry.services import trust, users

log = structlog.get_logger()

router = APIRouter()


async def _trusted(session: AsyncSession, org: Organization) -> TrustedOrganizations:
    trusted = await trust.list_trusted_organizations(session, org.id)
    return TrustedOrganizations(
        organization=OrganizationRead.model_validate(org),
        trusted=[OrganizationRead.model_validate(o) for o in trusted],
    )


@router.get("/{org_id}/trusts", response_model=TrustedOrganizations)
async def list_trusts(
    org_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    org = await users.get_organization_by_uuid(session, org_id)
    is_member = org.id in await users.get_org_ids(session, user)
    if not is_member and not await users.can_view_organization(session, user, org.id):
        raise report_error(
            Unauthorized("not allowed to view organization", details={"user": str(user.uuid)}),
            "ListOrganizationTrusts",
        )
    return await _trusted(session, org)


@router.post("/{org_id}/trusts", response_model=TrustedOrganizations, status_code=201)
async def create_trust(
    org_id: uuid.UUID,
    body: TrustCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    if not users.can_create_organization_trust(user):
        raise report_error(
            Unauthorized("insufficient permissions to create a trust", details={"user": str(user.uuid)}),
            "CreateOrganizationTrust",
        )
    primary = await users.get_organization_by_uuid(session, org_id)
    secondary = await users.get_organization_by_uuid(session, body.secondary_id)
    await trust.create_trust(session, primary.id, secondary.id)
    return await _trusted(session, primary)


@router.delete("/{org_id}/trusts/{secondary_id}", response_model=TrustedOrganizations)
async def remove_trust(
    org_id: uuid.UUID,
    secondary_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    primary = await users.get_organization_by_uuid(session, org_id)
    if not await users.can_remove_organization_trust(session, user, primary.id):
        raise report_error(
            Unauthorized("insufficient permissions to remove a trust", details={"user": str(user.uuid)}),
            "RemoveOrganizationTrust",
        )
    secondary = await users.get_organization_by_uuid(session, secondary_id)
    await trust.remove_trust(session, primary.id, secondary.id)
    return await _trusted(session, primary)
