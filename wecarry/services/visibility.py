"""
Visibility resolver: which requests a user may see.

A request in any status other than REMOVED or COMPLETED is visible to U when
it belongs to one of U's organizations, when its visibility is ALL, or when
its visibility is TRUSTED and its organization is a trusted peer of one of
U's organizations. The id filter runs in SQL; text and location filters run
on the loaded rows, so text search is a plain case-folded substring test on
every backend.
"""

from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy import and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from wecarry.models.location import Location
from wecarry.models.organization import Organization, OrganizationTrust
from wecarry.models.request import Request
from wecarry.models.user import User
from wecarry.schemas.common import RequestStatus, RequestVisibility
from wecarry.schemas.requests import RequestFilter
from wecarry.services.locations import is_near, to_location
from wecarry.services.users import get_org_ids

HIDDEN = [RequestStatus.REMOVED.value, RequestStatus.COMPLETED.value]


def matches_text(request: Request, text: str) -> bool:
    """Case-insensitive substring match on title or description."""
    needle = text.casefold()
    return needle in (request.title or "").casefold() or needle in (request.description or "").casefold()


def _apply_filter(stmt, filter: Optional[RequestFilter]):
    if filter is None:
        return stmt
    if filter.request_id is not None:
        stmt = stmt.where(Request.id == filter.request_id)
    return stmt


async def _run(session: AsyncSession, stmt, filter: Optional[RequestFilter]) -> list[Request]:
    stmt = _apply_filter(stmt, filter).order_by(Request.created_at.desc(), Request.id.desc())
    result = await session.execute(stmt)
    requests = list(result.scalars().all())

    if filter is not None and filter.search_text:
        requests = [r for r in requests if matches_text(r, filter.search_text)]
    if filter is not None and filter.destination is not None:
        requests = await filter_destination(session, requests, to_location(filter.destination))
    if filter is not None and filter.origin is not None:
        requests = await filter_origin(session, requests, to_location(filter.origin))
    return requests


async def _locations(session: AsyncSession, ids: Sequence[int]) -> dict[int, Location]:
    ids = [i for i in ids if i is not None]
    if not ids:
        return {}
    result = await session.execute(select(Location).where(Location.id.in_(ids)))
    return {loc.id: loc for loc in result.scalars().all()}


async def filter_destination(
    session: AsyncSession, requests: list[Request], location: Location
) -> list[Request]:
    locations = await _locations(session, [r.destination_id for r in requests])
    return [r for r in requests if is_near(locations.get(r.destination_id), location)]


async def filter_origin(
    session: AsyncSession, requests: list[Request], location: Location
) -> list[Request]:
    locations = await _locations(session, [r.origin_id for r in requests])
    return [r for r in requests if is_near(locations.get(r.origin_id), location)]


async def find_by_user(
    session: AsyncSession, user: User, filter: Optional[RequestFilter] = None
) -> list[Request]:
    """Requests visible to ``user``, newest first."""
    org_ids = await get_org_ids(session, user)
    if not org_ids:
        return []

    trusted_orgs = select(OrganizationTrust.secondary_id).where(
        OrganizationTrust.primary_id.in_(org_ids)
    )
    stmt = select(Request).where(
        or_(
            Request.organization_id.in_(org_ids),
            Request.visibility == RequestVisibility.ALL.value,
            and_(
                Request.organization_id.in_(trusted_orgs),
                Request.visibility == RequestVisibility.TRUSTED.value,
            ),
        ),
        Request.status.not_in(HIDDEN),
    )
    return await _run(session, stmt, filter)


async def find_by_organization(
    session: AsyncSession, org: Organization, filter: Optional[RequestFilter] = None
) -> list[Request]:
    """Non-public requests visible to members of ``org``."""
    trusted_orgs = select(OrganizationTrust.secondary_id).where(
        OrganizationTrust.primary_id == org.id
    )
    stmt = select(Request).where(
        or_(
            and_(
                Request.organization_id == org.id,
                Request.visibility.in_(
                    [RequestVisibility.SAME.value, RequestVisibility.TRUSTED.value]
                ),
            ),
            and_(
                Request.organization_id.in_(trusted_orgs),
                Request.visibility == RequestVisibility.TRUSTED.value,
            ),
        ),
        Request.status.not_in(HIDDEN),
    )
    return await _run(session, stmt, filter)


async def find_public(session: AsyncSession, filter: Optional[RequestFilter] = None) -> list[Request]:
    """Requests visible to every user."""
    stmt = select(Request).where(
        Request.visibility == RequestVisibility.ALL.value,
        Request.status.not_in(HIDDEN),
    )
    return await _run(session, stmt, filter)


async def is_visible(session: AsyncSession, user: User, request: Request) -> bool:
    found = await find_by_user(session, user, RequestFilter(request_id=request.id))
    return len(found) > 0
