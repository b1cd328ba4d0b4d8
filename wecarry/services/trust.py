"""
Trust graph: symmetric organization-to-organization trust edges.

A trust relation is stored as a pair of mirror rows, (a, b) and (b, a).
"""

from __future__ import annotations

from typing import Iterable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from wecarry.core.errors import ValidationFailed
from wecarry.models.organization import Organization, OrganizationTrust

log = structlog.get_logger()


async def find_trust(
    session: AsyncSession, primary_id: int, secondary_id: int
) -> OrganizationTrust | None:
    result = await session.execute(
        select(OrganizationTrust).where(
            OrganizationTrust.primary_id == primary_id,
            OrganizationTrust.secondary_id == secondary_id,
        )
    )
    return result.scalars().first()


async def _create_edge(session: AsyncSession, primary_id: int, secondary_id: int) -> OrganizationTrust:
    existing = await find_trust(session, primary_id, secondary_id)
    if existing:
        return existing

    edge = OrganizationTrust(primary_id=primary_id, secondary_id=secondary_id)
    session.add(edge)
    await session.flush()
    return edge


async def create_trust(session: AsyncSession, primary_id: int, secondary_id: int) -> OrganizationTrust:
    """Create the trust relation between two organizations.

    Idempotent: an existing relation is returned unchanged. Both edges are
    written in the caller's transaction, so a failure on the mirror edge
    rolls back the first one with it.
    """
    if primary_id == secondary_id:
        raise ValidationFailed(
            "an organization cannot trust itself",
            details={"primary_id": primary_id, "secondary_id": secondary_id},
        )

    edge = await _create_edge(session, primary_id, secondary_id)
    await _create_edge(session, secondary_id, primary_id)

    log.info("trust.created", primary_id=primary_id, secondary_id=secondary_id)
    return edge


async def remove_trust(session: AsyncSession, primary_id: int, secondary_id: int) -> None:
    """Remove both directions of a trust relation. Missing edges are ignored."""
    result = await session.execute(
        select(OrganizationTrust).where(
            ((OrganizationTrust.primary_id == primary_id) & (OrganizationTrust.secondary_id == secondary_id))
            | ((OrganizationTrust.primary_id == secondary_id) & (OrganizationTrust.secondary_id == primary_id))
        )
    )
    for edge in result.scalars().all():
        await session.delete(edge)
    await session.flush()
    log.info("trust.removed", primary_id=primary_id, secondary_id=secondary_id)


async def list_trusts(session: AsyncSession, org_id: int) -> list[OrganizationTrust]:
    """Edges where ``org_id`` is the primary side."""
    result = await session.execute(
        select(OrganizationTrust)
        .where(OrganizationTrust.primary_id == org_id)
        .order_by(OrganizationTrust.id)
    )
    return list(result.scalars().all())


async def list_trusted_organizations(session: AsyncSession, org_id: int) -> list[Organization]:
    result = await session.execute(
        select(Organization)
        .join(OrganizationTrust, OrganizationTrust.secondary_id == Organization.id)
        .where(OrganizationTrust.primary_id == org_id)
        .order_by(Organization.name)
    )
    return list(result.scalars().all())


async def trusted_peer_ids(session: AsyncSession, org_ids: Iterable[int]) -> set[int]:
    """TrustedPeers(O) = {p : (o, p) is a trust edge, o in O}."""
    org_ids = list(org_ids)
    if not org_ids:
        return set()
    result = await session.execute(
        select(OrganizationTrust.secondary_id).where(OrganizationTrust.primary_id.in_(org_ids))
    )
    return {row[0] for row in result.all()}
