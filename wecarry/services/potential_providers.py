"""
Potential-provider registry: offers by non-creators to fulfill a request.
"""

from __future__ import annotations

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from wecarry.core import events
from wecarry.core.errors import BadRequestStatus, NotAllowed, NotFound, Unauthorized
from wecarry.models.request import PotentialProvider, Request
from wecarry.models.user import User
from wecarry.schemas.common import RequestStatus, UserAdminRole

log = structlog.get_logger()


async def find(session: AsyncSession, request: Request, user_id: int) -> PotentialProvider | None:
    result = await session.execute(
        select(PotentialProvider).where(
            PotentialProvider.request_id == request.id,
            PotentialProvider.user_id == user_id,
        )
    )
    return result.scalars().first()


async def offer(session: AsyncSession, request: Request, user: User) -> PotentialProvider:
    """Add ``user`` as a potential provider. Offering twice is harmless."""
    if user.id == request.created_by_id:
        raise NotAllowed(
            "the creator of a request cannot offer to provide it",
            details={"request": str(request.uuid), "user": str(user.uuid)},
        )

    if request.status != RequestStatus.OPEN.value:
        raise BadRequestStatus(
            f"can only create a potential provider for an OPEN request, got {request.status}",
            details={"request": str(request.uuid), "status": request.status},
        )

    existing = await find(session, request, user.id)
    if existing:
        return existing

    provider = PotentialProvider(request_id=request.id, user_id=user.id)
    session.add(provider)
    await session.flush()

    log.info("potential_provider.created", request_id=request.id, user_id=user.id)
    await events.emit(
        events.POTENTIAL_PROVIDER_CREATED,
        "Potential Provider created",
        **{events.KEY_EVENT_DATA: {"request_id": request.id, "user_id": user.id}},
    )
    return provider


async def _destroy(session: AsyncSession, request: Request, user_id: int) -> None:
    provider = await find(session, request, user_id)
    if provider is None:
        raise NotFound("PotentialProvider", f"request={request.uuid} user={user_id}")
    await session.delete(provider)
    await session.flush()


async def retract(session: AsyncSession, request: Request, user: User) -> None:
    """The potential provider withdraws their own offer."""
    await _destroy(session, request, user.id)

    log.info("potential_provider.self_destroyed", request_id=request.id, user_id=user.id)
    await events.emit(
        events.POTENTIAL_PROVIDER_SELF_DESTROYED,
        "Potential Provider self-destroyed",
        **{events.KEY_EVENT_DATA: {"request_id": request.id, "user_id": user.id}},
    )


async def reject_by_creator(
    session: AsyncSession, request: Request, target: User, acting_user: User
) -> None:
    """The request creator turns down ``target``'s offer."""
    if acting_user.id != request.created_by_id:
        raise Unauthorized(
            "only the request creator can reject a potential provider",
            details={"request": str(request.uuid), "user": str(acting_user.uuid)},
        )

    await _destroy(session, request, target.id)

    log.info("potential_provider.rejected", request_id=request.id, user_id=target.id)
    await events.emit(
        events.POTENTIAL_PROVIDER_REJECTED,
        "Potential Provider rejected",
        **{events.KEY_EVENT_DATA: {"request_id": request.id, "user_id": target.id}},
    )


async def list_user_ids(session: AsyncSession, request: Request) -> list[int]:
    result = await session.execute(
        select(PotentialProvider.user_id)
        .where(PotentialProvider.request_id == request.id)
        .order_by(PotentialProvider.id)
    )
    return [row[0] for row in result.all()]


async def list_for_request(session: AsyncSession, request: Request, viewer: User) -> list[User]:
    """The creator sees every potential provider; a potential provider only
    sees themself; anybody else sees nothing."""
    user_ids = await list_user_ids(session, request)

    if viewer.id == request.created_by_id or viewer.admin_role == UserAdminRole.SUPER_ADMIN.value:
        visible_ids = user_ids
    elif viewer.id in user_ids:
        visible_ids = [viewer.id]
    else:
        return []

    if not visible_ids:
        return []
    result = await session.execute(select(User).where(User.id.in_(visible_ids)))
    by_id = {u.id: u for u in result.scalars().all()}
    return [by_id[i] for i in visible_ids if i in by_id]


async def destroy_all_for_request(
    session: AsyncSession, request: Request, acting_user: User, new_status: RequestStatus
) -> int:
    """Clear every offer once the request is COMPLETED. Otherwise a no-op."""
    if RequestStatus(new_status) != RequestStatus.COMPLETED:
        return 0

    if (
        acting_user.id != request.created_by_id
        and acting_user.admin_role != UserAdminRole.SUPER_ADMIN.value
    ):
        raise Unauthorized(
            "only the request creator can remove all potential providers",
            details={"request": str(request.uuid), "user": str(acting_user.uuid)},
        )

    result = await session.execute(
        delete(PotentialProvider).where(PotentialProvider.request_id == request.id)
    )
    await session.flush()
    count = result.rowcount or 0
    log.info("potential_provider.destroyed_all", request_id=request.id, count=count)
    return count
