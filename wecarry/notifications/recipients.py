"""
Who gets told about what.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from wecarry.models.request import Request
from wecarry.models.user import User
from wecarry.models.watch import Watch
from wecarry.schemas.common import RequestStatus
from wecarry.services import locations, visibility, watches

S = RequestStatus

# (old, new) -> who hears about the change
PROVIDER = "provider"
RECEIVER = "receiver"
OLD_PROVIDER = "old_provider"

STATUS_RECIPIENTS: dict[tuple[RequestStatus, RequestStatus], str] = {
    (S.ACCEPTED, S.COMPLETED): PROVIDER,
    (S.ACCEPTED, S.RECEIVED): PROVIDER,
    (S.ACCEPTED, S.REMOVED): PROVIDER,
    (S.DELIVERED, S.COMPLETED): PROVIDER,
    (S.OPEN, S.ACCEPTED): PROVIDER,
    (S.COMPLETED, S.ACCEPTED): PROVIDER,
    (S.COMPLETED, S.DELIVERED): PROVIDER,
    (S.ACCEPTED, S.DELIVERED): RECEIVER,
    (S.DELIVERED, S.ACCEPTED): RECEIVER,
    (S.ACCEPTED, S.OPEN): OLD_PROVIDER,
}


def status_recipient_id(
    request: Request,
    old_status: RequestStatus,
    new_status: RequestStatus,
    old_provider_id: Optional[int],
) -> Optional[int]:
    role = STATUS_RECIPIENTS.get((RequestStatus(old_status), RequestStatus(new_status)))
    if role == PROVIDER:
        return request.provider_id
    if role == RECEIVER:
        return request.created_by_id
    if role == OLD_PROVIDER:
        return old_provider_id
    return None


async def watcher_ids_near_destination(session: AsyncSession, request: Request) -> list[int]:
    """Owners of watches near the request's destination who can see the request."""
    destination = await locations.get_location(session, request.destination_id)
    if destination is None:
        return []

    result = await session.execute(
        select(Watch).where(Watch.destination_id.is_not(None)).order_by(Watch.id)
    )
    owner_ids: list[int] = []
    for watch in result.scalars().all():
        if watch.owner_id in owner_ids or watch.owner_id == request.created_by_id:
            continue
        watch_location = await locations.get_location(session, watch.destination_id)
        if not locations.is_near(destination, watch_location):
            continue
        owner = await session.get(User, watch.owner_id)
        if owner is not None and await visibility.is_visible(session, owner, request):
            owner_ids.append(watch.owner_id)
    return owner_ids


async def wants_request_notification(session: AsyncSession, user: User, request: Request) -> bool:
    """Whether ``user`` should hear about the new ``request``.

    True when the user's home location is near the request's origin, or
    when one of the user's watches matches it. Never true for the creator.
    """
    if user.id == request.created_by_id:
        return False

    if user.location_id is not None and request.origin_id is not None:
        home = await locations.get_location(session, user.location_id)
        origin = await locations.get_location(session, request.origin_id)
        if locations.is_near(home, origin):
            return True

    for watch in await watches.list_watches(session, user):
        if await watches.matches_request(session, watch, request):
            return True
    return False
