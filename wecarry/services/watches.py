"""
Watches: a user's standing interest in requests.

A watch matches a request when every criterion it sets matches. A watch
that sets no criterion matches nothing.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from wecarry.core.errors import NotFound, ValidationFailed
from wecarry.models.location import Location
from wecarry.models.meeting import Meeting
from wecarry.models.request import Request
from wecarry.models.user import User
from wecarry.models.watch import Watch
from wecarry.schemas.common import REQUEST_SIZE_ORDER, RequestSize
from wecarry.schemas.locations import LocationRead
from wecarry.schemas.watches import WatchInput, WatchRead
from wecarry.services import locations
from wecarry.services.visibility import matches_text

log = structlog.get_logger()


async def get_watch_by_uuid(session: AsyncSession, watch_uuid: uuid.UUID | str) -> Watch:
    try:
        key = watch_uuid if isinstance(watch_uuid, uuid.UUID) else uuid.UUID(str(watch_uuid))
    except ValueError:
        raise NotFound("Watch", watch_uuid)
    result = await session.execute(select(Watch).where(Watch.uuid == key))
    watch = result.scalars().first()
    if not watch:
        raise NotFound("Watch", watch_uuid)
    return watch


async def get_own_watch(session: AsyncSession, user: User, watch_uuid: uuid.UUID | str) -> Watch:
    watch = await get_watch_by_uuid(session, watch_uuid)
    # other users' watches are reported as missing
    if watch.owner_id != user.id:
        raise NotFound("Watch", watch_uuid)
    return watch


async def list_watches(session: AsyncSession, user: User) -> list[Watch]:
    result = await session.execute(
        select(Watch).where(Watch.owner_id == user.id).order_by(Watch.id)
    )
    return list(result.scalars().all())


async def _meeting_id(session: AsyncSession, meeting_uuid: Optional[uuid.UUID]) -> Optional[int]:
    if meeting_uuid is None:
        return None
    result = await session.execute(select(Meeting.id).where(Meeting.uuid == meeting_uuid))
    row = result.first()
    if row is None:
        raise NotFound("Meeting", meeting_uuid)
    return row[0]


async def _replace_location(
    session: AsyncSession, current_id: Optional[int], data
) -> Optional[int]:
    current = await locations.get_location(session, current_id)
    if data is None:
        if current is not None:
            await session.delete(current)
        return None
    if current is None:
        return (await locations.create_location(session, data)).id
    await locations.update_location(session, current, data)
    return current.id


def _validate(data: WatchInput) -> None:
    if not data.name or not data.name.strip():
        raise ValidationFailed("watch name is required", details={"field": "name"})


async def create_watch(session: AsyncSession, user: User, data: WatchInput) -> Watch:
    _validate(data)
    watch = Watch(
        owner_id=user.id,
        name=data.name.strip(),
        destination_id=await _replace_location(session, None, data.destination),
        origin_id=await _replace_location(session, None, data.origin),
        meeting_id=await _meeting_id(session, data.meeting_id),
        search_text=data.search_text or None,
        size=data.size.value if data.size else None,
    )
    session.add(watch)
    await session.flush()
    log.info("watch.created", watch_id=watch.id, owner_id=user.id)
    return watch


async def update_watch(session: AsyncSession, watch: Watch, data: WatchInput) -> Watch:
    """Replace every field of ``watch``; criteria left out of ``data`` are cleared."""
    _validate(data)
    watch.name = data.name.strip()
    watch.destination_id = await _replace_location(session, watch.destination_id, data.destination)
    watch.origin_id = await _replace_location(session, watch.origin_id, data.origin)
    watch.meeting_id = await _meeting_id(session, data.meeting_id)
    watch.search_text = data.search_text or None
    watch.size = data.size.value if data.size else None
    session.add(watch)
    await session.flush()
    log.info("watch.updated", watch_id=watch.id)
    return watch


async def remove_watch(session: AsyncSession, watch: Watch) -> None:
    location_ids = [watch.destination_id, watch.origin_id]
    await session.delete(watch)
    await session.flush()
    for location_id in location_ids:
        location = await locations.get_location(session, location_id)
        if location is not None:
            await session.delete(location)
    await session.flush()
    log.info("watch.removed", watch_id=watch.id)


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


def _size_fits(request_size: str, watch_size: str) -> bool:
    return REQUEST_SIZE_ORDER.index(RequestSize(request_size)) <= REQUEST_SIZE_ORDER.index(
        RequestSize(watch_size)
    )


def matches(
    watch: Watch,
    request: Request,
    destination: Optional[Location],
    origin: Optional[Location],
    watch_destination: Optional[Location],
    watch_origin: Optional[Location],
) -> bool:
    """Pure matching on already loaded locations."""
    criteria = 0

    if watch.destination_id is not None:
        criteria += 1
        if not locations.is_near(destination, watch_destination):
            return False
    if watch.origin_id is not None:
        criteria += 1
        if not locations.is_near(origin, watch_origin):
            return False
    if watch.meeting_id is not None:
        criteria += 1
        if request.meeting_id != watch.meeting_id:
            return False
    if watch.search_text:
        criteria += 1
        if not matches_text(request, watch.search_text):
            return False
    if watch.size:
        criteria += 1
        if not _size_fits(request.size, watch.size):
            return False

    return criteria > 0


async def matches_request(session: AsyncSession, watch: Watch, request: Request) -> bool:
    return matches(
        watch,
        request,
        await locations.get_location(session, request.destination_id),
        await locations.get_location(session, request.origin_id),
        await locations.get_location(session, watch.destination_id),
        await locations.get_location(session, watch.origin_id),
    )


async def to_read(session: AsyncSession, watch: Watch) -> WatchRead:
    destination = await locations.get_location(session, watch.destination_id)
    origin = await locations.get_location(session, watch.origin_id)
    meeting = await session.get(Meeting, watch.meeting_id) if watch.meeting_id else None
    return WatchRead(
        id=watch.uuid,
        name=watch.name,
        destination=LocationRead.model_validate(destination) if destination else None,
        origin=LocationRead.model_validate(origin) if origin else None,
        meeting_id=meeting.uuid if meeting else None,
        search_text=watch.search_text,
        size=watch.size,
        created_at=watch.created_at,
        updated_at=watch.updated_at,
    )
