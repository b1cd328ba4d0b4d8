"""
Request service: creation, editing and the status lifecycle.

Status changes go through ``update_status``, which checks the transition
table, the acting user's role, resolves the provider on acceptance and keeps
the history stack, ``completed_on`` and potential providers in step.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from wecarry.core import events
from wecarry.core.errors import (
    InvalidInitialStatus,
    NotFound,
    Unauthorized,
    ValidationFailed,
    WeCarryError,
    report_error,
)
from wecarry.models.base import today
from wecarry.models.meeting import Meeting
from wecarry.models.request import Request
from wecarry.models.user import User
from wecarry.schemas.common import RequestAction, RequestStatus, RequestVisibility
from wecarry.schemas.locations import LocationRead
from wecarry.schemas.requests import (
    RequestCreate,
    RequestRead,
    RequestUpdate,
    StatusTransitionRead,
)
from wecarry.schemas.users import OrganizationRead, UserRead
from wecarry.services import authorization, history, locations, potential_providers
from wecarry.services import state_machine, threads, trust, users

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_request(session: AsyncSession, request_id: int) -> Request:
    request = await session.get(Request, request_id)
    if not request:
        raise NotFound("Request", request_id)
    return request


async def get_request_by_uuid(session: AsyncSession, request_uuid: uuid.UUID | str) -> Request:
    try:
        key = request_uuid if isinstance(request_uuid, uuid.UUID) else uuid.UUID(str(request_uuid))
    except ValueError:
        raise NotFound("Request", request_uuid)
    result = await session.execute(select(Request).where(Request.uuid == key))
    request = result.scalars().first()
    if not request:
        raise NotFound("Request", request_uuid)
    return request


async def _get_meeting_by_uuid(session: AsyncSession, meeting_uuid: uuid.UUID) -> Meeting:
    result = await session.execute(select(Meeting).where(Meeting.uuid == meeting_uuid))
    meeting = result.scalars().first()
    if not meeting:
        raise NotFound("Meeting", meeting_uuid)
    return meeting


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _validate_needed_before(needed_before) -> None:
    if needed_before is not None and needed_before <= today():
        raise ValidationFailed(
            "needed_before must be after today",
            details={"needed_before": needed_before.isoformat()},
        )


def _validate_title(title: Optional[str]) -> None:
    if not title or not title.strip():
        raise ValidationFailed("title is required", details={"field": "title"})


# ---------------------------------------------------------------------------
# Create / update
# ---------------------------------------------------------------------------


async def create_request(session: AsyncSession, user: User, data: RequestCreate) -> Request:
    if data.status != RequestStatus.OPEN:
        raise InvalidInitialStatus(
            f"can only create a request with '{RequestStatus.OPEN.value}' status, "
            f"not '{data.status.value}' status",
            details={"status": data.status.value},
        )
    _validate_title(data.title)
    _validate_needed_before(data.needed_before)

    org = await users.get_organization_by_uuid(session, data.org_id)
    if not users.is_super_admin(user) and org.id not in await users.get_org_ids(session, user):
        raise report_error(
            Unauthorized(
                "user is not a member of the organization",
                details={"user": str(user.uuid), "organization": str(org.uuid)},
            ),
            "CreateRequest.Organization",
        )

    meeting = None
    if data.meeting_id is not None:
        meeting = await _get_meeting_by_uuid(session, data.meeting_id)
        destination_id = meeting.location_id
    elif data.destination is not None:
        destination_id = (await locations.create_location(session, data.destination)).id
    else:
        raise ValidationFailed("destination is required", details={"field": "destination"})

    origin_id = None
    if data.origin is not None:
        origin_id = (await locations.create_location(session, data.origin)).id

    request = Request(
        created_by_id=user.id,
        organization_id=org.id,
        status=RequestStatus.OPEN.value,
        visibility=(data.visibility or RequestVisibility.SAME).value,
        title=data.title.strip(),
        description=data.description,
        size=data.size.value,
        url=data.url,
        kilograms=data.kilograms,
        needed_before=data.needed_before,
        destination_id=destination_id,
        origin_id=origin_id,
        meeting_id=meeting.id if meeting else None,
        file_id=data.photo_id,
    )
    session.add(request)
    await session.flush()
    await history.push(session, request)

    log.info("request.created", request_id=request.id, user_id=user.id, organization_id=org.id)
    await events.emit(
        events.REQUEST_CREATED,
        f"Request created: {request.uuid}",
        **{events.KEY_EVENT_DATA: {"request_id": request.id}},
    )
    return request


async def update_request(
    session: AsyncSession, request: Request, user: User, data: RequestUpdate
) -> Request:
    """Apply the fields present in ``data``. Sending ``origin: null`` removes the origin."""
    authorization.require_editable(user, request)
    fields = data.model_fields_set

    if "title" in fields:
        _validate_title(data.title)
        request.title = data.title.strip()
    if "description" in fields:
        request.description = data.description
    if "size" in fields and data.size is not None:
        request.size = data.size.value
    if "visibility" in fields and data.visibility is not None:
        request.visibility = data.visibility.value
    if "url" in fields:
        request.url = data.url
    if "kilograms" in fields:
        request.kilograms = data.kilograms
    if "photo_id" in fields:
        request.file_id = data.photo_id
    if "needed_before" in fields and data.needed_before != request.needed_before:
        _validate_needed_before(data.needed_before)
        request.needed_before = data.needed_before

    if "destination" in fields and data.destination is not None:
        destination = await locations.get_location(session, request.destination_id)
        # a meeting's location is shared, never edit it in place
        if destination is None or request.meeting_id is not None:
            request.destination_id = (await locations.create_location(session, data.destination)).id
        else:
            await locations.update_location(session, destination, data.destination)

    if "origin" in fields:
        origin = await locations.get_location(session, request.origin_id)
        if data.origin is None:
            request.origin_id = None
            if origin is not None:
                await session.delete(origin)
        elif origin is None:
            request.origin_id = (await locations.create_location(session, data.origin)).id
        else:
            await locations.update_location(session, origin, data.origin)

    session.add(request)
    await session.flush()

    log.info("request.updated", request_id=request.id, user_id=user.id, fields=sorted(fields))
    await events.emit(
        events.REQUEST_UPDATED,
        f"Request updated: {request.uuid}",
        **{events.KEY_EVENT_DATA: {"request_id": request.id}},
    )
    return request


# ---------------------------------------------------------------------------
# Status lifecycle
# ---------------------------------------------------------------------------


async def _set_provider(
    session: AsyncSession, request: Request, new_status: RequestStatus, provider_user_id
) -> None:
    if new_status == RequestStatus.ACCEPTED and request.status == RequestStatus.OPEN.value:
        if provider_user_id is None:
            raise ValidationFailed(
                "provider ID must not be nil", details={"field": "provider_user_id"}
            )
        provider = await users.get_user_by_uuid(session, provider_user_id)
        request.provider_id = provider.id
    elif new_status == RequestStatus.OPEN:
        request.provider_id = None


async def _manage_status_transition(
    session: AsyncSession,
    request: Request,
    old_status: RequestStatus,
    old_provider_id: Optional[int],
    target: state_machine.StatusTransitionTarget,
) -> None:
    new_status = target.status

    if target.is_back_step:
        await history.pop(session, request, old_status.value)
    else:
        await history.push(session, request)

    if new_status == RequestStatus.COMPLETED:
        if request.completed_on is None:
            request.completed_on = today()
    elif new_status in (RequestStatus.OPEN, RequestStatus.ACCEPTED, RequestStatus.DELIVERED):
        request.completed_on = None

    session.add(request)
    await session.flush()

    await events.emit(
        events.REQUEST_STATUS_UPDATED,
        f"Status from {old_status.value} to {new_status.value} for request {request.uuid}",
        **{
            events.KEY_EVENT_DATA: {
                "old_status": old_status.value,
                "new_status": new_status.value,
                "request_id": request.id,
                "old_provider_id": old_provider_id,
            }
        },
    )


async def update_status(
    session: AsyncSession,
    request: Request,
    user: User,
    new_status: RequestStatus,
    provider_user_id=None,
) -> Request:
    """Move ``request`` to ``new_status`` on behalf of ``user``.

    A request already in ``new_status`` is returned unchanged.
    """
    new_status = RequestStatus(new_status)
    old_status = RequestStatus(request.status)
    if new_status == old_status:
        return request

    extras = {"user": str(user.uuid), "oldStatus": old_status.value, "newStatus": new_status.value}
    operation = "UpdateRequestStatus"
    try:
        operation = "UpdateRequestStatus.Transition"
        target = state_machine.require_transition(old_status, new_status)

        operation = "UpdateRequestStatus.Unauthorized"
        authorization.require_status_change(user, request, new_status)

        operation = "UpdateRequestStatus.SetProvider"
        old_provider_id = request.provider_id
        await _set_provider(session, request, new_status, provider_user_id)
        request.status = new_status.value

        operation = "UpdateRequestStatus"
        await _manage_status_transition(session, request, old_status, old_provider_id, target)

        operation = "UpdateRequestStatus.DestroyPotentialProviders"
        await potential_providers.destroy_all_for_request(session, request, user, new_status)
    except WeCarryError as exc:
        raise report_error(exc, operation, **extras)

    log.info(
        "request.status_updated",
        request_id=request.id,
        old_status=old_status.value,
        new_status=new_status.value,
        user_id=user.id,
    )

    if new_status == RequestStatus.OPEN:
        await events.emit(
            events.REQUEST_UPDATED,
            f"Request reopened: {request.uuid}",
            **{events.KEY_EVENT_DATA: {"request_id": request.id}},
        )
    return request


async def mark_delivered(session: AsyncSession, request: Request, user: User) -> Request:
    return await update_status(session, request, user, RequestStatus.DELIVERED)


async def mark_received(session: AsyncSession, request: Request, user: User) -> Request:
    return await update_status(session, request, user, RequestStatus.COMPLETED)


# ---------------------------------------------------------------------------
# Actions and audience
# ---------------------------------------------------------------------------


async def get_potential_provider_actions(
    session: AsyncSession, request: Request, user: User
) -> list[str]:
    if request.status != RequestStatus.OPEN.value or user.id == request.created_by_id:
        return []
    if await potential_providers.find(session, request, user.id):
        return [RequestAction.RETRACT_OFFER.value]
    return [RequestAction.OFFER.value]


async def get_current_actions(session: AsyncSession, request: Request, user: User) -> list[str]:
    actions = state_machine.status_actions_for(request, user)
    actions.extend(await get_potential_provider_actions(session, request, user))
    return actions


async def get_audience(session: AsyncSession, request: Request) -> list[User]:
    """Users who might act on ``request``: members of its organization and,
    unless visibility is SAME, members of trusted peer organizations."""
    org_ids = [request.organization_id]
    if request.visibility != RequestVisibility.SAME.value:
        peers = await trust.trusted_peer_ids(session, org_ids)
        org_ids.extend(sorted(peers))
    return await users.get_org_users(session, org_ids)


# ---------------------------------------------------------------------------
# Read model
# ---------------------------------------------------------------------------


async def enrich_request(session: AsyncSession, request: Request, viewer: User) -> RequestRead:
    creator = await users.get_user(session, request.created_by_id)
    provider = await users.get_user(session, request.provider_id) if request.provider_id else None
    org = await users.get_organization(session, request.organization_id)
    destination = await locations.get_location(session, request.destination_id)
    origin = await locations.get_location(session, request.origin_id)
    offers = await potential_providers.list_for_request(session, request, viewer)
    request_threads = await threads.get_request_threads(session, request, viewer)

    return RequestRead(
        id=request.uuid,
        title=request.title,
        description=request.description,
        size=request.size,
        status=request.status,
        visibility=request.visibility,
        url=request.url,
        kilograms=request.kilograms,
        needed_before=request.needed_before,
        completed_on=request.completed_on,
        photo_id=request.file_id,
        created_by=UserRead.model_validate(creator),
        provider=UserRead.model_validate(provider) if provider else None,
        organization=OrganizationRead.model_validate(org),
        destination=LocationRead.model_validate(destination),
        origin=LocationRead.model_validate(origin) if origin else None,
        potential_providers=[UserRead.model_validate(u) for u in offers],
        thread_ids=[t.uuid for t in request_threads],
        status_transitions=[
            StatusTransitionRead(
                status=t.status,
                is_back_step=t.is_back_step,
                is_provider_action=t.is_provider_action,
            )
            for t in state_machine.get_status_transitions(request, viewer)
        ],
        actions=await get_current_actions(session, request, viewer),
        is_editable=authorization.can_edit_request(viewer, request),
        created_at=request.created_at,
        updated_at=request.updated_at,
    )
