"""
Authorization gate.

Predicates answer allow/deny; the ``require_*`` helpers raise the matching
domain error so handlers can stay linear.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from wecarry.core.errors import NotFound, Unauthorized
from wecarry.models.meeting import Meeting, MeetingParticipant
from wecarry.models.request import Request
from wecarry.models.user import User
from wecarry.schemas.common import RequestStatus, UserAdminRole
from wecarry.services import state_machine, visibility

REQUEST_EDITOR_ROLES = frozenset(
    {
        UserAdminRole.SUPER_ADMIN.value,
        UserAdminRole.SALES_ADMIN.value,
        UserAdminRole.ADMIN.value,
    }
)


async def can_view_request(session: AsyncSession, user: User, request: Request) -> bool:
    return await visibility.is_visible(session, user, request)


async def can_read_request(session: AsyncSession, user: User, request: Request) -> bool:
    """View access for a single request, which its creator and provider keep
    after it leaves the visible set (e.g. once COMPLETED)."""
    if user.admin_role == UserAdminRole.SUPER_ADMIN.value:
        return True
    if user.id in (request.created_by_id, request.provider_id):
        return True
    return await can_view_request(session, user, request)


def can_edit_request(user: User, request: Request) -> bool:
    if user.id != request.created_by_id and user.admin_role not in REQUEST_EDITOR_ROLES:
        return False
    return state_machine.is_editable_status(RequestStatus(request.status))


def can_change_status(user: User, request: Request, new_status: RequestStatus) -> bool:
    return state_machine.can_user_change_status(user, request, new_status)


async def is_meeting_organizer(session: AsyncSession, user: User, meeting: Meeting) -> bool:
    result = await session.execute(
        select(MeetingParticipant).where(
            MeetingParticipant.meeting_id == meeting.id,
            MeetingParticipant.user_id == user.id,
            MeetingParticipant.is_organizer.is_(True),
        )
    )
    return result.scalars().first() is not None


async def can_view_meeting_participants(session: AsyncSession, user: User, meeting: Meeting) -> bool:
    if user.admin_role == UserAdminRole.SUPER_ADMIN.value:
        return True
    if user.id == meeting.created_by_id:
        return True
    return await is_meeting_organizer(session, user, meeting)


# ---------------------------------------------------------------------------
# Raising variants
# ---------------------------------------------------------------------------


async def require_readable(session: AsyncSession, user: User, request: Request) -> None:
    # hidden requests look exactly like missing ones
    if not await can_read_request(session, user, request):
        raise NotFound("Request", request.uuid)


async def require_visible(session: AsyncSession, user: User, request: Request) -> None:
    if not await can_view_request(session, user, request):
        raise NotFound("Request", request.uuid)


def require_editable(user: User, request: Request) -> None:
    if not can_edit_request(user, request):
        raise Unauthorized(
            "attempt to update a non-editable request",
            details={"request": str(request.uuid), "user": str(user.uuid), "status": request.status},
        )


def require_status_change(user: User, request: Request, new_status: RequestStatus) -> None:
    if not can_change_status(user, request, new_status):
        raise Unauthorized(
            "not allowed to change request status",
            details={
                "request": str(request.uuid),
                "user": str(user.uuid),
                "oldStatus": request.status,
                "newStatus": RequestStatus(new_status).value,
            },
        )
