"""
Background jobs that turn domain events into emails.

Each job runs as ``handler(ctx, args)`` with its own session from
``ctx["session_factory"]``. Watermarks are committed before a message is
handed to the delivery adapter, so a crash can drop a notice but never
repeat one. Delivery failures are logged and the job moves on.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from wecarry.core.config import Settings, get_settings
from wecarry.core.database import get_session_context
from wecarry.core.errors import FatalError
from wecarry.models.base import utcnow
from wecarry.models.request import Request, RequestNotification
from wecarry.models.thread import Message, Thread
from wecarry.models.user import User
from wecarry.notifications import recipients, templates
from wecarry.notifications.delivery import EmailService, Message as EmailMessage
from wecarry.notifications.delivery import get_email_service
from wecarry.schemas.common import RequestStatus
from wecarry.services import locations, potential_providers, requests, threads, users

log = structlog.get_logger()

NEW_MESSAGE = "new_message"
REQUEST_STATUS_UPDATED = "request_status_updated"
REQUEST_CREATED = "request_created"
POTENTIAL_PROVIDER_EVENT = "potential_provider_event"
USER_WELCOME = "user_welcome"
ACCESS_TOKEN_CLEANUP = "access_token_cleanup"


def _settings(ctx: dict) -> Settings:
    return ctx.get("settings") or get_settings()


def _email(ctx: dict) -> EmailService:
    service = ctx.get("email_service")
    if service is None:
        service = ctx["email_service"] = get_email_service(_settings(ctx))
    return service


def request_url(settings: Settings, request: Request) -> str:
    return f"{settings.ui_url}/requests/{request.uuid}"


def thread_url(settings: Settings, thread: Thread) -> str:
    return f"{settings.ui_url}/messages/{thread.uuid}"


async def _deliver(ctx: dict, msg: EmailMessage, **context: Any) -> bool:
    try:
        await _email(ctx).send(msg)
    except Exception:
        log.exception("notification.failed", template=msg.template, to=msg.to_email, **context)
        return False
    return True


def _email_for(user: User, template: str, data: dict[str, Any], sender: Optional[User] = None) -> EmailMessage:
    return EmailMessage(
        template=template,
        to_email=user.email,
        to_name=user.nickname,
        from_email=sender.email if sender else "",
        from_name=sender.nickname if sender else "",
        data=data,
    )


# ---------------------------------------------------------------------------
# New message
# ---------------------------------------------------------------------------


async def _retry_missing(ctx: dict, job: str, args: dict, what: str) -> None:
    """Resubmit ``job`` while the row it needs may still be committing."""
    settings = _settings(ctx)
    attempt = int(args.get("attempt", 0)) + 1
    queue = ctx.get("queue")
    if queue is None or attempt > settings.listener_max_retries:
        raise FatalError(f"{what} not found", details={"job": job, **args})

    log.warning("notification.retry", job=job, attempt=attempt, missing=what)
    queue.submit_delayed(job, {**args, "attempt": attempt}, delay=settings.listener_delay_milliseconds / 1000)


async def new_message(ctx: dict, args: dict) -> int:
    """Tell every other participant about a new message. Returns the number sent."""
    settings = _settings(ctx)
    sent = 0

    async with get_session_context(ctx.get("session_factory")) as session:
        message = await session.get(Message, args["message_id"])
        if message is None:
            await _retry_missing(ctx, NEW_MESSAGE, args, "message")
            return 0

        sender = await users.get_user(session, message.sent_by_id)
        thread = await threads.get_thread(session, message.thread_id)
        request = await requests.get_request(session, thread.request_id)

        for participant in await threads.get_participants(session, thread):
            if participant.user_id == sender.id:
                continue

            if participant.last_viewed_at > participant.last_notified_at:
                # active since the last notice; the next message will notify
                await threads.set_last_notified_at(session, participant, message.created_at)
                await session.commit()
                log.info("notification.skipped", reason="viewed", user_id=participant.user_id, message_id=message.id)
                continue
            if participant.last_notified_at >= message.created_at:
                log.info("notification.skipped", reason="already_notified", user_id=participant.user_id, message_id=message.id)
                continue

            await threads.set_last_notified_at(session, participant, utcnow())
            await session.commit()

            recipient = await users.get_user(session, participant.user_id)
            data = {
                "postURL": request_url(settings, request),
                "postTitle": request.title,
                "messageContent": message.content,
                "senderNickname": sender.nickname,
                "threadURL": thread_url(settings, thread),
            }
            msg = _email_for(recipient, templates.NEW_MESSAGE, data, sender=sender)
            if await _deliver(ctx, msg, message_id=message.id, user_id=recipient.id):
                sent += 1

    return sent


# ---------------------------------------------------------------------------
# Request status
# ---------------------------------------------------------------------------


async def _claim_status_notice(
    session: AsyncSession, request: Request, user_id: int, status: str, occurred_at: datetime
) -> bool:
    """Advance the (request, user) watermark. False if this change was already announced."""
    result = await session.execute(
        select(RequestNotification).where(
            RequestNotification.request_id == request.id,
            RequestNotification.user_id == user_id,
        )
    )
    row = result.scalars().first()
    if row is None:
        row = RequestNotification(request_id=request.id, user_id=user_id)
    elif (
        row.last_status == status
        and row.last_notified_at is not None
        and row.last_notified_at >= occurred_at
    ):
        return False

    row.last_status = status
    row.last_notified_at = utcnow()
    session.add(row)
    await session.flush()
    return True


def _status_data(settings: Settings, request: Request, old_status: str, creator: User, provider: Optional[User]) -> dict:
    return {
        "postURL": request_url(settings, request),
        "postTitle": request.title,
        "oldStatus": old_status,
        "newStatus": request.status,
        "requestCreator": creator.nickname,
        "providerNickname": provider.nickname if provider else "",
    }


async def request_status_updated(ctx: dict, args: dict) -> int:
    settings = _settings(ctx)
    old_status = RequestStatus(args["old_status"])
    new_status = RequestStatus(args["new_status"])
    occurred_at = datetime.fromisoformat(args["occurred_at"]) if args.get("occurred_at") else utcnow()
    sent = 0

    async with get_session_context(ctx.get("session_factory")) as session:
        request = await session.get(Request, args["request_id"])
        if request is None:
            raise FatalError("request not found", details=dict(args))

        creator = await users.get_user(session, request.created_by_id)
        provider = await session.get(User, request.provider_id) if request.provider_id else None
        if provider is None and args.get("old_provider_id"):
            provider = await session.get(User, args["old_provider_id"])

        recipient_ids: list[int] = []
        primary = recipients.status_recipient_id(request, old_status, new_status, args.get("old_provider_id"))
        if primary is not None:
            recipient_ids.append(primary)
        for watcher_id in await recipients.watcher_ids_near_destination(session, request):
            if watcher_id not in recipient_ids:
                recipient_ids.append(watcher_id)

        data = _status_data(settings, request, old_status.value, creator, provider)
        template = templates.request_status_template(new_status)
        for user_id in recipient_ids:
            if not await _claim_status_notice(session, request, user_id, new_status.value, occurred_at):
                log.info("notification.skipped", reason="already_notified", user_id=user_id, request_id=request.id)
                continue
            await session.commit()
            recipient = await users.get_user(session, user_id)
            if await _deliver(ctx, _email_for(recipient, template, data), request_id=request.id, user_id=user_id):
                sent += 1

        if (old_status, new_status) == (RequestStatus.OPEN, RequestStatus.ACCEPTED):
            sent += await _reject_other_offers(ctx, session, request, creator)

    return sent


async def _reject_other_offers(ctx: dict, session: AsyncSession, request: Request, creator: User) -> int:
    settings = _settings(ctx)
    sent = 0
    data = {
        "postURL": request_url(settings, request),
        "postTitle": request.title,
        "requestCreator": creator.nickname,
    }
    for user_id in await potential_providers.list_user_ids(session, request):
        if user_id == request.provider_id:
            continue
        user = await users.get_user(session, user_id)
        if await _deliver(ctx, _email_for(user, templates.POTENTIAL_PROVIDER_REJECTED, data), request_id=request.id, user_id=user_id):
            sent += 1
    return sent


# ---------------------------------------------------------------------------
# New request
# ---------------------------------------------------------------------------


async def request_created(ctx: dict, args: dict) -> int:
    settings = _settings(ctx)
    sent = 0

    async with get_session_context(ctx.get("session_factory")) as session:
        request = await session.get(Request, args["request_id"])
        if request is None:
            await _retry_missing(ctx, REQUEST_CREATED, args, "request")
            return 0

        creator = await users.get_user(session, request.created_by_id)
        org = await users.get_organization(session, request.organization_id)
        destination = await locations.get_location(session, request.destination_id)
        data = {
            "postURL": request_url(settings, request),
            "postTitle": request.title,
            "postDescription": request.description or "",
            "postDestination": destination.description if destination else "",
            "requestCreator": creator.nickname,
            "orgName": org.name,
        }

        for user in await requests.get_audience(session, request):
            if not await recipients.wants_request_notification(session, user, request):
                continue
            same_org = request.organization_id in await users.get_org_ids(session, user)
            template = templates.REQUEST_FROM_YOU if same_org else templates.REQUEST_FROM_TRUSTED
            if await _deliver(ctx, _email_for(user, template, data), request_id=request.id, user_id=user.id):
                sent += 1

    return sent


# ---------------------------------------------------------------------------
# Potential providers and users
# ---------------------------------------------------------------------------


POTENTIAL_PROVIDER_TEMPLATES = {
    "created": templates.POTENTIAL_PROVIDER_CREATED,
    "self_destroyed": templates.POTENTIAL_PROVIDER_SELF_DESTROYED,
    "rejected": templates.POTENTIAL_PROVIDER_REJECTED,
}


async def potential_provider_event(ctx: dict, args: dict) -> bool:
    """``created`` and ``self_destroyed`` go to the creator, ``rejected`` to the provider."""
    settings = _settings(ctx)
    action = args["action"]
    template = POTENTIAL_PROVIDER_TEMPLATES[action]

    async with get_session_context(ctx.get("session_factory")) as session:
        request = await session.get(Request, args["request_id"])
        if request is None:
            raise FatalError("request not found", details=dict(args))
        provider = await users.get_user(session, args["user_id"])
        creator = await users.get_user(session, request.created_by_id)

        recipient = provider if action == "rejected" else creator
        data = {
            "postURL": request_url(settings, request),
            "postTitle": request.title,
            "providerNickname": provider.nickname,
            "requestCreator": creator.nickname,
        }
        return await _deliver(ctx, _email_for(recipient, template, data), request_id=request.id, user_id=recipient.id)


async def user_welcome(ctx: dict, args: dict) -> bool:
    async with get_session_context(ctx.get("session_factory")) as session:
        user = await session.get(User, args["user_id"])
        if user is None:
            await _retry_missing(ctx, USER_WELCOME, args, "user")
            return False
        data = {"firstName": user.first_name or user.nickname}
        return await _deliver(ctx, _email_for(user, templates.WELCOME, data), user_id=user.id)


async def access_token_cleanup(ctx: dict, args: dict) -> int:
    async with get_session_context(ctx.get("session_factory")) as session:
        deleted = await users.delete_expired_access_tokens(session)
    log.info("access_tokens.cleaned", deleted=deleted)
    return deleted


JOBS = {
    NEW_MESSAGE: new_message,
    REQUEST_STATUS_UPDATED: request_status_updated,
    REQUEST_CREATED: request_created,
    POTENTIAL_PROVIDER_EVENT: potential_provider_event,
    USER_WELCOME: user_welcome,
    ACCESS_TOKEN_CLEANUP: access_token_cleanup,
}
