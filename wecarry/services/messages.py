"""
Message dispatcher: persist a message and announce it on the event bus.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from wecarry.core import events
from wecarry.core.errors import NotFound, ValidationFailed
from wecarry.models.base import utcnow
from wecarry.models.request import Request
from wecarry.models.thread import Message, Thread
from wecarry.models.user import User
from wecarry.schemas.messages import MessageRead
from wecarry.schemas.users import UserRead
from wecarry.services import authorization, requests, threads, users

log = structlog.get_logger()


async def _resolve_thread(
    session: AsyncSession,
    sender: User,
    thread_id: Optional[uuid.UUID],
    request_id: Optional[uuid.UUID],
) -> tuple[Thread, Request]:
    if thread_id is not None:
        thread = await threads.get_thread_by_uuid(session, thread_id)
        if not await threads.is_participant(session, thread, sender):
            raise NotFound("Thread", thread_id)
        request = await requests.get_request(session, thread.request_id)
        return thread, request

    if request_id is None:
        raise ValidationFailed("a thread id or a request id is required", details={"field": "thread_id"})

    request = await requests.get_request_by_uuid(session, request_id)
    await authorization.require_readable(session, sender, request)

    thread = await threads.find_request_thread_for(session, request, sender)
    if thread is not None:
        return thread, request

    if sender.id == request.created_by_id:
        raise ValidationFailed(
            "the request creator can only reply on an existing thread",
            details={"request": str(request.uuid)},
        )
    thread = await threads.create_with_participants(session, request, [sender.id, request.created_by_id])
    return thread, request


async def create_message(
    session: AsyncSession,
    sender: User,
    content: str,
    thread_id: Optional[uuid.UUID] = None,
    request_id: Optional[uuid.UUID] = None,
) -> Message:
    """Post ``content`` on a thread, starting one with the request creator if needed."""
    if not content or not content.strip():
        raise ValidationFailed("message content must not be empty", details={"field": "content"})

    thread, request = await _resolve_thread(session, sender, thread_id, request_id)
    participant = await threads.ensure_participant(session, thread, sender.id)

    message = Message(thread_id=thread.id, sent_by_id=sender.id, content=content)
    session.add(message)
    await session.flush()

    # the sender has seen their own message
    participant.last_viewed_at = message.created_at
    session.add(participant)
    await threads.touch(session, thread, message.created_at)

    participant_users = await threads.get_participant_users(session, thread)
    recipients = [u for u in participant_users if u.id != sender.id]

    log.info(
        "message.created",
        message_id=message.id,
        thread_id=thread.id,
        request_id=request.id,
        sender_id=sender.id,
    )
    await events.emit(
        events.MESSAGE_CREATED,
        f"Message created: {message.uuid}",
        **{
            events.KEY_MESSAGE_ID: message.id,
            events.KEY_EVENT_DATA: {
                "message_id": message.id,
                "sender_id": sender.id,
                "sender_nickname": sender.nickname,
                "content": content,
                "request_id": request.id,
                "thread_id": thread.id,
                "recipient_ids": [u.id for u in recipients],
            },
        },
    )
    return message


async def get_message_by_uuid(session: AsyncSession, message_uuid: uuid.UUID | str) -> Message:
    try:
        key = message_uuid if isinstance(message_uuid, uuid.UUID) else uuid.UUID(str(message_uuid))
    except ValueError:
        raise NotFound("Message", message_uuid)
    result = await session.execute(select(Message).where(Message.uuid == key))
    message = result.scalars().first()
    if not message:
        raise NotFound("Message", message_uuid)
    return message


async def find_message(session: AsyncSession, user: User, message_uuid: uuid.UUID | str) -> Message:
    """A message visible to ``user``: a superAdmin or a participant of its thread."""
    message = await get_message_by_uuid(session, message_uuid)
    if users.is_super_admin(user):
        return message
    thread = await threads.get_thread(session, message.thread_id)
    if not await threads.is_participant(session, thread, user):
        raise NotFound("Message", message_uuid)
    return message


async def list_messages(session: AsyncSession, thread: Thread) -> list[Message]:
    result = await session.execute(
        select(Message).where(Message.thread_id == thread.id).order_by(Message.created_at, Message.id)
    )
    return list(result.scalars().all())


async def to_read(session: AsyncSession, message: Message, thread: Thread) -> MessageRead:
    sender = await users.get_user(session, message.sent_by_id)
    return MessageRead(
        id=message.uuid,
        content=message.content,
        sender=UserRead.model_validate(sender),
        thread_id=thread.uuid,
        created_at=message.created_at,
    )
