"""
Thread and message API endpoints.

GET  /api/v1/threads/{id}               Thread details
GET  /api/v1/threads/{id}/messages      Messages in a thread
PUT  /api/v1/threads/{id}/last-viewed   Set my last viewed time
POST /api/v1/messages                   Post a message (thread id or request id)
GET  /api/v1/messages/{id}              Get a message
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from wecarry.core.auth import get_current_user
from wecarry.core.database import get_session
from wecarry.core.errors import NotFound
from wecarry.models.base import as_naive_utc
from wecarry.models.thread import Thread
from wecarry.models.user import User
from wecarry.schemas.messages import MessageCreate, MessageRead, ThreadLastViewed, ThreadRead
from wecarry.schemas.users import UserRead
from wecarry.services import messages, requests, threads

threads_router = APIRouter()
messages_router = APIRouter()


async def thread_read(session: AsyncSession, thread: Thread, user: User) -> ThreadRead:
    request = await requests.get_request(session, thread.request_id)
    last_viewed = await threads.get_last_viewed_at(session, thread, user)
    unread = await threads.unread_message_count(session, thread, user, last_viewed) if last_viewed else 0
    return ThreadRead(
        id=thread.uuid,
        request_id=request.uuid,
        participants=[UserRead.model_validate(u) for u in await threads.get_participant_users(session, thread)],
        last_viewed_at=last_viewed,
        unread_message_count=unread,
        updated_at=thread.updated_at,
    )


async def _load_thread(session: AsyncSession, thread_id: uuid.UUID, user: User) -> Thread:
    thread = await threads.get_thread_by_uuid(session, thread_id)
    if not await threads.is_participant(session, thread, user):
        raise NotFound("Thread", thread_id)
    return thread


@threads_router.get("/{thread_id}", response_model=ThreadRead)
async def get_thread(
    thread_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    thread = await _load_thread(session, thread_id, user)
    return await thread_read(session, thread, user)


@threads_router.get("/{thread_id}/messages", response_model=list[MessageRead])
async def list_thread_messages(
    thread_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    thread = await _load_thread(session, thread_id, user)
    return [await messages.to_read(session, m, thread) for m in await messages.list_messages(session, thread)]


@threads_router.put("/{thread_id}/last-viewed", response_model=ThreadRead)
async def set_thread_last_viewed_at(
    thread_id: uuid.UUID,
    body: ThreadLastViewed,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    thread = await _load_thread(session, thread_id, user)
    await threads.set_last_viewed_at(session, thread, user, as_naive_utc(body.time))
    return await thread_read(session, thread, user)


@messages_router.post("", response_model=MessageRead, status_code=201)
async def create_message(
    body: MessageCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    message = await messages.create_message(
        session, user, body.content, thread_id=body.thread_id, request_id=body.request_id
    )
    thread = await threads.get_thread(session, message.thread_id)
    return await messages.to_read(session, message, thread)


@messages_router.get("/{message_id}", response_model=MessageRead)
async def get_message(
    message_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    message = await messages.find_message(session, user, message_id)
    thread = await threads.get_thread(session, message.thread_id)
    return await messages.to_read(session, message, thread)
