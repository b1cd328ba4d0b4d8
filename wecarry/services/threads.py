"""
Threads and participants.

A thread belongs to one request and is private to its participants. Each
participant row carries two watermarks: ``last_viewed_at`` (moved by the
user) and ``last_notified_at`` (moved only by the notification worker).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional, Sequence

import structlog
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from wecarry.core.errors import NotFound
from wecarry.models.base import utcnow
from wecarry.models.request import Request
from wecarry.models.thread import Message, Thread, ThreadParticipant
from wecarry.models.user import User
from wecarry.schemas.messages import UnreadThread

log = structlog.get_logger()


async def get_thread(session: AsyncSession, thread_id: int) -> Thread:
    thread = await session.get(Thread, thread_id)
    if not thread:
        raise NotFound("Thread", thread_id)
    return thread


async def get_thread_by_uuid(session: AsyncSession, thread_uuid: uuid.UUID | str) -> Thread:
    try:
        key = thread_uuid if isinstance(thread_uuid, uuid.UUID) else uuid.UUID(str(thread_uuid))
    except ValueError:
        raise NotFound("Thread", thread_uuid)
    result = await session.execute(select(Thread).where(Thread.uuid == key))
    thread = result.scalars().first()
    if not thread:
        raise NotFound("Thread", thread_uuid)
    return thread


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------


async def get_participant(
    session: AsyncSession, thread: Thread, user_id: int
) -> Optional[ThreadParticipant]:
    result = await session.execute(
        select(ThreadParticipant).where(
            ThreadParticipant.thread_id == thread.id,
            ThreadParticipant.user_id == user_id,
        )
    )
    return result.scalars().first()


async def require_participant(session: AsyncSession, thread: Thread, user_id: int) -> ThreadParticipant:
    participant = await get_participant(session, thread, user_id)
    if participant is None:
        raise NotFound("ThreadParticipant", f"thread={thread.uuid} user={user_id}")
    return participant


async def ensure_participant(session: AsyncSession, thread: Thread, user_id: int) -> ThreadParticipant:
    participant = await get_participant(session, thread, user_id)
    if participant is not None:
        return participant

    now = utcnow()
    participant = ThreadParticipant(
        thread_id=thread.id, user_id=user_id, last_viewed_at=now, last_notified_at=now
    )
    session.add(participant)
    await session.flush()
    return participant


async def get_participants(session: AsyncSession, thread: Thread) -> list[ThreadParticipant]:
    result = await session.execute(
        select(ThreadParticipant)
        .where(ThreadParticipant.thread_id == thread.id)
        .order_by(ThreadParticipant.id)
    )
    return list(result.scalars().all())


async def get_participant_users(session: AsyncSession, thread: Thread) -> list[User]:
    result = await session.execute(
        select(User)
        .join(ThreadParticipant, ThreadParticipant.user_id == User.id)
        .where(ThreadParticipant.thread_id == thread.id)
        .order_by(ThreadParticipant.id)
    )
    return list(result.scalars().all())


async def is_participant(session: AsyncSession, thread: Thread, user: User) -> bool:
    return await get_participant(session, thread, user.id) is not None


# ---------------------------------------------------------------------------
# Threads
# ---------------------------------------------------------------------------


async def create_with_participants(
    session: AsyncSession, request: Request, user_ids: Sequence[int]
) -> Thread:
    thread = Thread(request_id=request.id)
    session.add(thread)
    await session.flush()
    for user_id in dict.fromkeys(user_ids):
        await ensure_participant(session, thread, user_id)
    log.info("thread.created", thread_id=thread.id, request_id=request.id, participants=list(user_ids))
    return thread


async def find_request_thread_for(
    session: AsyncSession, request: Request, user: User
) -> Optional[Thread]:
    """The user's most recently active thread on ``request``, if any."""
    result = await session.execute(
        select(Thread)
        .join(ThreadParticipant, ThreadParticipant.thread_id == Thread.id)
        .where(Thread.request_id == request.id, ThreadParticipant.user_id == user.id)
        .order_by(Thread.updated_at.desc(), Thread.id.desc())
        .limit(1)
    )
    return result.scalars().first()


async def get_request_threads(session: AsyncSession, request: Request, user: User) -> list[Thread]:
    """Threads on ``request`` that ``user`` takes part in."""
    result = await session.execute(
        select(Thread)
        .join(ThreadParticipant, ThreadParticipant.thread_id == Thread.id)
        .where(Thread.request_id == request.id, ThreadParticipant.user_id == user.id)
        .order_by(Thread.updated_at.desc(), Thread.id.desc())
    )
    return list(result.scalars().all())


async def get_threads(session: AsyncSession, user: User) -> list[Thread]:
    """All of ``user``'s threads, most recently active first."""
    result = await session.execute(
        select(Thread)
        .join(ThreadParticipant, ThreadParticipant.thread_id == Thread.id)
        .where(ThreadParticipant.user_id == user.id)
        .order_by(Thread.updated_at.desc(), Thread.id.desc())
    )
    return list(result.scalars().all())


async def touch(session: AsyncSession, thread: Thread, when: datetime) -> None:
    thread.updated_at = when
    session.add(thread)
    await session.flush()


# ---------------------------------------------------------------------------
# Watermarks and unread counts
# ---------------------------------------------------------------------------


async def set_last_viewed_at(
    session: AsyncSession, thread: Thread, user: User, when: Optional[datetime] = None
) -> ThreadParticipant:
    participant = await require_participant(session, thread, user.id)
    participant.last_viewed_at = when or utcnow()
    session.add(participant)
    await session.flush()
    return participant


async def get_last_viewed_at(session: AsyncSession, thread: Thread, user: User) -> Optional[datetime]:
    participant = await get_participant(session, thread, user.id)
    return participant.last_viewed_at if participant else None


async def set_last_notified_at(
    session: AsyncSession, participant: ThreadParticipant, when: datetime
) -> None:
    if participant.last_notified_at is not None and when <= participant.last_notified_at:
        return
    participant.last_notified_at = when
    session.add(participant)
    await session.flush()


async def unread_message_count(
    session: AsyncSession, thread: Thread, user: User, since: datetime
) -> int:
    result = await session.execute(
        select(func.count(Message.id)).where(
            Message.thread_id == thread.id,
            Message.sent_by_id != user.id,
            Message.created_at > since,
        )
    )
    return result.scalar_one()


async def get_unread_threads(session: AsyncSession, user: User) -> list[UnreadThread]:
    """Per-thread unread counts for ``user``; threads with nothing unread are left out."""
    result = await session.execute(
        select(Thread.uuid, func.count(Message.id))
        .join(ThreadParticipant, ThreadParticipant.thread_id == Thread.id)
        .join(Message, Message.thread_id == Thread.id)
        .where(
            ThreadParticipant.user_id == user.id,
            Message.sent_by_id != user.id,
            Message.created_at > ThreadParticipant.last_viewed_at,
        )
        .group_by(Thread.id, Thread.uuid)
        .order_by(Thread.id)
    )
    return [UnreadThread(thread_id=thread_uuid, count=count) for thread_uuid, count in result.all()]


async def get_unread_message_count(session: AsyncSession, user: User) -> int:
    return sum(t.count for t in await get_unread_threads(session, user))
