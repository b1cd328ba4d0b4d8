"""
Current-user endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from wecarry.core.auth import get_current_user
from wecarry.core.database import get_session
from wecarry.models.user import User
from wecarry.schemas.messages import ThreadRead, UnreadThread
from wecarry.schemas.users import UserRead
from wecarry.services import threads

from .threads import thread_read

router = APIRouter()


class MeRead(UserRead):
    email: str
    first_name: str
    last_name: str
    admin_role: str
    unread_message_count: int = 0


class UnreadCounts(BaseModel):
    total: int
    threads: list[UnreadThread]


@router.get("", response_model=MeRead)
async def get_me(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    unread = await threads.get_unread_message_count(session, user)
    return MeRead(
        uuid=user.uuid,
        nickname=user.nickname,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        admin_role=user.admin_role,
        unread_message_count=unread,
    )


@router.get("/threads", response_model=list[ThreadRead])
async def my_threads(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return [await thread_read(session, t, user) for t in await threads.get_threads(session, user)]


@router.get("/unread", response_model=UnreadCounts)
async def my_unread_messages(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    unread = await threads.get_unread_threads(session, user)
    return UnreadCounts(total=sum(t.count for t in unread), threads=unread)
