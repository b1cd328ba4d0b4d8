"""
Watch API endpoints: the current user's own watches.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from wecarry.core.auth import get_current_user
from wecarry.core.database import get_session
from wecarry.models.user import User
from wecarry.schemas.watches import WatchInput, WatchRead
from wecarry.services import watches

router = APIRouter()


@router.get("", response_model=list[WatchRead])
async def list_my_watches(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return [await watches.to_read(session, w) for w in await watches.list_watches(session, user)]


@router.post("", response_model=WatchRead, status_code=201)
async def create_watch(
    body: WatchInput,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    watch = await watches.create_watch(session, user, body)
    return await watches.to_read(session, watch)


@router.put("/{watch_id}", response_model=WatchRead)
async def update_watch(
    watch_id: uuid.UUID,
    body: WatchInput,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    watch = await watches.get_own_watch(session, user, watch_id)
    watch = await watches.update_watch(session, watch, body)
    return await watches.to_read(session, watch)


@router.delete("/{watch_id}", status_code=204)
async def remove_watch(
    watch_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    watch = await watches.get_own_watch(session, user, watch_id)
    await watches.remove_watch(session, watch)
