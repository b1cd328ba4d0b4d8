"""
Request history log.

The history of a request is a stack: forward transitions push a record,
back-steps pop the most recent one. Ordering is by (request_id, id).
"""

from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from wecarry.models.request import Request, RequestHistory

log = structlog.get_logger()


async def get_last(session: AsyncSession, request: Request) -> Optional[RequestHistory]:
    result = await session.execute(
        select(RequestHistory)
        .where(RequestHistory.request_id == request.id)
        .order_by(RequestHistory.id.desc())
        .limit(1)
    )
    return result.scalars().first()


async def list_for_request(session: AsyncSession, request: Request) -> list[RequestHistory]:
    result = await session.execute(
        select(RequestHistory)
        .where(RequestHistory.request_id == request.id)
        .order_by(RequestHistory.id)
    )
    return list(result.scalars().all())


async def push(session: AsyncSession, request: Request) -> Optional[RequestHistory]:
    """Record the request's current status. No-op if it is already the last entry."""
    last = await get_last(session, request)
    if last is not None and last.status == request.status:
        return None

    entry = RequestHistory(
        request_id=request.id,
        status=request.status,
        receiver_id=request.created_by_id,
        provider_id=request.provider_id,
    )
    session.add(entry)
    await session.flush()
    return entry


async def pop(session: AsyncSession, request: Request, expected_status: str) -> Optional[RequestHistory]:
    """Drop the last entry if it has ``expected_status``.

    An empty log or a status mismatch is logged and otherwise ignored.
    """
    last = await get_last(session, request)
    if last is None:
        log.warning("history.pop_empty", request_id=request.id, expected_status=expected_status)
        return None

    if last.status != expected_status:
        log.warning(
            "history.pop_mismatch",
            request_id=request.id,
            expected_status=expected_status,
            last_status=last.status,
        )
        return None

    await session.delete(last)
    await session.flush()
    return last
