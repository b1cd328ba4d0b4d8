"""
Request API endpoints.

GET    /api/v1/requests                         List requests visible to me
POST   /api/v1/requests/search                  List with text and location filters
GET    /api/v1/requests/public                  Requests visible to everyone
POST   /api/v1/requests                         Create a request
GET    /api/v1/requests/{id}                    Get one request
PATCH  /api/v1/requests/{id}                    Update editable fields
PUT    /api/v1/requests/{id}/status             Change status
POST   /api/v1/requests/{id}/delivered          Provider marks delivered
POST   /api/v1/requests/{id}/received           Creator marks received
POST   /api/v1/requests/{id}/potential-providers           Offer to carry
DELETE /api/v1/requests/{id}/potential-providers/me        Retract my offer
DELETE /api/v1/requests/{id}/potential-providers/{userId}  Creator rejects an offer
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wecarry.core.auth import get_current_user
from wecarry.core.database import get_session
from wecarry.models.user import User
from wecarry.schemas.requests import (
    RequestCreate,
    RequestFilter,
    RequestRead,
    RequestStatusUpdate,
    RequestUpdate,
)
from wecarry.services import authorization, potential_providers, requests as request_service
from wecarry.services import users, visibility

log = structlog.get_logger()

router = APIRouter()


async def _enrich_all(session: AsyncSession, found, user: User) -> list[RequestRead]:
    return [await request_service.enrich_request(session, r, user) for r in found]


async def _load_readable(session: AsyncSession, request_id: uuid.UUID, user: User):
    request = await request_service.get_request_by_uuid(session, request_id)
    await authorization.require_readable(session, user, request)
    return request


@router.get("", response_model=list[RequestRead])
async def list_requests(
    search_text: Optional[str] = Query(default=None),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    found = await visibility.find_by_user(session, user, RequestFilter(search_text=search_text))
    return await _enrich_all(session, found, user)


@router.post("/search", response_model=list[RequestRead])
async def search_requests(
    body: RequestFilter,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    found = await visibility.find_by_user(session, user, body)
    return await _enrich_all(session, found, user)


@router.get("/public", response_model=list[RequestRead])
async def list_public_requests(
    search_text: Optional[str] = Query(default=None),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    found = await visibility.find_public(session, RequestFilter(search_text=search_text))
    return await _enrich_all(session, found, user)


@router.post("", response_model=RequestRead, status_code=201)
async def create_request(
    body: RequestCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    request = await request_service.create_request(session, user, body)
    return await request_service.enrich_request(session, request, user)


@router.get("/{request_id}", response_model=RequestRead)
async def get_request(
    request_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    request = await _load_readable(session, request_id, user)
    return await request_service.enrich_request(session, request, user)


@router.patch("/{request_id}", response_model=RequestRead)
async def update_request(
    request_id: uuid.UUID,
    body: RequestUpdate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    request = await _load_readable(session, request_id, user)
    request = await request_service.update_request(session, request, user, body)
    return await request_service.enrich_request(session, request, user)


@router.put("/{request_id}/status", response_model=RequestRead)
async def update_request_status(
    request_id: uuid.UUID,
    body: RequestStatusUpdate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    request = await _load_readable(session, request_id, user)
    request = await request_service.update_status(
        session, request, user, body.status, body.provider_user_id
    )
    return await request_service.enrich_request(session, request, user)


@router.post("/{request_id}/delivered", response_model=RequestRead)
async def mark_delivered(
    request_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    request = await _load_readable(session, request_id, user)
    request = await request_service.mark_delivered(session, request, user)
    return await request_service.enrich_request(session, request, user)


@router.post("/{request_id}/received", response_model=RequestRead)
async def mark_received(
    request_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    request = await _load_readable(session, request_id, user)
    request = await request_service.mark_received(session, request, user)
    return await request_service.enrich_request(session, request, user)


# ---------------------------------------------------------------------------
# Potential providers
# ---------------------------------------------------------------------------


@router.post("/{request_id}/potential-providers", response_model=RequestRead)
async def add_me_as_potential_provider(
    request_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    request = await request_service.get_request_by_uuid(session, request_id)
    await authorization.require_visible(session, user, request)
    await potential_providers.offer(session, request, user)
    return await request_service.enrich_request(session, request, user)


@router.delete("/{request_id}/potential-providers/me", response_model=RequestRead)
async def remove_me_as_potential_provider(
    request_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    request = await _load_readable(session, request_id, user)
    await potential_providers.retract(session, request, user)
    return await request_service.enrich_request(session, request, user)


@router.delete("/{request_id}/potential-providers/{user_id}", response_model=RequestRead)
async def reject_potential_provider(
    request_id: uuid.UUID,
    user_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    request = await _load_readable(session, request_id, user)
    target = await users.get_user_by_uuid(session, user_id)
    await potential_providers.reject_by_creator(session, request, target, user)
    return await request_service.enrich_request(session, request, user)
