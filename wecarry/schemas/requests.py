"""Request-related Pydantic schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import UUID4, BaseModel, Field

from .common import RequestSize, RequestStatus, RequestVisibility
from .locations import LocationInput, LocationRead
from .users import OrganizationRead, UserRead


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------

class RequestCreate(BaseModel):
    org_id: UUID4
    title: str
    description: Optional[str] = None
    size: RequestSize
    status: RequestStatus = RequestStatus.OPEN
    visibility: RequestVisibility = RequestVisibility.SAME
    url: Optional[str] = None
    kilograms: Optional[float] = Field(default=None, ge=0)
    needed_before: Optional[date] = None
    destination: Optional[LocationInput] = None
    origin: Optional[LocationInput] = None
    meeting_id: Optional[UUID4] = None
    photo_id: Optional[str] = None


class RequestUpdate(BaseModel):
    """Partial update; only fields that are present are applied.

    Sending ``origin: null`` removes the origin.
    """
    title: Optional[str] = None
    description: Optional[str] = None
    size: Optional[RequestSize] = None
    visibility: Optional[RequestVisibility] = None
    url: Optional[str] = None
    kilograms: Optional[float] = Field(default=None, ge=0)
    needed_before: Optional[date] = None
    destination: Optional[LocationInput] = None
    origin: Optional[LocationInput] = None
    photo_id: Optional[str] = None


class RequestStatusUpdate(BaseModel):
    status: RequestStatus
    provider_user_id: Optional[UUID4] = None


class RequestFilter(BaseModel):
    search_text: Optional[str] = None
    destination: Optional[LocationInput] = None
    origin: Optional[LocationInput] = None
    request_id: Optional[int] = None


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

class StatusTransitionRead(BaseModel):
    status: RequestStatus
    is_back_step: bool
    is_provider_action: bool


class RequestRead(BaseModel):
    id: UUID4
    title: str
    description: Optional[str] = None
    size: RequestSize
    status: RequestStatus
    visibility: RequestVisibility
    url: Optional[str] = None
    kilograms: Optional[float] = None
    needed_before: Optional[date] = None
    completed_on: Optional[date] = None
    photo_id: Optional[str] = None
    created_by: UserRead
    provider: Optional[UserRead] = None
    organization: OrganizationRead
    destination: LocationRead
    origin: Optional[LocationRead] = None
    potential_providers: List[UserRead] = Field(default_factory=list)
    thread_ids: List[UUID4] = Field(default_factory=list)
    status_transitions: List[StatusTransitionRead] = Field(default_factory=list)
    actions: List[str] = Field(default_factory=list)
    is_editable: bool = False
    created_at: datetime
    updated_at: datetime
