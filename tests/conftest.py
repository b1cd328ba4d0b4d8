"""
Shared fixtures: an in-memory SQLite database per test, a fresh event bus
and job queue, and small factories for organizations, users, meetings and requests.
"""

from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import wecarry.models  # noqa: F401
from wecarry.core.config import Settings
from wecarry.core.events import Event, get_event_bus
from wecarry.core.jobs import get_job_queue
from wecarry.models.base import today
from wecarry.models.meeting import Meeting, MeetingParticipant
from wecarry.models.organization import Organization
from wecarry.models.user import User
from wecarry.notifications.delivery import DummyEmailService
from wecarry.schemas.common import OrgRole, RequestSize, RequestVisibility
from wecarry.schemas.locations import LocationInput
from wecarry.schemas.requests import RequestCreate
from wecarry.schemas.users import UserCreate
from wecarry.services import locations, requests, users

MIAMI = LocationInput(description="Miami, FL", country="US", latitude=25.7617, longitude=-80.1918)
TORONTO = LocationInput(description="Toronto, ON", country="CA", latitude=43.6532, longitude=-79.3832)
SEOUL = LocationInput(description="Seoul", country="KR", latitude=37.5665, longitude=126.9780)
SAN_DIEGO = LocationInput(description="San Diego, CA", country="US", latitude=32.0, longitude=-117.0)
NAIROBI = LocationInput(description="Nairobi", country="KE", latitude=-1.2921, longitude=36.8219)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


# ---------------------------------------------------------------------------
# Bus, queue and email
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def fresh_bus_and_queue():
    get_event_bus.cache_clear()
    get_job_queue.cache_clear()
    yield
    get_event_bus().close()
    get_event_bus.cache_clear()
    get_job_queue.cache_clear()


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite+aiosqlite://",
        email_service="dummy",
        ui_url="https://wecarry.test",
        new_message_notification_delay_seconds=0,
        notification_delay_seconds=0,
        listener_delay_milliseconds=0,
        listener_max_retries=2,
    )


@pytest.fixture
def email(settings):
    return DummyEmailService(settings)


@pytest.fixture
def worker_ctx(session_factory, settings, email):
    """The ctx dict a job handler receives."""
    queue = get_job_queue()
    queue.ctx.update(session_factory=session_factory, settings=settings, email_service=email, queue=queue)
    return queue.ctx


@pytest.fixture
def captured_events():
    """Every event emitted on the bus during the test, in order."""
    seen: list[Event] = []
    bus = get_event_bus()

    async def record(event: Event) -> None:
        seen.append(event)

    from wecarry.core import events

    for kind in (
        events.USER_CREATED,
        events.USER_LOGGED_IN,
        events.MESSAGE_CREATED,
        events.REQUEST_CREATED,
        events.REQUEST_UPDATED,
        events.REQUEST_STATUS_UPDATED,
        events.POTENTIAL_PROVIDER_CREATED,
        events.POTENTIAL_PROVIDER_REJECTED,
        events.POTENTIAL_PROVIDER_SELF_DESTROYED,
    ):
        bus.listen(kind, f"capture:{kind}", record)
    return seen


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

class Factory:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def org(self, name: str = "Org") -> Organization:
        org = Organization(name=name, auth_type="saml")
        self.session.add(org)
        await self.session.flush()
        return org

    async def user(
        self,
        org: Organization | None = None,
        nickname: str = "user",
        admin_role: str = "user",
        org_role: OrgRole = OrgRole.USER,
    ) -> User:
        user = await users.create_user(
            self.session,
            UserCreate(
                email=f"{nickname}-{uuid.uuid4().hex[:8]}@example.com",
                first_name=nickname.title(),
                last_name="Tester",
                nickname=nickname,
                admin_role=admin_role,
            ),
        )
        if org is not None:
            await users.add_membership(self.session, user, org, org_role)
        return user

    async def request(
        self,
        user: User,
        org: Organization,
        title: str = "A book",
        destination: LocationInput = MIAMI,
        **overrides,
    ):
        data = {
            "org_id": org.uuid,
            "title": title,
            "size": RequestSize.SMALL,
            "visibility": RequestVisibility.SAME,
            "destination": destination,
            "needed_before": today() + timedelta(days=30),
        }
        data.update(overrides)
        return await requests.create_request(self.session, user, RequestCreate(**data))

    async def meeting(self, creator: User, name: str = "Conference", location: LocationInput = MIAMI) -> Meeting:
        place = await locations.create_location(self.session, location)
        meeting = Meeting(
            name=name,
            created_by_id=creator.id,
            location_id=place.id,
            start_date=today(),
            end_date=today() + timedelta(days=3),
        )
        self.session.add(meeting)
        await self.session.flush()
        return meeting

    async def meeting_participant(self, meeting: Meeting, user: User, is_organizer: bool = False) -> MeetingParticipant:
        participant = MeetingParticipant(meeting_id=meeting.id, user_id=user.id, is_organizer=is_organizer)
        self.session.add(participant)
        await self.session.flush()
        return participant


@pytest.fixture
def factory(session):
    return Factory(session)
