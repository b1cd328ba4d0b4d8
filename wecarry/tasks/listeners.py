"""
Event listeners, registered once at start-up.

Listeners stay cheap: they read the event payload and submit a delayed job,
so the work runs after the emitting transaction has committed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

import structlog

from wecarry.core import events
from wecarry.core.config import Settings, get_settings
from wecarry.core.events import Event, EventBus
from wecarry.core.jobs import JobQueue
from wecarry.models.base import utcnow
from wecarry.tasks import notifications as jobs

log = structlog.get_logger()


@dataclass(frozen=True)
class NamedListener:
    name: str
    kind: str
    build: Callable[["ListenerContext"], Callable[[Event], Awaitable[None]]]


class ListenerContext:
    def __init__(self, queue: JobQueue, settings: Settings):
        self.queue = queue
        self.settings = settings
        self.last_token_cleanup: Optional[datetime] = None

    @property
    def message_delay(self) -> float:
        return self.settings.new_message_notification_delay_seconds

    @property
    def job_delay(self) -> float:
        return self.settings.notification_delay_seconds


def _event_data(event: Event) -> dict:
    return dict(event.payload.get(events.KEY_EVENT_DATA) or {})


# ---------------------------------------------------------------------------
# Listener factories
# ---------------------------------------------------------------------------


def _message_created(lc: ListenerContext):
    async def listener(event: Event) -> None:
        message_id = event.payload.get(events.KEY_MESSAGE_ID)
        if message_id is None:
            log.error("listener.bad_payload", kind=event.kind, missing=events.KEY_MESSAGE_ID)
            return
        lc.queue.submit_delayed(jobs.NEW_MESSAGE, {"message_id": message_id}, delay=lc.message_delay)

    return listener


def _request_status_updated(lc: ListenerContext):
    async def listener(event: Event) -> None:
        data = _event_data(event)
        if "request_id" not in data:
            log.error("listener.bad_payload", kind=event.kind, missing="request_id")
            return
        args = {
            "request_id": data["request_id"],
            "old_status": data["old_status"],
            "new_status": data["new_status"],
            "old_provider_id": data.get("old_provider_id"),
            "occurred_at": utcnow().isoformat(),
        }
        lc.queue.submit_delayed(jobs.REQUEST_STATUS_UPDATED, args, delay=lc.job_delay)

    return listener


def _request_status_audit(lc: ListenerContext):
    async def listener(event: Event) -> None:
        log.info("request.status_audit", message=event.message, **_event_data(event))

    return listener


def _request_created(lc: ListenerContext):
    async def listener(event: Event) -> None:
        data = _event_data(event)
        lc.queue.submit_delayed(jobs.REQUEST_CREATED, {"request_id": data["request_id"]}, delay=lc.job_delay)

    return listener


def _potential_provider(action: str):
    def factory(lc: ListenerContext):
        async def listener(event: Event) -> None:
            data = _event_data(event)
            args = {"action": action, "request_id": data["request_id"], "user_id": data["user_id"]}
            lc.queue.submit_delayed(jobs.POTENTIAL_PROVIDER_EVENT, args, delay=lc.job_delay)

        return listener

    return factory


def _user_created(lc: ListenerContext):
    async def listener(event: Event) -> None:
        log.info("user.created_event", message=event.message)
        user_id = event.payload.get(events.KEY_ID)
        if user_id is not None:
            lc.queue.submit_delayed(jobs.USER_WELCOME, {"user_id": user_id}, delay=lc.job_delay)

    return listener


def _user_logged_in(lc: ListenerContext):
    async def listener(event: Event) -> None:
        log.info("user.logged_in", message=event.message)
        now = utcnow()
        every = timedelta(minutes=lc.settings.access_token_cleanup_minutes)
        if lc.last_token_cleanup is not None and now - lc.last_token_cleanup < every:
            return
        lc.last_token_cleanup = now
        lc.queue.submit_delayed(jobs.ACCESS_TOKEN_CLEANUP, {}, delay=lc.job_delay)

    return listener


LISTENERS: list[NamedListener] = [
    NamedListener("message-created", events.MESSAGE_CREATED, _message_created),
    NamedListener("request-status-updated", events.REQUEST_STATUS_UPDATED, _request_status_updated),
    NamedListener("request-status-audit", events.REQUEST_STATUS_UPDATED, _request_status_audit),
    NamedListener("request-created", events.REQUEST_CREATED, _request_created),
    NamedListener(
        "potential-provider-created", events.POTENTIAL_PROVIDER_CREATED, _potential_provider("created")
    ),
    NamedListener(
        "potential-provider-self-destroyed",
        events.POTENTIAL_PROVIDER_SELF_DESTROYED,
        _potential_provider("self_destroyed"),
    ),
    NamedListener(
        "potential-provider-rejected", events.POTENTIAL_PROVIDER_REJECTED, _potential_provider("rejected")
    ),
    NamedListener("user-created", events.USER_CREATED, _user_created),
    NamedListener("user-logged-in", events.USER_LOGGED_IN, _user_logged_in),
]


def register_jobs(queue: JobQueue) -> None:
    for name, handler in jobs.JOBS.items():
        queue.register(name, handler)


def register_listeners(bus: EventBus, queue: JobQueue, settings: Optional[Settings] = None) -> ListenerContext:
    lc = ListenerContext(queue, settings or get_settings())
    for named in LISTENERS:
        bus.listen(named.kind, named.name, named.build(lc))
    log.info("listeners.registered", count=len(LISTENERS))
    return lc


def unregister_listeners(bus: EventBus) -> None:
    for named in LISTENERS:
        bus.unlisten(named.name)
