"""
In-process event bus with named listeners.

Listeners are registered once at start-up, keyed by event kind and a unique
name. ``emit`` hands each listener its own read-only copy of the payload and
awaits listeners one after another in registration order, so delivery is
FIFO per listener. A failing listener is logged and does not stop the
others.
"""

from __future__ import annotations

import copy
from collections import defaultdict
from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping

import structlog

log = structlog.get_logger()

# Event kinds
USER_CREATED = "api:user:created"
USER_LOGGED_IN = "api:auth:user:loggedin"
MESSAGE_CREATED = "api:message:created"
REQUEST_CREATED = "api:request:created"
REQUEST_UPDATED = "api:request:updated"
REQUEST_STATUS_UPDATED = "api:request:status:updated"
POTENTIAL_PROVIDER_CREATED = "api:potentialprovider:created"
POTENTIAL_PROVIDER_REJECTED = "api:potentialprovider:rejected"
POTENTIAL_PROVIDER_SELF_DESTROYED = "api:potentialprovider:selfdestroyed"

# Payload keys
KEY_ID = "id"
KEY_EVENT_DATA = "eventData"
KEY_MESSAGE_ID = "message_id"


@dataclass(frozen=True)
class Event:
    kind: str
    message: str = ""
    payload: Mapping[str, Any] = field(default_factory=dict)


Listener = Callable[[Event], Awaitable[None]]


class EventBus:
    """Publish/subscribe registry for application events."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[tuple[str, Listener]]] = defaultdict(list)
        self._names: set[str] = set()
        self._closed = False

    def listen(self, kind: str, name: str, listener: Listener) -> None:
        """Register ``listener`` for ``kind`` under a unique ``name``."""
        if name in self._names:
            raise ValueError(f"listener '{name}' is already registered")
        self._names.add(name)
        self._listeners[kind].append((name, listener))
        log.debug("events.listener_registered", kind=kind, name=name)

    def unlisten(self, name: str) -> None:
        for kind, listeners in self._listeners.items():
            self._listeners[kind] = [(n, fn) for n, fn in listeners if n != name]
        self._names.discard(name)

    def listener_names(self, kind: str | None = None) -> list[str]:
        if kind is not None:
            return [n for n, _ in self._listeners.get(kind, [])]
        return sorted(self._names)

    async def emit(self, event: Event) -> None:
        if self._closed:
            log.warning("events.emit_after_close", kind=event.kind)
            return

        for name, listener in list(self._listeners.get(event.kind, [])):
            frozen = Event(
                kind=event.kind,
                message=event.message,
                payload=MappingProxyType(copy.deepcopy(dict(event.payload))),
            )
            try:
                await listener(frozen)
            except Exception:
                log.exception("events.listener_failed", kind=event.kind, listener=name)

    def close(self) -> None:
        """Unregister every listener; later emits are dropped."""
        self._listeners.clear()
        self._names.clear()
        self._closed = True


@lru_cache
def get_event_bus() -> EventBus:
    return EventBus()


async def emit(kind: str, message: str = "", **payload: Any) -> None:
    """Emit an event on the process-wide bus."""
    await get_event_bus().emit(Event(kind=kind, message=message, payload=payload))
