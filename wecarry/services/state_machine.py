"""
Request status state machine.

The transition table is fixed. Each allowed target carries two flags: a
back-step pops the request history instead of pushing to it, and a provider
action may only be taken by the request's provider.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from wecarry.core.errors import InvalidTransition
from wecarry.models.request import Request
from wecarry.models.user import User
from wecarry.schemas.common import RequestAction, RequestStatus, UserAdminRole


@dataclass(frozen=True)
class StatusTransitionTarget:
    status: RequestStatus
    is_back_step: bool = False
    is_provider_action: bool = False


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

S = RequestStatus

STATUS_TRANSITIONS: dict[RequestStatus, tuple[StatusTransitionTarget, ...]] = {
    S.OPEN: (
        StatusTransitionTarget(S.ACCEPTED),
        StatusTransitionTarget(S.REMOVED),
    ),
    S.ACCEPTED: (
        StatusTransitionTarget(S.OPEN, is_back_step=True),
        StatusTransitionTarget(S.DELIVERED, is_provider_action=True),
        StatusTransitionTarget(S.RECEIVED),
        StatusTransitionTarget(S.COMPLETED),
        StatusTransitionTarget(S.REMOVED),
    ),
    S.DELIVERED: (
        StatusTransitionTarget(S.ACCEPTED, is_back_step=True, is_provider_action=True),
        StatusTransitionTarget(S.COMPLETED),
    ),
    S.RECEIVED: (
        StatusTransitionTarget(S.ACCEPTED, is_back_step=True),
        StatusTransitionTarget(S.DELIVERED),
        StatusTransitionTarget(S.COMPLETED),
    ),
    S.COMPLETED: (
        StatusTransitionTarget(S.ACCEPTED, is_back_step=True),
        StatusTransitionTarget(S.DELIVERED, is_back_step=True),
    ),
    S.REMOVED: (),
}

STATUS_ACTIONS: dict[RequestStatus, RequestAction] = {
    S.OPEN: RequestAction.REOPEN,
    S.ACCEPTED: RequestAction.ACCEPT,
    S.DELIVERED: RequestAction.DELIVER,
    S.COMPLETED: RequestAction.RECEIVE,
    S.REMOVED: RequestAction.REMOVE,
}

EDITABLE_STATUSES = frozenset({S.OPEN, S.ACCEPTED, S.RECEIVED, S.DELIVERED})
HIDDEN_STATUSES = frozenset({S.REMOVED, S.COMPLETED})


def next_status_possibilities(status: RequestStatus) -> tuple[StatusTransitionTarget, ...]:
    return STATUS_TRANSITIONS[RequestStatus(status)]


def find_transition(
    from_status: RequestStatus, to_status: RequestStatus
) -> Optional[StatusTransitionTarget]:
    for target in next_status_possibilities(from_status):
        if target.status == RequestStatus(to_status):
            return target
    return None


def is_transition_valid(from_status: RequestStatus, to_status: RequestStatus) -> bool:
    return find_transition(from_status, to_status) is not None


def is_transition_back_step(from_status: RequestStatus, to_status: RequestStatus) -> bool:
    target = find_transition(from_status, to_status)
    return bool(target and target.is_back_step)


def require_transition(from_status: RequestStatus, to_status: RequestStatus) -> StatusTransitionTarget:
    target = find_transition(from_status, to_status)
    if target is None:
        raise InvalidTransition(RequestStatus(from_status).value, RequestStatus(to_status).value)
    return target


# ---------------------------------------------------------------------------
# Role scoping
# ---------------------------------------------------------------------------


def can_user_change_status(user: User, request: Request, new_status: RequestStatus) -> bool:
    """Whether ``user`` may move ``request`` to ``new_status``.

    Only role and ownership are checked here; whether the transition exists
    at all is the table's job (see ``require_transition``).
    """
    if user.admin_role == UserAdminRole.SUPER_ADMIN.value:
        return True

    current = RequestStatus(request.status)
    new_status = RequestStatus(new_status)
    target = find_transition(current, new_status)
    is_provider_action = bool(target and target.is_provider_action)

    if request.provider_id is not None and request.provider_id == user.id:
        if is_provider_action and current != S.COMPLETED:
            return True

    if request.created_by_id == user.id:
        if is_provider_action:
            return False
        if current == S.COMPLETED:
            return new_status in (S.ACCEPTED, S.DELIVERED)
        return True

    return False


def get_status_transitions(request: Request, user: User) -> list[StatusTransitionTarget]:
    """Transitions out of the current status that ``user`` may perform."""
    return [
        target
        for target in next_status_possibilities(RequestStatus(request.status))
        if can_user_change_status(user, request, target.status)
    ]


def status_actions_for(request: Request, user: User) -> list[str]:
    actions = []
    for target in get_status_transitions(request, user):
        action = STATUS_ACTIONS.get(target.status)
        if action is not None:
            actions.append(action.value)
    return actions


def is_editable_status(status: RequestStatus) -> bool:
    return RequestStatus(status) in EDITABLE_STATUSES
