"""
Notification templates.

Each template has a subject and a plain text body written with
``str.format`` fields. Every message also receives ``appName`` and
``uiURL``; fields a template names but a caller leaves out render as empty
strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from wecarry.schemas.common import RequestStatus

NEW_MESSAGE = "NewMessage"
REQUEST_FROM_YOU = "RequestFromYou"
REQUEST_FROM_TRUSTED = "RequestFromTrusted"
POTENTIAL_PROVIDER_CREATED = "PotentialProviderCreated"
POTENTIAL_PROVIDER_SELF_DESTROYED = "PotentialProviderSelfDestroyed"
POTENTIAL_PROVIDER_REJECTED = "PotentialProviderRejected"
WELCOME = "Welcome"


def request_status_template(status: RequestStatus | str) -> str:
    return f"RequestStatus.{RequestStatus(status).value}"


class _Blank(dict):
    def __missing__(self, key: str) -> str:
        return ""


@dataclass(frozen=True)
class MessageTemplate:
    name: str
    subject: str
    body: str

    def render(self, data: Mapping[str, Any]) -> tuple[str, str]:
        values = _Blank({k: "" if v is None else v for k, v in data.items()})
        return self.subject.format_map(values), self.body.format_map(values)


def _status(status: RequestStatus, subject: str, body: str) -> MessageTemplate:
    name = request_status_template(status)
    return MessageTemplate(name=name, subject=subject, body=body)


TEMPLATES: dict[str, MessageTemplate] = {
    t.name: t
    for t in [
        MessageTemplate(
            name=NEW_MESSAGE,
            subject="New message on {appName}",
            body=(
                "{senderNickname} sent you a message about \"{postTitle}\":\n\n"
                "{messageContent}\n\n"
                "Reply here: {threadURL}\n"
                "Request: {postURL}\n"
            ),
        ),
        MessageTemplate(
            name=REQUEST_FROM_YOU,
            subject="New request on {appName}: {postTitle}",
            body=(
                "{requestCreator} from your organization needs \"{postTitle}\" "
                "delivered to {postDestination}.\n\n"
                "See it here: {postURL}\n"
            ),
        ),
        MessageTemplate(
            name=REQUEST_FROM_TRUSTED,
            subject="New request on {appName}: {postTitle}",
            body=(
                "{requestCreator} from {orgName}, a trusted organization, needs "
                "\"{postTitle}\" delivered to {postDestination}.\n\n"
                "See it here: {postURL}\n"
            ),
        ),
        MessageTemplate(
            name=POTENTIAL_PROVIDER_CREATED,
            subject="{providerNickname} offered to help with your request",
            body=(
                "{providerNickname} offered to carry \"{postTitle}\" for you.\n\n"
                "Review the offer: {postURL}\n"
            ),
        ),
        MessageTemplate(
            name=POTENTIAL_PROVIDER_SELF_DESTROYED,
            subject="{providerNickname} withdrew their offer",
            body=(
                "{providerNickname} can no longer carry \"{postTitle}\".\n\n"
                "Request: {postURL}\n"
            ),
        ),
        MessageTemplate(
            name=POTENTIAL_PROVIDER_REJECTED,
            subject="Your offer was not accepted",
            body=(
                "{requestCreator} did not accept your offer to carry \"{postTitle}\".\n\n"
                "Request: {postURL}\n"
            ),
        ),
        MessageTemplate(
            name=WELCOME,
            subject="Welcome to {appName}",
            body=(
                "Hi {firstName},\n\n"
                "Welcome to {appName}. Start here: {uiURL}\n\n"
                "Questions? Write to {supportEmail}.\n"
            ),
        ),
        _status(
            RequestStatus.OPEN,
            "Request reopened: {postTitle}",
            "{requestCreator} reopened \"{postTitle}\" and no longer needs you to carry it.\n\n{postURL}\n",
        ),
        _status(
            RequestStatus.ACCEPTED,
            "Request accepted: {postTitle}",
            "\"{postTitle}\" moved from {oldStatus} to accepted. Provider: {providerNickname}.\n\n{postURL}\n",
        ),
        _status(
            RequestStatus.DELIVERED,
            "Request delivered: {postTitle}",
            "{providerNickname} says \"{postTitle}\" has been delivered.\n\n{postURL}\n",
        ),
        _status(
            RequestStatus.RECEIVED,
            "Request received: {postTitle}",
            "{requestCreator} has received \"{postTitle}\".\n\n{postURL}\n",
        ),
        _status(
            RequestStatus.COMPLETED,
            "Request completed: {postTitle}",
            "{requestCreator} marked \"{postTitle}\" as completed. Thank you!\n\n{postURL}\n",
        ),
        _status(
            RequestStatus.REMOVED,
            "Request removed: {postTitle}",
            "{requestCreator} removed \"{postTitle}\".\n",
        ),
    ]
}


def get_template(name: str) -> MessageTemplate:
    template = TEMPLATES.get(name)
    if template is None:
        raise KeyError(f"unknown template: {name}")
    return template
