"""
Email delivery adapters.

An adapter takes a ``Message`` (template name, sender, recipient, data),
renders it and hands it to a transport. ``get_email_service`` picks the
adapter named by ``Settings.email_service``. Transport failures raise
``TransientError``.
"""

from __future__ import annotations

import asyncio
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any, Optional

import httpx
import structlog

from wecarry.core.config import Settings, get_settings
from wecarry.core.errors import TransientError, ValidationFailed
from wecarry.notifications.templates import TEMPLATES

log = structlog.get_logger()

SENDGRID_TIMEOUT_SECONDS = 20.0


@dataclass
class Message:
    template: str
    to_email: str
    to_name: str = ""
    from_email: str = ""
    from_name: str = ""
    subject: str = ""
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    body: str
    from_name: str
    from_email: str
    to_name: str
    to_email: str


class EmailService:
    """Base adapter. Subclasses implement ``deliver``."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def render(self, msg: Message) -> RenderedMessage:
        template = TEMPLATES.get(msg.template)
        if template is None:
            raise ValidationFailed(f"invalid template name: {msg.template}", details={"template": msg.template})

        data = {
            "appName": self.settings.app_name,
            "uiURL": self.settings.ui_url,
            "supportEmail": self.settings.support_email,
            **msg.data,
        }
        subject, body = template.render(data)
        return RenderedMessage(
            subject=msg.subject or subject,
            body=body,
            from_name=msg.from_name or self.settings.app_name,
            from_email=msg.from_email or self.settings.email_from_address,
            to_name=msg.to_name,
            to_email=msg.to_email,
        )

    async def send(self, msg: Message) -> None:
        rendered = self.render(msg)
        await self.deliver(rendered)
        log.info("email.sent", template=msg.template, to=rendered.to_email, service=type(self).__name__)

    async def deliver(self, rendered: RenderedMessage) -> None:
        raise NotImplementedError


class DummyEmailService(EmailService):
    """Keeps every message in memory."""

    def __init__(self, settings: Optional[Settings] = None):
        super().__init__(settings)
        self.sent: list[RenderedMessage] = []
        self.templates: list[str] = []

    async def send(self, msg: Message) -> None:
        await super().send(msg)
        self.templates.append(msg.template)

    async def deliver(self, rendered: RenderedMessage) -> None:
        self.sent.append(rendered)

    @property
    def count(self) -> int:
        return len(self.sent)

    @property
    def last_to_email(self) -> str:
        return self.sent[-1].to_email if self.sent else ""

    @property
    def last_body(self) -> str:
        return self.sent[-1].body if self.sent else ""

    def to_addresses(self) -> list[str]:
        return [m.to_email for m in self.sent]

    def reset(self) -> None:
        self.sent.clear()
        self.templates.clear()


class SMTPEmailService(EmailService):
    def _send_blocking(self, email: EmailMessage) -> None:
        s = self.settings
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=30) as client:
            if s.smtp_use_tls:
                client.starttls()
            if s.smtp_username:
                client.login(s.smtp_username, s.smtp_password)
            client.send_message(email)

    async def deliver(self, rendered: RenderedMessage) -> None:
        email = EmailMessage()
        email["Subject"] = rendered.subject
        email["From"] = formataddr((rendered.from_name, rendered.from_email))
        email["To"] = formataddr((rendered.to_name, rendered.to_email))
        email.set_content(rendered.body)
        try:
            await asyncio.to_thread(self._send_blocking, email)
        except (smtplib.SMTPException, OSError) as exc:
            raise TransientError(
                f"smtp delivery failed: {exc}", details={"to": rendered.to_email}
            ) from exc


class SendGridEmailService(EmailService):
    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        super().__init__(settings)
        self._client = client

    def _payload(self, rendered: RenderedMessage) -> dict[str, Any]:
        return {
            "personalizations": [
                {"to": [{"email": rendered.to_email, "name": rendered.to_name}]}
            ],
            "from": {"email": rendered.from_email, "name": rendered.from_name},
            "subject": rendered.subject,
            "content": [{"type": "text/plain", "value": rendered.body}],
        }

    async def _post(self, client: httpx.AsyncClient, rendered: RenderedMessage) -> httpx.Response:
        return await client.post(
            self.settings.sendgrid_api_url,
            headers={"Authorization": f"Bearer {self.settings.sendgrid_api_key}"},
            json=self._payload(rendered),
        )

    async def deliver(self, rendered: RenderedMessage) -> None:
        if not self.settings.sendgrid_api_key:
            raise ValidationFailed("SendGrid API key is required")

        try:
            if self._client is not None:
                response = await self._post(self._client, rendered)
            else:
                async with httpx.AsyncClient(timeout=SENDGRID_TIMEOUT_SECONDS) as client:
                    response = await self._post(client, rendered)
        except httpx.HTTPError as exc:
            raise TransientError(
                f"sendgrid request failed: {exc}", details={"to": rendered.to_email}
            ) from exc

        if response.status_code >= 400:
            raise TransientError(
                f"error response ({response.status_code}) from sendgrid API",
                details={"to": rendered.to_email, "body": response.text[:500]},
            )


_SERVICES: dict[str, type[EmailService]] = {
    "dummy": DummyEmailService,
    "smtp": SMTPEmailService,
    "sendgrid": SendGridEmailService,
}


def get_email_service(settings: Optional[Settings] = None) -> EmailService:
    settings = settings or get_settings()
    return _SERVICES[settings.email_service](settings)
