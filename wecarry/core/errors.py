"""
Domain error hierarchy.

Every error carries a ``code`` (the error kind), a human ``message``,
structured ``details`` and, once it passes through a handler, the
``operation`` tag that names where it happened (e.g.
``UpdateRequestStatus.SetProvider``). The HTTP mapping lives in
``wecarry.main``.
"""

from __future__ import annotations

from typing import Any

import structlog

log = structlog.get_logger()


class WeCarryError(Exception):
    """Base class for all domain errors."""

    code = "Internal"
    status_code = 500

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        operation: str | None = None,
    ):
        self.message = message
        self.details = details or {}
        self.operation = operation
        super().__init__(message)

    def public_message(self) -> str:
        return self.message


class ValidationFailed(WeCarryError):
    code = "Validation"
    status_code = 422


class NotFound(WeCarryError):
    code = "NotFound"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any, operation: str | None = None):
        super().__init__(
            f"{entity} not found: {entity_id}",
            details={"entity": entity, "id": str(entity_id)},
            operation=operation,
        )


class Unauthorized(WeCarryError):
    """Role or ownership denies the operation.

    The message is logged; callers only ever see a generic text.
    """

    code = "Unauthorized"
    status_code = 403

    def public_message(self) -> str:
        return "not allowed"


class NotAllowed(Unauthorized):
    code = "NotAllowed"


class InvalidTransition(WeCarryError):
    code = "InvalidTransition"
    status_code = 409

    def __init__(self, from_status: str, to_status: str, operation: str | None = None):
        super().__init__(
            f"cannot move request from '{from_status}' status to '{to_status}' status",
            details={"from": from_status, "to": to_status},
            operation=operation,
        )


class InvalidInitialStatus(ValidationFailed):
    code = "InvalidInitialStatus"


class BadRequestStatus(WeCarryError):
    code = "BadRequestStatus"
    status_code = 409


class Conflict(WeCarryError):
    code = "Conflict"
    status_code = 409


class TransientError(WeCarryError):
    code = "Transient"
    status_code = 503


class FatalError(WeCarryError):
    code = "Fatal"
    status_code = 500


def report_error(exc: WeCarryError, operation: str, **extras: Any) -> WeCarryError:
    """Tag ``exc`` with the operation name and extras, log it, and return it.

    Typical use is ``raise report_error(err, "UpdateRequest.NotEditable", user=...)``.
    """
    exc.operation = exc.operation or operation
    exc.details.update({k: str(v) for k, v in extras.items() if v is not None})
    log_method = log.warning if isinstance(exc, (Unauthorized, ValidationFailed)) else log.error
    log_method(
        "error.reported",
        operation=exc.operation,
        code=exc.code,
        message=exc.message,
        **exc.details,
    )
    return exc
