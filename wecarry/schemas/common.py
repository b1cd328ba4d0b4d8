from enum import Enum
from typing import Optional

from pydantic import BaseModel


class RequestStatus(str, Enum):
    OPEN = "OPEN"
    ACCEPTED = "ACCEPTED"
    DELIVERED = "DELIVERED"
    RECEIVED = "RECEIVED"
    COMPLETED = "COMPLETED"
    REMOVED = "REMOVED"


class RequestSize(str, Enum):
    TINY = "TINY"
    SMALL = "SMALL"
    MEDIUM = "MEDIUM"
    LARGE = "LARGE"
    XLARGE = "XLARGE"


# Ordered smallest first, used when a watch limits the size it cares about
REQUEST_SIZE_ORDER: list["RequestSize"] = [
    RequestSize.TINY,
    RequestSize.SMALL,
    RequestSize.MEDIUM,
    RequestSize.LARGE,
    RequestSize.XLARGE,
]


class RequestVisibility(str, Enum):
    ALL = "ALL"
    TRUSTED = "TRUSTED"
    SAME = "SAME"


class UserAdminRole(str, Enum):
    USER = "user"
    SALES_ADMIN = "salesAdmin"
    ADMIN = "admin"
    SUPER_ADMIN = "superAdmin"


class OrgRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class RequestAction(str, Enum):
    REOPEN = "reopen"
    ACCEPT = "accept"
    DELIVER = "deliver"
    RECEIVE = "receive"
    REMOVE = "remove"
    OFFER = "offer"
    RETRACT_OFFER = "retractOffer"


class ErrorBody(BaseModel):
    code: str
    message: str
    operation: Optional[str] = None
    details: dict = {}


class APIError(BaseModel):
    error: ErrorBody
