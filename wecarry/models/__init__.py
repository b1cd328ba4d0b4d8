# SQLModel definitions, imported here to ensure metadata is populated.
from .base import IDMixin, TimestampMixin, UUIDMixin, today, utcnow  # noqa: F401
from .location import Location  # noqa: F401
from .organization import Organization, OrganizationTrust, UserOrganization  # noqa: F401
from .user import User, UserAccessToken  # noqa: F401
from .meeting import Meeting, MeetingParticipant  # noqa: F401
from .request import PotentialProvider, Request, RequestHistory, RequestNotification  # noqa: F401
from .thread import Message, Thread, ThreadParticipant  # noqa: F401
from .watch import Watch  # noqa: F401
