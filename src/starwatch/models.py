"""
Data model for Starwatch.

User records are the only durable state. Projects and events are rebuilt from
the remote side on every cycle and never persisted.
"""

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class UserState(str, Enum):
    """How free-text input from a user is interpreted."""

    AWAITING_CREDENTIAL = "awaiting_credential"
    ACTIVE = "active"


class CycleOutcome(str, Enum):
    """Result of one poll cycle for one user."""

    AUTHENTICATED = "authenticated"
    AUTH_FAILED = "auth_failed"
    LIST_FAILED = "list_failed"


@dataclass
class UserRecord:
    """Persistent per-user record keyed by the chat identity."""

    id: int
    credential: str = ""
    watermark: datetime = EPOCH
    has_error: bool = False
    state: UserState = UserState.AWAITING_CREDENTIAL

    def __post_init__(self) -> None:
        self.watermark = ensure_utc(self.watermark)
        self.state = UserState(self.state)

    @classmethod
    def new(cls, user_id: int) -> "UserRecord":
        """Create the record of a user seen for the first time."""
        return cls(id=user_id)

    @property
    def is_eligible(self) -> bool:
        """Users without a credential are never polled."""
        return bool(self.credential)

    def copy(self) -> "UserRecord":
        """Return an independent copy of this record."""
        return replace(self)

    def activate(self, credential: str, now: datetime) -> None:
        """Store a verified credential and start watching from ``now``."""
        self.credential = credential
        self.has_error = False
        self.state = UserState.ACTIVE
        self.watermark = ensure_utc(now)

    def revoke(self) -> None:
        """Forget the credential and reset the record to its initial state."""
        self.credential = ""
        self.watermark = EPOCH
        self.has_error = False
        self.state = UserState.AWAITING_CREDENTIAL

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for the HTTP surface."""
        return {
            "id": self.id,
            "credential": self.credential,
            "watermark": self.watermark.isoformat(),
            "has_error": self.has_error,
            "state": self.state.value,
        }


@dataclass(frozen=True)
class Identity:
    """The account a credential authenticates as."""

    login: str
    name: str = ""
    email: str = ""


@dataclass(frozen=True)
class Project:
    """A starred repository."""

    id: str
    name: str
    url: str


@dataclass(frozen=True)
class Commit:
    """A commit pushed to a project."""

    title: str
    author_name: str
    author_email: str
    body: str
    created_at: datetime
    url: str
    author_login: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "created_at", ensure_utc(self.created_at))


@dataclass(frozen=True)
class Issue:
    """An issue opened on a project."""

    title: str
    author_name: str
    body: str
    created_at: datetime
    url: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "created_at", ensure_utc(self.created_at))
