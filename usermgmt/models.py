"""Domain models for user records and the actors that act on them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Union


class Role(str, Enum):
    """Closed set of roles an account or caller may hold."""

    GUEST = "guest"
    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class AuthenticatedActor:
    """A caller whose identity was resolved by the authentication layer."""

    id: int
    role: Role = Role.USER


@dataclass(frozen=True)
class AnonymousActor:
    """A caller without a resolved identity."""

    id: None = None
    role: Role = field(default=Role.GUEST, init=False)


Actor = Union[AuthenticatedActor, AnonymousActor]

ANONYMOUS = AnonymousActor()


@dataclass(frozen=True)
class UserRecord:
    """Represents a user account stored in the database."""

    id: int
    name: str
    email: str
    password_hash: str = field(repr=False)
    role: Role
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class UserSummary:
    """Listing view of a user; carries no contact or credential data."""

    id: int
    name: str
    role: Role
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: UserRecord) -> "UserSummary":
        return cls(
            id=record.id,
            name=record.name,
            role=record.role,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


@dataclass(frozen=True)
class UserProfile:
    """Detail view of a user, safe to hand back to callers."""

    id: int
    name: str
    email: str
    role: Role
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: UserRecord) -> "UserProfile":
        return cls(
            id=record.id,
            name=record.name,
            email=record.email,
            role=record.role,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


@dataclass(frozen=True)
class UserUpdate:
    """Validated partial update submitted by a caller.

    ``password`` holds plaintext and must be turned into :class:`UserChanges`
    before it goes anywhere near storage.
    """

    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    role: Optional[Role] = None

    @property
    def attempts_role_change(self) -> bool:
        return self.role is not None


@dataclass(frozen=True)
class UserChanges:
    """Storage-ready column values for a single user update."""

    updated_at: datetime
    name: Optional[str] = None
    email: Optional[str] = None
    password_hash: Optional[str] = field(default=None, repr=False)
    role: Optional[Role] = None

    def columns(self) -> Dict[str, object]:
        """Return the columns to write, skipping fields that were not supplied."""

        values: Dict[str, object] = {"updated_at": self.updated_at}
        if self.name is not None:
            values["name"] = self.name
        if self.email is not None:
            values["email"] = self.email
        if self.password_hash is not None:
            values["password_hash"] = self.password_hash
        if self.role is not None:
            values["role"] = self.role
        return values


@dataclass(frozen=True)
class DeletedUser:
    id: int


__all__ = [
    "ANONYMOUS",
    "Actor",
    "AnonymousActor",
    "AuthenticatedActor",
    "DeletedUser",
    "Role",
    "UserChanges",
    "UserProfile",
    "UserRecord",
    "UserSummary",
    "UserUpdate",
]
