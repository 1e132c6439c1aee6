"""Read and mutate user records under the authorization policy."""

from __future__ import annotations

import functools
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Sequence, Union

import anyio

from .database import hash_password
from .models import (
    Actor,
    DeletedUser,
    UserChanges,
    UserProfile,
    UserRecord,
    UserSummary,
    UserUpdate,
)
from .policy import Operation, can_modify

logger = logging.getLogger("usermgmt.users")


class UserServiceError(Exception):
    """Base class for failures reported by :class:`UserRecordService`."""

    def __init__(self, message: str, *, user_id: int) -> None:
        super().__init__(message)
        self.user_id = user_id


class NotFoundError(UserServiceError):
    """The target user record does not exist."""

    def __init__(self, user_id: int) -> None:
        super().__init__("User not found", user_id=user_id)


class ForbiddenError(UserServiceError):
    """The actor may not perform the requested change."""


class UserStore(Protocol):
    """Storage operations the service relies on.

    Each method may be a plain function or a coroutine function.
    """

    def find_user(self, user_id: int) -> Union[Optional[UserRecord], Awaitable[Optional[UserRecord]]]:
        ...

    def list_users(self) -> Union[Sequence[UserRecord], Awaitable[Sequence[UserRecord]]]:
        ...

    def update_user(
        self, user_id: int, changes: UserChanges
    ) -> Union[Optional[UserRecord], Awaitable[Optional[UserRecord]]]:
        ...

    def delete_user(self, user_id: int) -> Union[bool, Awaitable[bool]]:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def prepare_changes(
    updates: UserUpdate,
    *,
    now: datetime,
    hasher: Callable[[str], str] = hash_password,
) -> UserChanges:
    """Turn a validated update into column values, hashing any new password."""

    password_hash = hasher(updates.password) if updates.password is not None else None
    return UserChanges(
        updated_at=now,
        name=updates.name,
        email=updates.email,
        password_hash=password_hash,
        role=updates.role,
    )


class UserRecordService:
    """Coordinate user reads and writes against a :class:`UserStore`."""

    def __init__(
        self,
        store: UserStore,
        *,
        clock: Callable[[], datetime] = _utcnow,
        hasher: Callable[[str], str] = hash_password,
    ) -> None:
        self._store = store
        self._clock = clock
        self._hasher = hasher

    async def _call(self, method: Callable[..., Any], *args: Any) -> Any:
        if inspect.iscoroutinefunction(method):
            return await method(*args)
        result = await anyio.to_thread.run_sync(functools.partial(method, *args))
        if inspect.isawaitable(result):
            return await result
        return result

    async def _require_user(self, user_id: int) -> UserRecord:
        record = await self._call(self._store.find_user, user_id)
        if record is None:
            raise NotFoundError(user_id)
        return record

    async def list_users(self) -> List[UserSummary]:
        records = await self._call(self._store.list_users)
        return [UserSummary.from_record(record) for record in records]

    async def get_user(self, user_id: int) -> UserProfile:
        record = await self._require_user(user_id)
        return UserProfile.from_record(record)

    async def update_user(self, actor: Actor, user_id: int, updates: UserUpdate) -> UserProfile:
        await self._require_user(user_id)

        decision = can_modify(actor, user_id, Operation.UPDATE, updates.attempts_role_change)
        if not decision.allowed:
            if updates.attempts_role_change:
                raise ForbiddenError("Only admins can change user roles", user_id=user_id)
            raise ForbiddenError("You can only update your own information", user_id=user_id)

        changes = await anyio.to_thread.run_sync(
            functools.partial(prepare_changes, updates, now=self._clock(), hasher=self._hasher)
        )
        updated = await self._call(self._store.update_user, user_id, changes)
        if updated is None:
            raise NotFoundError(user_id)

        logger.info("User %s updated by actor %s", user_id, actor.id)
        return UserProfile.from_record(updated)

    async def delete_user(self, actor: Actor, user_id: int) -> DeletedUser:
        await self._require_user(user_id)

        if not can_modify(actor, user_id, Operation.DELETE).allowed:
            raise ForbiddenError(
                "You can only delete your own account or must be an admin",
                user_id=user_id,
            )

        removed = await self._call(self._store.delete_user, user_id)
        if not removed:
            raise NotFoundError(user_id)

        logger.info("User %s deleted by actor %s", user_id, actor.id)
        return DeletedUser(id=user_id)


__all__ = [
    "ForbiddenError",
    "NotFoundError",
    "UserRecordService",
    "UserServiceError",
    "UserStore",
    "prepare_changes",
]
