"""Request authentication for the user API."""
from __future__ import annotations

import anyio
from fastapi import HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from .database import Database
from .models import ANONYMOUS, Actor, AuthenticatedActor


class ActorAuth:
    """Resolve HTTP Basic credentials into the acting user.

    Requests without credentials act anonymously; requests with credentials
    that do not match a stored account are rejected outright.
    """

    def __init__(self, database: Database) -> None:
        self._database = database
        self._basic = HTTPBasic(auto_error=False)

    async def __call__(self, request: Request) -> Actor:
        credentials: HTTPBasicCredentials | None = await self._basic(request)
        if credentials is None:
            return ANONYMOUS

        user = await anyio.to_thread.run_sync(
            self._database.authenticate_user, credentials.username, credentials.password
        )
        if user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication credentials",
                headers={"WWW-Authenticate": "Basic"},
            )
        return AuthenticatedActor(id=user.id, role=user.role)


__all__ = ["ActorAuth"]
