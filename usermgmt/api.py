"""FastAPI application exposing the user management endpoints."""
from __future__ import annotations

import logging
import os
import re
from datetime import datetime
from typing import Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Path, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .database import Database, DuplicateEmailError, StorageError, resolve_database_path
from .models import (
    ANONYMOUS,
    Actor,
    AnonymousActor,
    Role,
    UserProfile,
    UserSummary,
    UserUpdate,
)
from .security import ActorAuth
from .users import ForbiddenError, NotFoundError, UserRecordService

logger = logging.getLogger("usermgmt.api")

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_ASSIGNABLE_ROLES = {Role.USER, Role.ADMIN}


class UserSummaryResponse(BaseModel):
    id: int
    name: str
    role: Role
    created_at: datetime
    updated_at: datetime


class UserResponse(UserSummaryResponse):
    email: str


class UserListResponse(BaseModel):
    message: str
    users: List[UserSummaryResponse]
    count: int


class UserEnvelope(BaseModel):
    message: str
    user: UserResponse


class DeleteUserResponse(BaseModel):
    message: str
    id: int


class UpdateUserRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, min_length=8, max_length=128)
    role: Optional[Role] = None

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = value.strip()
        if not stripped:
            raise ValueError("name must not be empty")
        return stripped

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        normalized = value.strip().lower()
        if not _EMAIL_PATTERN.fullmatch(normalized):
            raise ValueError("email must be a valid email address")
        return normalized

    @field_validator("role")
    @classmethod
    def _check_role(cls, value: Optional[Role]) -> Optional[Role]:
        if value is not None and value not in _ASSIGNABLE_ROLES:
            raise ValueError("role must be one of: user, admin")
        return value

    @model_validator(mode="after")
    def _ensure_non_empty(self):  # type: ignore[override]
        if self.name is None and self.email is None and self.password is None and self.role is None:
            raise ValueError("At least one field must be provided")
        return self

    def to_update(self) -> UserUpdate:
        return UserUpdate(name=self.name, email=self.email, password=self.password, role=self.role)


def summary_to_response(user: UserSummary) -> UserSummaryResponse:
    return UserSummaryResponse(
        id=user.id,
        name=user.name,
        role=user.role,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def profile_to_response(user: UserProfile) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def _request_context(request: Request) -> tuple[object, object]:
    actor: Actor = getattr(request.state, "actor", ANONYMOUS)
    return actor.id, request.path_params.get("user_id")


def create_app(
    *,
    database: Database | None = None,
    auth: Callable[[Request], object] | None = None,
    service: UserRecordService | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application for the user API."""

    if database is None:
        database = Database(resolve_database_path(os.getenv("USERMGMT_DB_PATH")))
        database.initialize()

    if auth is None:
        auth = ActorAuth(database)

    if service is None:
        service = UserRecordService(database)

    app = FastAPI(
        title="User Management API",
        description="List, fetch, update and delete user accounts",
        version="1.0.0",
    )
    app.state.database = database
    app.state.service = service

    def get_service() -> UserRecordService:
        return service

    async def get_actor(request: Request) -> Actor:
        actor = await auth(request)  # type: ignore[misc]
        request.state.actor = actor
        return actor

    async def require_authenticated(actor: Actor = Depends(get_actor)) -> Actor:
        if isinstance(actor, AnonymousActor):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
                headers={"WWW-Authenticate": "Basic"},
            )
        return actor

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/users", response_model=UserListResponse)
    async def list_users(
        _: Actor = Depends(require_authenticated),
        users: UserRecordService = Depends(get_service),
    ) -> UserListResponse:
        logger.info("Listing users")
        summaries = await users.list_users()
        return UserListResponse(
            message="Successfully retrieved users",
            users=[summary_to_response(item) for item in summaries],
            count=len(summaries),
        )

    @app.get("/users/{user_id}", response_model=UserEnvelope)
    async def read_user(
        user_id: int = Path(..., ge=1),
        _: Actor = Depends(require_authenticated),
        users: UserRecordService = Depends(get_service),
    ) -> UserEnvelope:
        profile = await users.get_user(user_id)
        return UserEnvelope(message="Successfully retrieved user", user=profile_to_response(profile))

    @app.put("/users/{user_id}", response_model=UserEnvelope)
    async def update_user(
        payload: UpdateUserRequest,
        user_id: int = Path(..., ge=1),
        actor: Actor = Depends(get_actor),
        users: UserRecordService = Depends(get_service),
    ) -> UserEnvelope:
        logger.info("Updating user %s on behalf of actor %s", user_id, actor.id)
        profile = await users.update_user(actor, user_id, payload.to_update())
        return UserEnvelope(message="User updated successfully", user=profile_to_response(profile))

    @app.delete("/users/{user_id}", response_model=DeleteUserResponse)
    async def delete_user(
        user_id: int = Path(..., ge=1),
        actor: Actor = Depends(get_actor),
        users: UserRecordService = Depends(get_service),
    ) -> DeleteUserResponse:
        logger.info("Deleting user %s on behalf of actor %s", user_id, actor.id)
        deleted = await users.delete_user(actor, user_id)
        return DeleteUserResponse(message="User deleted successfully", id=deleted.id)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        actor_id, _ = _request_context(request)
        logger.info("User %s not found (actor %s)", exc.user_id, actor_id)
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": "User not found"})

    @app.exception_handler(ForbiddenError)
    async def handle_forbidden(request: Request, exc: ForbiddenError):
        actor_id, _ = _request_context(request)
        logger.warning("Forbidden change to user %s by actor %s: %s", exc.user_id, actor_id, exc)
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"error": "Forbidden", "message": str(exc)},
        )

    @app.exception_handler(DuplicateEmailError)
    async def handle_duplicate_email(request: Request, exc: DuplicateEmailError):
        actor_id, target_id = _request_context(request)
        logger.warning("Email conflict updating user %s by actor %s", target_id, actor_id)
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"error": str(exc)})

    @app.exception_handler(StorageError)
    async def handle_storage_error(request: Request, exc: StorageError):
        actor_id, target_id = _request_context(request)
        logger.error(
            "Storage failure handling user %s for actor %s: %s", target_id, actor_id, exc
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "Storage unavailable"},
        )

    return app


__all__ = ["UpdateUserRequest", "create_app"]
