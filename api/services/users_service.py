"""User service for user-related business logic."""

import re
import uuid

from core.context import RequestContext
from core.errors import DomainError, InvalidError
from repositories.user_repository import UserRepository
from schemas import (
    UserCreateRequest,
    UserData,
    UserListResponse,
    UserResponse,
    UserUpdateRequest,
)

MAX_ID_LENGTH = 64
MAX_EMAIL_LENGTH = 255
MAX_NAME_LENGTH = 255
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200

_USER_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
# Deliberately loose: one "@", no whitespace, a dot in the domain
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def generate_user_id() -> str:
    return uuid.uuid4().hex


def validate_user_id(user_id: str | None) -> str:
    """Return the id unchanged or raise InvalidError."""
    if not user_id:
        raise InvalidError("user id must not be empty")
    if len(user_id) > MAX_ID_LENGTH:
        raise InvalidError(f"user id must be at most {MAX_ID_LENGTH} characters")
    if not _USER_ID_RE.match(user_id):
        raise InvalidError(
            "user id may only contain letters, digits, '-' and '_'"
        )
    return user_id


def normalize_email(email: str) -> str:
    """Normalize email to lowercase for consistency.

    Email addresses are compared case-insensitively, so we normalize to
    lowercase to keep the unique constraint meaningful.
    """
    email = email.strip().lower()
    if len(email) > MAX_EMAIL_LENGTH:
        raise InvalidError(f"email must be at most {MAX_EMAIL_LENGTH} characters")
    if not _EMAIL_RE.match(email):
        raise InvalidError(f"{email!r} is not a valid email address")
    return email


def normalize_name(name: str) -> str:
    name = name.strip()
    if not name:
        raise InvalidError("name must not be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidError(f"name must be at most {MAX_NAME_LENGTH} characters")
    return name


def _to_user_response(user: UserData) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


class UserService:
    """Business operations on users.

    Input is validated before the repository is called, so invalid input
    never reaches storage. Repository errors are re-raised with context
    but keep their kind. Each operation writes at most once and never
    retries.
    """

    def __init__(self, repository: UserRepository):
        self.repository = repository

    async def get_user(self, ctx: RequestContext, user_id: str) -> UserResponse:
        user_id = validate_user_id(user_id)
        try:
            user = await self.repository.get(ctx, user_id)
        except DomainError as e:
            raise e.with_context("user lookup failed") from e
        return _to_user_response(user)

    async def list_users(
        self,
        ctx: RequestContext,
        *,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> UserListResponse:
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise InvalidError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise InvalidError("offset must not be negative")
        try:
            users = await self.repository.get_page(ctx, limit=limit, offset=offset)
        except DomainError as e:
            raise e.with_context("user listing failed") from e
        return UserListResponse(
            items=[_to_user_response(user) for user in users],
            limit=limit,
            offset=offset,
        )

    async def create_user(
        self, ctx: RequestContext, payload: UserCreateRequest
    ) -> UserResponse:
        """Create a user.

        A caller-supplied id makes the call safe to retry; without one a
        fresh id is generated on every call.
        """
        user_id = (
            validate_user_id(payload.id) if payload.id is not None else generate_user_id()
        )
        candidate = UserData(
            id=user_id,
            email=normalize_email(payload.email),
            name=normalize_name(payload.name),
        )
        try:
            user = await self.repository.create(ctx, candidate)
        except DomainError as e:
            raise e.with_context("user creation failed") from e
        return _to_user_response(user)

    async def update_user(
        self, ctx: RequestContext, user_id: str, payload: UserUpdateRequest
    ) -> UserResponse:
        """Change email and/or name. At least one field must be given."""
        user_id = validate_user_id(user_id)
        if payload.email is None and payload.name is None:
            raise InvalidError("update must change at least one of: email, name")
        email = normalize_email(payload.email) if payload.email is not None else None
        name = normalize_name(payload.name) if payload.name is not None else None

        try:
            current = await self.repository.get(ctx, user_id)
            changed = current.model_copy(
                update={
                    "email": email if email is not None else current.email,
                    "name": name if name is not None else current.name,
                }
            )
            user = await self.repository.update(ctx, changed)
        except DomainError as e:
            raise e.with_context("user update failed") from e
        return _to_user_response(user)

    async def delete_user(self, ctx: RequestContext, user_id: str) -> None:
        user_id = validate_user_id(user_id)
        try:
            await self.repository.delete(ctx, user_id)
        except DomainError as e:
            raise e.with_context("user deletion failed") from e
