"""Pydantic schemas for API request/response validation and layer DTOs."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class UserData(BaseModel):
    """Transient copy of a persisted user, handed out by the repository.

    Equality is by value, so an entity returned by create compares equal
    to the one a later get returns.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    email: str
    name: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class UserCreateRequest(BaseModel):
    """Body of POST /users.

    ``id`` is optional; when supplied, retries of the same create are
    idempotent.
    """

    model_config = ConfigDict(extra="forbid")

    id: str | None = Field(default=None, max_length=64)
    email: str = Field(max_length=255)
    name: str = Field(max_length=255)


class UserUpdateRequest(BaseModel):
    """Body of PATCH /users/{user_id}. Omitted fields are left unchanged."""

    model_config = ConfigDict(extra="forbid")

    email: str | None = Field(default=None, max_length=255)
    name: str | None = Field(default=None, max_length=255)


class UserResponse(BaseModel):
    """User view returned to clients."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class UserListResponse(BaseModel):
    """A page of users."""

    items: list[UserResponse]
    limit: int
    offset: int


class DeletedResponse(BaseModel):
    id: str
    deleted: bool = True


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str


class ErrorDetail(BaseModel):
    """Error half of the response envelope."""

    kind: str
    message: str


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
