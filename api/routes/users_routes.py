"""User endpoints.

Handlers only translate between HTTP and the service: FastAPI parses the
path, query and body (parse failures surface as Invalid envelopes without
reaching the service), the service does the work, and DomainErrors raised
by the service propagate unchanged to the responder's exception handlers.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from starlette import status

from core.context import Context
from core.responder import Envelope
from schemas import (
    DeletedResponse,
    ErrorEnvelope,
    UserCreateRequest,
    UserListResponse,
    UserResponse,
    UserUpdateRequest,
)
from services.users_service import DEFAULT_PAGE_SIZE, UserService

__all__ = ["router", "get_user_service"]

router = APIRouter(prefix="/users", tags=["users"])


def get_user_service(request: Request) -> UserService:
    """The service built once at startup by create_app."""
    return request.app.state.user_service


UserServiceDep = Annotated[UserService, Depends(get_user_service)]

_INVALID = {400: {"model": ErrorEnvelope, "description": "Invalid input"}}
_NOT_FOUND = {404: {"model": ErrorEnvelope, "description": "User not found"}}
_CONFLICT = {409: {"model": ErrorEnvelope, "description": "Email already registered"}}


@router.get(
    "",
    response_model=Envelope[UserResponse] | Envelope[UserListResponse],
    responses={**_INVALID, **_NOT_FOUND},
)
async def get_users(
    ctx: Context,
    service: UserServiceDep,
    user_id: Annotated[str | None, Query(alias="id")] = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> Envelope[UserResponse] | Envelope[UserListResponse]:
    """Get one user by ``?id=``, or a page of users when no id is given."""
    if user_id is not None:
        user = await service.get_user(ctx, user_id)
        return Envelope[UserResponse](data=user)

    page = await service.list_users(ctx, limit=limit, offset=offset)
    return Envelope[UserListResponse](data=page)


@router.get(
    "/{user_id}",
    response_model=Envelope[UserResponse],
    responses={**_INVALID, **_NOT_FOUND},
)
async def get_user(
    user_id: str, ctx: Context, service: UserServiceDep
) -> Envelope[UserResponse]:
    """Get a user by id."""
    user = await service.get_user(ctx, user_id)
    return Envelope[UserResponse](data=user)


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=Envelope[UserResponse],
    responses={**_INVALID, **_CONFLICT},
)
async def create_user(
    payload: UserCreateRequest, ctx: Context, service: UserServiceDep
) -> Envelope[UserResponse]:
    """Create a user. Supplying ``id`` makes retries idempotent."""
    user = await service.create_user(ctx, payload)
    return Envelope[UserResponse](data=user)


@router.patch(
    "/{user_id}",
    response_model=Envelope[UserResponse],
    responses={**_INVALID, **_NOT_FOUND, **_CONFLICT},
)
async def update_user(
    user_id: str,
    payload: UserUpdateRequest,
    ctx: Context,
    service: UserServiceDep,
) -> Envelope[UserResponse]:
    """Change a user's email and/or name."""
    user = await service.update_user(ctx, user_id, payload)
    return Envelope[UserResponse](data=user)


@router.delete(
    "/{user_id}",
    response_model=Envelope[DeletedResponse],
    responses=_INVALID,
)
async def delete_user(
    user_id: str, ctx: Context, service: UserServiceDep
) -> Envelope[DeletedResponse]:
    """Delete a user. Deleting a user that does not exist also succeeds."""
    await service.delete_user(ctx, user_id)
    return Envelope[DeletedResponse](data=DeletedResponse(id=user_id))
