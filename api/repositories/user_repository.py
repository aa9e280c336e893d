"""User repository for database operations."""

from datetime import UTC, datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.context import RequestContext
from core.database import write_transaction
from core.errors import ConflictError, NotFoundError
from models import User, utcnow
from repositories.utils import repository_operation
from schemas import UserData


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _to_user_data(user: User) -> UserData:
    return UserData(
        id=user.id,
        email=user.email,
        name=user.name,
        created_at=_as_utc(user.created_at),
        updated_at=_as_utc(user.updated_at),
    )


class UserRepository:
    """Repository for User database operations.

    Each operation runs in its own short transaction drawn from the shared
    session factory, so one instance can serve concurrent requests.
    Returned values are detached UserData copies, never ORM rows.
    """

    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self.sessions = sessions

    async def _find(self, user_id: str) -> User | None:
        async with self.sessions() as session:
            result = await session.execute(select(User).where(User.id == user_id))
            return result.scalar_one_or_none()

    @repository_operation("user.get")
    async def get(self, ctx: RequestContext, user_id: str) -> UserData:
        """Get a user by ID. Raises NotFoundError when absent."""
        user = await self._find(user_id)
        if user is None:
            raise NotFoundError(f"user {user_id!r} not found")
        return _to_user_data(user)

    @repository_operation("user.get_page")
    async def get_page(
        self, ctx: RequestContext, *, limit: int, offset: int = 0
    ) -> list[UserData]:
        """Get a page of users ordered by creation time."""
        async with self.sessions() as session:
            result = await session.execute(
                select(User)
                .order_by(User.created_at, User.id)
                .limit(limit)
                .offset(offset)
            )
            return [_to_user_data(user) for user in result.scalars().all()]

    @repository_operation("user.create")
    async def create(self, ctx: RequestContext, user: UserData) -> UserData:
        """Insert a new user.

        Expects email to be pre-normalized (lowercase) by service layer.

        If a row with the same id and identical fields already exists the
        existing row is returned, so retrying a create with a caller-supplied
        id is safe. Ids generated by the server differ on every attempt, so
        a retried create with a generated id fails with ConflictError on the
        email instead.
        """
        row = User(id=user.id, email=user.email, name=user.name)
        try:
            async with write_transaction(self.sessions) as session:
                session.add(row)
                await session.flush()
                await session.refresh(row)
        except IntegrityError as e:
            existing = await self._find(user.id)
            if existing is None:
                raise ConflictError(
                    f"email {user.email!r} is already registered", cause=e
                ) from e
            if existing.email == user.email and existing.name == user.name:
                ctx.logger.info("user.create.replayed", user_id=user.id)
                return _to_user_data(existing)
            raise ConflictError(f"user id {user.id!r} already exists", cause=e) from e

        ctx.logger.info("user.created", user_id=row.id)
        return _to_user_data(row)

    @repository_operation("user.update")
    async def update(self, ctx: RequestContext, user: UserData) -> UserData:
        """Overwrite email and name of an existing user.

        Writing the values a row already holds is a no-op apart from
        updated_at, so retries are safe.
        """
        try:
            async with write_transaction(self.sessions) as session:
                row = await session.get(User, user.id)
                if row is None:
                    raise NotFoundError(f"user {user.id!r} not found")
                row.email = user.email
                row.name = user.name
                row.updated_at = utcnow()
                await session.flush()
                await session.refresh(row)
        except IntegrityError as e:
            raise ConflictError(
                f"email {user.email!r} is already registered", cause=e
            ) from e

        ctx.logger.info("user.updated", user_id=row.id)
        return _to_user_data(row)

    @repository_operation("user.delete")
    async def delete(self, ctx: RequestContext, user_id: str) -> None:
        """Delete a user by ID. Deleting a missing user is not an error."""
        async with write_transaction(self.sessions) as session:
            result = await session.execute(delete(User).where(User.id == user_id))
        ctx.logger.info("user.deleted", user_id=user_id, rows=result.rowcount)
