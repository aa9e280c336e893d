"""Repository utility functions for common database operations."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Concatenate, ParamSpec, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from core.context import RequestContext
from core.errors import DomainError, InternalError

# Threshold for logging slow queries (milliseconds)
SLOW_QUERY_THRESHOLD_MS = 500

DEADLINE_EXCEEDED = "deadline exceeded"

S = TypeVar("S")
P = ParamSpec("P")
R = TypeVar("R")


def repository_operation(
    operation_name: str,
) -> Callable[
    [Callable[Concatenate[S, RequestContext, P], Awaitable[R]]],
    Callable[Concatenate[S, RequestContext, P], Awaitable[R]],
]:
    """Decorator that bounds a repository method by the request deadline.

    The decorated method must take the RequestContext as its first argument
    after ``self``. The wrapper:
    - refuses to start once the deadline has passed
    - cancels the call when the deadline elapses mid-flight
    - lets DomainErrors through unchanged
    - converts anything else into InternalError, keeping the original as cause
    - logs slow operations and failures through ``ctx.logger``

    Usage:
        @repository_operation("user.get")
        async def get(self, ctx: RequestContext, user_id: str) -> UserData:
            ...
    """

    def decorator(
        func: Callable[Concatenate[S, RequestContext, P], Awaitable[R]],
    ) -> Callable[Concatenate[S, RequestContext, P], Awaitable[R]]:
        @wraps(func)
        async def wrapper(
            self: S, ctx: RequestContext, *args: P.args, **kwargs: P.kwargs
        ) -> R:
            log = ctx.logger.bind(db_operation=operation_name)
            remaining = ctx.remaining()
            if remaining <= 0:
                log.warning("db.deadline_exceeded", db_started=False)
                raise InternalError(f"{operation_name}: {DEADLINE_EXCEEDED}")

            start_time = time.perf_counter()
            deadline = asyncio.timeout(remaining)
            try:
                async with deadline:
                    result = await func(self, ctx, *args, **kwargs)
            except DomainError:
                raise
            except TimeoutError as e:
                if not deadline.expired():
                    # Raised by the driver (connect or pool timeout)
                    log.error(
                        "db.query.failed",
                        db_duration_ms=_elapsed_ms(start_time),
                        db_error_type=type(e).__name__,
                        exc_info=True,
                    )
                    raise InternalError(
                        f"{operation_name}: storage failure", cause=e
                    ) from e
                log.warning(
                    "db.deadline_exceeded",
                    db_started=True,
                    db_duration_ms=_elapsed_ms(start_time),
                )
                raise InternalError(
                    f"{operation_name}: {DEADLINE_EXCEEDED}", cause=e
                ) from e
            except SQLAlchemyError as e:
                log.error(
                    "db.query.failed",
                    db_duration_ms=_elapsed_ms(start_time),
                    db_error_type=type(e).__name__,
                    exc_info=True,
                )
                raise InternalError(
                    f"{operation_name}: storage failure", cause=e
                ) from e
            except Exception as e:
                log.error(
                    "db.operation.failed",
                    db_duration_ms=_elapsed_ms(start_time),
                    db_error_type=type(e).__name__,
                    exc_info=True,
                )
                raise InternalError(
                    f"{operation_name}: unexpected failure", cause=e
                ) from e

            duration_ms = _elapsed_ms(start_time)
            if duration_ms > SLOW_QUERY_THRESHOLD_MS:
                log.info("db.slow_query", db_duration_ms=duration_ms)
            return result

        return wrapper

    return decorator


def _elapsed_ms(start_time: float) -> float:
    return round((time.perf_counter() - start_time) * 1000, 2)
