"""Per-request context passed explicitly through handler, service and repository.

A RequestContext is created once per request and dropped when the request
ends. It carries the trace id, the deadline every repository call must
honor, and the logger bound to that trace id.

Usage:
    ctx = RequestContext.new(timeout=5.0)
    user = await service.get_user(ctx, "42")
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Annotated, Any

import structlog
from fastapi import Depends, Request

from core.errors import InvalidError
from core.logger import get_logger

TIMEOUT_HEADER = "x-request-timeout"


def new_trace_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Cross-cutting values for a single call.

    ``deadline`` is an absolute time.monotonic() value.
    """

    trace_id: str
    deadline: float
    logger: structlog.stdlib.BoundLogger = field(repr=False, compare=False)

    @classmethod
    def new(
        cls,
        timeout: float,
        *,
        trace_id: str | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> RequestContext:
        trace_id = trace_id or new_trace_id()
        base_logger = logger if logger is not None else get_logger("request")
        return cls(
            trace_id=trace_id,
            deadline=time.monotonic() + timeout,
            logger=base_logger.bind(trace_id=trace_id),
        )

    def remaining(self) -> float:
        """Seconds until the deadline. Zero or negative once it has passed."""
        return self.deadline - time.monotonic()

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def bind(self, **fields: Any) -> RequestContext:
        """Return a copy whose logger carries ``fields``."""
        return replace(self, logger=self.logger.bind(**fields))


def _requested_timeout(request: Request) -> float | None:
    raw = request.headers.get(TIMEOUT_HEADER)
    if raw is None:
        return None
    try:
        value = float(raw)
    except ValueError:
        value = 0.0
    if not 0 < value < float("inf"):
        raise InvalidError(f"{TIMEOUT_HEADER} must be a positive number of seconds")
    return value


async def get_request_context(request: Request) -> RequestContext:
    """Build the context for this request.

    The trace id comes from RequestLoggingMiddleware. The deadline is the
    configured request timeout, shortened by X-Request-Timeout when given.
    """
    timeout = request.app.state.settings.request_timeout_seconds
    requested = _requested_timeout(request)
    if requested is not None:
        timeout = min(timeout, requested)

    state = request.scope.get("state", {})
    ctx = RequestContext.new(timeout, trace_id=state.get("trace_id"))
    return ctx.bind(
        principal=state.get("principal", "anonymous"),
        http_method=request.method,
        http_path=request.url.path,
    )


Context = Annotated[RequestContext, Depends(get_request_context)]
