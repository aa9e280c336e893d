"""ASGI middleware wrapped around every routed request.

Order, outermost first (see main.create_app):
    SecurityHeadersMiddleware -> RequestLoggingMiddleware
        -> RecoveryMiddleware -> AuthStubMiddleware -> router
"""

from __future__ import annotations

import hashlib
import re
import time
import uuid

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from core.errors import InternalError
from core.logger import bind_contextvars, clear_contextvars, get_logger
from core.responder import render_error

logger = get_logger(__name__)

TRACE_ID_HEADER = b"x-request-id"
_TRACE_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def _header(scope: Scope, name: bytes) -> str | None:
    for key, value in scope.get("headers", []):
        if key.lower() == name:
            return value.decode("latin-1")
    return None


def _state(scope: Scope) -> dict:
    return scope.setdefault("state", {})


def resolve_trace_id(incoming: str | None) -> str:
    """Reuse a well-formed incoming request id, otherwise mint one."""
    if incoming and _TRACE_ID_RE.match(incoming):
        return incoming
    return uuid.uuid4().hex


class SecurityHeadersMiddleware:
    """Adds security headers suited to a JSON API."""

    SECURITY_HEADERS: list[tuple[bytes, bytes]] = [
        (b"x-content-type-options", b"nosniff"),
        (b"x-frame-options", b"DENY"),
        (b"referrer-policy", b"no-referrer"),
        (b"cache-control", b"no-store"),
        (b"content-security-policy", b"default-src 'none'; frame-ancestors 'none'"),
    ]

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_wrapper(message: Message) -> None:
            if message.get("type") == "http.response.start":
                headers: list[tuple[bytes, bytes]] = list(message.get("headers", []))
                present = {name.lower() for name, _ in headers}
                headers.extend(
                    (name, value)
                    for name, value in self.SECURITY_HEADERS
                    if name not in present
                )
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_wrapper)


class RequestLoggingMiddleware:
    """Stamps a trace id on the request and emits one log line per request.

    - Trace id comes from X-Request-Id when well-formed, else a fresh uuid
    - Stored in scope["state"]["trace_id"] and bound into structlog contextvars
    - Response carries X-Request-Id and X-Request-Duration-Ms
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        trace_id = resolve_trace_id(_header(scope, TRACE_ID_HEADER))
        _state(scope)["trace_id"] = trace_id

        method = scope.get("method", "UNKNOWN")
        path = scope.get("path", "")
        bind_contextvars(trace_id=trace_id)

        response_status: int | None = None

        async def send_wrapper(message: Message) -> None:
            nonlocal response_status
            if message.get("type") == "http.response.start":
                response_status = int(message.get("status", 0))
                headers: list[tuple[bytes, bytes]] = list(message.get("headers", []))
                duration_ms = (time.perf_counter() - start_time) * 1000
                headers.append(
                    (b"x-request-duration-ms", f"{duration_ms:.2f}".encode())
                )
                headers.append((TRACE_ID_HEADER, trace_id.encode()))
                message["headers"] = headers
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            route = scope.get("route")
            logger.info(
                "request.completed",
                http_method=method,
                http_path=path,
                http_route=getattr(route, "path", None) or path,
                http_status_code=response_status,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                outcome=(
                    "success"
                    if response_status is not None and response_status < 400
                    else "error"
                ),
            )
            clear_contextvars()


class RecoveryMiddleware:
    """Turns any uncaught exception into an Internal error envelope.

    DomainErrors are rendered by the exception handlers further in; this
    layer only sees faults nobody classified. If the response has already
    started there is nothing left to render, so the error is re-raised.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message.get("type") == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            log = logger.bind(
                trace_id=_state(scope).get("trace_id"),
                http_method=scope.get("method"),
                http_path=scope.get("path"),
                exc_type=type(exc).__name__,
            )
            if response_started:
                log.error("recovery.response_already_started", exc_info=True)
                raise
            error = InternalError(f"unhandled {type(exc).__name__}", cause=exc)
            response = render_error(error, log)
            await response(scope, receive, send)


class AuthStubMiddleware:
    """Records who is calling, for logs only. Never rejects a request.

    Identity comes from X-User-Id, or a short fingerprint of a bearer
    token. Anything else is "anonymous".
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        principal = resolve_principal(
            _header(scope, b"x-user-id"), _header(scope, b"authorization")
        )
        _state(scope)["principal"] = principal
        bind_contextvars(principal=principal)

        await self.app(scope, receive, send)


def resolve_principal(user_id: str | None, authorization: str | None) -> str:
    if user_id:
        return f"user:{user_id[:64]}"
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token:
            digest = hashlib.sha256(token.encode()).hexdigest()[:12]
            return f"token:{digest}"
    return "anonymous"
