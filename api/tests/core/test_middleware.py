"""Unit tests for core.middleware module.

Tests ASGI middleware:
- SecurityHeadersMiddleware adds security headers without duplicating
- RequestLoggingMiddleware propagates or mints the request id
- RecoveryMiddleware renders an Internal envelope for uncaught errors
- AuthStubMiddleware records a principal and never rejects
"""

import json

import pytest
from structlog.testing import capture_logs

from core.middleware import (
    AuthStubMiddleware,
    RecoveryMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    resolve_principal,
    resolve_trace_id,
)
from core.responder import GENERIC_INTERNAL_MESSAGE

pytestmark = pytest.mark.unit


async def _noop_receive():
    return {"type": "http.request", "body": b""}


async def _make_app_that_sends_response(scope, receive, send):
    """Simulate an ASGI app that sends a response."""
    await send({"type": "http.response.start", "status": 200, "headers": []})
    await send({"type": "http.response.body", "body": b"OK"})


def _http_scope(headers=None, path="/users"):
    return {
        "type": "http",
        "method": "GET",
        "path": path,
        "headers": list(headers or []),
    }


class _Recorder:
    def __init__(self):
        self.messages = []

    async def __call__(self, message):
        self.messages.append(message)

    @property
    def start(self):
        return next(m for m in self.messages if m["type"] == "http.response.start")

    @property
    def headers(self):
        return dict(self.start["headers"])

    @property
    def body(self):
        return b"".join(
            m.get("body", b"")
            for m in self.messages
            if m["type"] == "http.response.body"
        )


class TestSecurityHeadersMiddleware:
    async def test_adds_security_headers(self):
        middleware = SecurityHeadersMiddleware(_make_app_that_sends_response)
        send = _Recorder()

        await middleware(_http_scope(), _noop_receive, send)

        assert send.headers[b"x-content-type-options"] == b"nosniff"
        assert send.headers[b"x-frame-options"] == b"DENY"
        assert send.headers[b"cache-control"] == b"no-store"
        assert b"content-security-policy" in send.headers

    async def test_does_not_override_existing_header(self):
        async def app(scope, receive, send):
            await send(
                {
                    "type": "http.response.start",
                    "status": 200,
                    "headers": [(b"cache-control", b"max-age=60")],
                }
            )
            await send({"type": "http.response.body", "body": b""})

        send = _Recorder()
        await SecurityHeadersMiddleware(app)(_http_scope(), _noop_receive, send)

        names = [name for name, _ in send.start["headers"]]
        assert names.count(b"cache-control") == 1
        assert send.headers[b"cache-control"] == b"max-age=60"

    async def test_skips_non_http_scopes(self):
        called = False

        async def inner_app(scope, receive, send):
            nonlocal called
            called = True

        middleware = SecurityHeadersMiddleware(inner_app)
        await middleware({"type": "lifespan"}, _noop_receive, _Recorder())
        assert called


class TestRequestLoggingMiddleware:
    async def test_propagates_incoming_request_id(self):
        scope = _http_scope(headers=[(b"x-request-id", b"abc-123")])
        send = _Recorder()

        await RequestLoggingMiddleware(_make_app_that_sends_response)(
            scope, _noop_receive, send
        )

        assert send.headers[b"x-request-id"] == b"abc-123"
        assert scope["state"]["trace_id"] == "abc-123"
        assert b"x-request-duration-ms" in send.headers

    async def test_mints_request_id_when_missing(self):
        scope = _http_scope()
        send = _Recorder()

        await RequestLoggingMiddleware(_make_app_that_sends_response)(
            scope, _noop_receive, send
        )

        trace_id = send.headers[b"x-request-id"].decode()
        assert len(trace_id) == 32
        assert scope["state"]["trace_id"] == trace_id

    async def test_logs_one_line_per_request(self):
        with capture_logs() as logs:
            await RequestLoggingMiddleware(_make_app_that_sends_response)(
                _http_scope(), _noop_receive, _Recorder()
            )

        completed = [e for e in logs if e["event"] == "request.completed"]
        assert len(completed) == 1
        assert completed[0]["http_status_code"] == 200
        assert completed[0]["outcome"] == "success"

    @pytest.mark.parametrize(
        "incoming",
        [None, "", "has spaces", "x" * 200, "semi;colon"],
    )
    def test_resolve_trace_id_rejects_malformed(self, incoming):
        trace_id = resolve_trace_id(incoming)
        assert trace_id != incoming
        assert len(trace_id) == 32

    def test_resolve_trace_id_keeps_wellformed(self):
        assert resolve_trace_id("req_01.A-b") == "req_01.A-b"


class TestRecoveryMiddleware:
    async def test_uncaught_exception_becomes_internal_envelope(self):
        async def broken_app(scope, receive, send):
            raise RuntimeError("db password is hunter2")

        send = _Recorder()
        with capture_logs() as logs:
            await RecoveryMiddleware(broken_app)(_http_scope(), _noop_receive, send)

        assert send.start["status"] == 500
        assert json.loads(send.body) == {
            "error": {"kind": "Internal", "message": GENERIC_INTERNAL_MESSAGE}
        }
        assert b"hunter2" not in send.body
        assert any(e["event"] == "responder.internal_error" for e in logs)

    async def test_reraises_when_response_already_started(self):
        async def half_sent_app(scope, receive, send):
            await send({"type": "http.response.start", "status": 200, "headers": []})
            raise RuntimeError("mid-stream")

        send = _Recorder()
        with pytest.raises(RuntimeError, match="mid-stream"):
            await RecoveryMiddleware(half_sent_app)(
                _http_scope(), _noop_receive, send
            )
        assert len(send.messages) == 1

    async def test_passes_through_successful_responses(self):
        send = _Recorder()
        await RecoveryMiddleware(_make_app_that_sends_response)(
            _http_scope(), _noop_receive, send
        )
        assert send.start["status"] == 200
        assert send.body == b"OK"


class TestAuthStubMiddleware:
    async def test_records_principal_and_never_rejects(self):
        scope = _http_scope(headers=[(b"x-user-id", b"42")])
        send = _Recorder()

        await AuthStubMiddleware(_make_app_that_sends_response)(
            scope, _noop_receive, send
        )

        assert scope["state"]["principal"] == "user:42"
        assert send.start["status"] == 200

    async def test_anonymous_without_credentials(self):
        scope = _http_scope()
        await AuthStubMiddleware(_make_app_that_sends_response)(
            scope, _noop_receive, _Recorder()
        )
        assert scope["state"]["principal"] == "anonymous"

    def test_bearer_token_fingerprint(self):
        principal = resolve_principal(None, "Bearer s3cret-token")

        assert principal.startswith("token:")
        assert "s3cret" not in principal
        assert principal == resolve_principal(None, "bearer s3cret-token")

    @pytest.mark.parametrize("authorization", ["Basic abc", "Bearer", "garbage"])
    def test_unrecognized_authorization_is_anonymous(self, authorization):
        assert resolve_principal(None, authorization) == "anonymous"
