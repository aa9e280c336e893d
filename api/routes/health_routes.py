"""Health check endpoints."""

from fastapi import APIRouter, Request

from core.database import check_db_connection
from core.errors import InternalError
from core.responder import Envelope
from schemas import ErrorEnvelope, HealthResponse

SERVICE_NAME = "users-api"

router = APIRouter(tags=["health"])


@router.get("/health", response_model=Envelope[HealthResponse])
async def health() -> Envelope[HealthResponse]:
    """Liveness: the process is up and serving."""
    return Envelope[HealthResponse](
        data=HealthResponse(status="healthy", service=SERVICE_NAME)
    )


@router.get(
    "/ready",
    response_model=Envelope[HealthResponse],
    responses={500: {"model": ErrorEnvelope, "description": "Not ready"}},
)
async def ready(request: Request) -> Envelope[HealthResponse]:
    """Readiness: startup finished and the database answers."""
    init_error = getattr(request.app.state, "init_error", None)
    if init_error:
        raise InternalError(f"initialization failed: {init_error}")

    if not getattr(request.app.state, "init_done", False):
        raise InternalError("initialization still running")

    try:
        await check_db_connection(request.app.state.engine, timeout=5)
    except Exception as e:
        raise InternalError("database unavailable", cause=e) from e

    return Envelope[HealthResponse](
        data=HealthResponse(status="ready", service=SERVICE_NAME)
    )
