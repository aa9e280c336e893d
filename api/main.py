"""FastAPI application for the users API.

create_app() is the single composition point: settings -> engine ->
session factory -> repository -> service, each handed to the next through
its constructor and parked on app.state for the request dependencies.
"""

from contextlib import asynccontextmanager

import fastapi
from sqlalchemy.ext.asyncio import AsyncEngine

from core.config import Settings, get_settings
from core.database import (
    create_engine,
    create_session_maker,
    dispose_engine,
    init_db,
)
from core.logger import get_logger
from core.middleware import (
    AuthStubMiddleware,
    RecoveryMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from core.responder import register_error_handlers
from repositories.user_repository import UserRepository
from routes import health_router, users_router
from services.users_service import UserService

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: fastapi.FastAPI):
    """Verify the database at startup, dispose the pool on shutdown."""
    settings: Settings = app.state.settings
    app.state.init_done = False
    app.state.init_error = None

    try:
        await init_db(app.state.engine, create_schema=settings.db_create_schema)
        app.state.init_done = True
        logger.info("init.complete")
    except Exception as e:
        app.state.init_error = str(e)
        logger.error("init.failed", error=str(e), exc_info=True)
        raise

    try:
        yield
    finally:
        await dispose_engine(app.state.engine)


def create_app(
    settings: Settings | None = None,
    *,
    engine: AsyncEngine | None = None,
) -> fastapi.FastAPI:
    """Build the application with its dependencies wired in.

    Args:
        settings: Defaults to get_settings() (environment / .env).
        engine: Pre-built engine, e.g. a test database. Built from
            settings.database_url when omitted.
    """
    settings = settings or get_settings()

    app = fastapi.FastAPI(
        title="Users API",
        version="1.0.0",
        lifespan=lifespan,
        redirect_slashes=False,
        docs_url="/docs" if settings.docs_enabled else None,
        redoc_url="/redoc" if settings.docs_enabled else None,
        openapi_url="/openapi.json" if settings.docs_enabled else None,
    )

    engine = engine if engine is not None else create_engine(settings)
    session_maker = create_session_maker(engine)
    repository = UserRepository(session_maker)

    app.state.settings = settings
    app.state.engine = engine
    app.state.user_service = UserService(repository)

    register_error_handlers(app)

    # Added innermost first; SecurityHeadersMiddleware ends up outermost
    app.add_middleware(AuthStubMiddleware)
    app.add_middleware(RecoveryMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    app.include_router(health_router)
    app.include_router(users_router)

    return app
