"""FastAPI application creation and configuration.

This module creates and configures the FastAPI application instance.
It registers exception handlers, request-id middleware, and routes.

Service Lifecycle:
- Services (delivery, tokens, escalation, scheduler) are built once in
  create_app() and stored in app.state
- The shared httpx.Client used by the email provider is closed at shutdown

Middleware Ordering:
- RequestIDMiddleware is added LAST (add_request_id_middleware) so it runs
  FIRST; every response, including 401s, carries X-Request-ID
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from deadswitch.api.routes import create_api_router
from deadswitch.config import Settings, get_settings
from deadswitch.db.session import get_session_factory
from deadswitch.errors import ApiError, ApiErrorCode
from deadswitch.logging import configure_logging, get_logger
from deadswitch.middleware import RequestIDMiddleware
from deadswitch.responses import (
    api_error_handler,
    error_response,
    http_exception_handler,
    unhandled_exception_handler,
)
from deadswitch.services.bootstrap import Services, build_services

# Configure structured logging at import time
configure_logging()

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close the shared HTTP client on shutdown."""
    yield

    app.state.services.close()
    logger.info("httpx_client_closed")


def create_app(
    settings: Settings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    services: Services | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings override (defaults to get_settings()).
        session_factory: Session factory for the scheduler (defaults to the
            process-wide one).
        services: Prebuilt services (for testing).

    Returns:
        Configured FastAPI application instance.
    """
    settings = settings or get_settings()
    if services is None:
        services = build_services(settings, session_factory or get_session_factory())

    app = FastAPI(
        title="Dead Man's Switch API",
        description="Check-in, reminder and disclosure engine",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.services = services
    app.state.token_service = services.token_service
    app.state.escalation = services.escalation
    app.state.scheduler = services.scheduler
    app.state.retry = services.retry

    # Register exception handlers
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors (bad path or query parameters)."""
        return JSONResponse(
            status_code=400,
            content=error_response(ApiErrorCode.E_INVALID_REQUEST, "Invalid request"),
        )

    # Use router factory to avoid import-time settings loading
    app.include_router(create_api_router())

    logger.info(
        "app_created",
        env=settings.deadswitch_env.value,
        email_provider=services.provider.name,
    )
    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    This should be called AFTER all other middleware is added, so it runs FIRST.
    This ensures every response includes X-Request-ID, including auth failures.

    Args:
        app: The FastAPI application.
        log_requests: Whether to log access entries for each request.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
    logger.info("request_id_middleware_enabled")
