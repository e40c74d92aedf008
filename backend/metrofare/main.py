"""FastAPI application for the metro fare system."""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from metrofare.api.endpoints import router
from metrofare.config import settings
from metrofare.context import AppContext
from metrofare.exceptions import (
    AccountLocked,
    AlreadyCancelled,
    CapacityExceeded,
    DuplicateBooking,
    InsufficientFunds,
    InvalidRoute,
    MetroError,
    PersistenceFailure,
    TicketNotFound,
    UnknownRider,
)
from metrofare.logging import configure_logging

logger = structlog.get_logger(__name__)

ERROR_STATUS_CODES = {
    InvalidRoute: 400,
    InsufficientFunds: 402,
    DuplicateBooking: 409,
    CapacityExceeded: 409,
    AlreadyCancelled: 409,
    AccountLocked: 423,
    PersistenceFailure: 503,
    UnknownRider: 404,
    TicketNotFound: 404,
}


async def metro_error_handler(request: Request, exc: MetroError) -> JSONResponse:
    """Report a domain error to the caller so they can retry with other inputs."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES.items() if isinstance(exc, error_type)),
        400
    )
    content = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, InsufficientFunds):
        content["shortfall"] = exc.shortfall
    if isinstance(exc, AccountLocked):
        content["retry_after"] = exc.retry_after
    if status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=status_code, content=content)


@asynccontextmanager
async def lifespan(app: FastAPI):
    owns_context = getattr(app.state, "context", None) is None
    if owns_context:
        app.state.context = AppContext.from_database_url(settings.DATABASE_URL)
    yield
    if owns_context:
        app.state.context.close()
        app.state.context = None


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        context: Pre-built context (tests); when omitted one is created on start-up
    """
    configure_logging(log_level=settings.LOG_LEVEL)
    app = FastAPI(
        title=settings.API_TITLE,
        version=settings.API_VERSION,
        description=settings.API_DESCRIPTION,
        lifespan=lifespan
    )
    app.state.context = context
    app.add_exception_handler(MetroError, metro_error_handler)
    app.include_router(router)

    @app.get("/")
    def root():
        return {
            "message": settings.API_TITLE,
            "version": settings.API_VERSION,
            "docs": "/docs"
        }

    return app


app = create_app()
