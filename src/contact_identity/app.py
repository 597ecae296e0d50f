"""FastAPI application for Contact Identity.

Routes:
    POST /api/v1/identify  - resolve an email and/or phone number
    GET  /health           - liveness probe

Errors are returned as ``{"error": {"message": ..., "status": ...}}``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from contact_identity import __version__
from contact_identity.config import Settings, configure_logging, settings as default_settings
from contact_identity.db import create_engine, create_session_factory, init_db
from contact_identity.errors import (
    IdentityError,
    InconsistentState,
    InvalidInput,
    StoreConflict,
)
from contact_identity.resolution import IdentityResolver
from contact_identity.schemas import (
    ContactPayload,
    ErrorDetail,
    ErrorResponse,
    IdentifyRequest,
    IdentifyResponse,
)
from contact_identity.store import ContactStoreProvider, SqlContactStoreProvider

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal server error"

ERROR_STATUS_CODES: dict[type[IdentityError], int] = {
    InvalidInput: 400,
    InconsistentState: 500,
    StoreConflict: 500,
}


def get_status_code_for_error(error: IdentityError) -> int:
    for error_class, status_code in ERROR_STATUS_CODES.items():
        if isinstance(error, error_class):
            return status_code
    return 500


def build_error_response(
    message: str, status_code: int, app_settings: Settings
) -> JSONResponse:
    """Error body; 5xx messages are hidden in production."""
    if status_code >= 500 and app_settings.environment == "production":
        message = INTERNAL_ERROR_MESSAGE
    body = ErrorResponse(error=ErrorDetail(message=message, status=status_code))
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def identity_error_handler(request: Request, exc: IdentityError) -> JSONResponse:
    status_code = get_status_code_for_error(exc)
    if status_code >= 500:
        logger.error(
            "Server error on %s: %s (status=%d)",
            request.url.path,
            exc.message,
            status_code,
            exc_info=exc,
        )
    else:
        logger.warning(
            "Client error on %s: %s (status=%d)", request.url.path, exc.message, status_code
        )
    return build_error_response(exc.message, status_code, request.app.state.settings)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Driver errors carry SQL and bound parameters; the detail stays in the log
    logger.error("Unhandled error on %s", request.url.path, exc_info=exc)
    return build_error_response(INTERNAL_ERROR_MESSAGE, 500, request.app.state.settings)


def get_resolver(request: Request) -> IdentityResolver:
    """Dependency: resolver over the process-scoped store provider."""
    app_settings: Settings = request.app.state.settings
    return IdentityResolver(
        request.app.state.store_provider,
        max_attempts=app_settings.identify_max_attempts,
    )


router = APIRouter(prefix="/api/v1")


@router.post("/identify", response_model=IdentifyResponse)
async def identify(
    body: IdentifyRequest,
    resolver: Annotated[IdentityResolver, Depends(get_resolver)],
) -> IdentifyResponse:
    """Resolve the caller's email/phone to a consolidated contact."""
    result = await resolver.resolve(email=body.email, phone_number=body.phone_number)
    return IdentifyResponse(contact=ContactPayload.from_view(result.contact))


def create_app(
    *,
    store_provider: ContactStoreProvider | None = None,
    app_settings: Settings = default_settings,
) -> FastAPI:
    """Build the application.

    Without ``store_provider`` the lifespan creates the database engine,
    creates tables and disposes the engine on shutdown. Passing a provider
    (e.g. an in-memory one) skips the database entirely.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan handler."""
        configure_logging(app_settings.log_level)
        if store_provider is not None:
            yield
            return

        engine = create_engine(app_settings)
        try:
            await init_db(engine)
            app.state.store_provider = SqlContactStoreProvider(
                create_session_factory(engine),
                isolation_level=app_settings.store_isolation_level,
            )
            yield
        finally:
            await engine.dispose()

    app = FastAPI(
        title="Contact Identity",
        description="Resolve fragmented contact records into one customer identity",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.store_provider = store_provider

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(IdentityError, identity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.include_router(router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "version": __version__}

    return app


app = create_app()
