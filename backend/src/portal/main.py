"""Application Portal Backend - Main FastAPI Application

Student application forms (UG, PG and research variants) with file
attachments kept in S3-compatible object storage.

This module creates and configures the main FastAPI application, including:
- Blob store initialization during startup
- Middleware (request ID correlation, CORS)
- Exception handlers mapping portal errors to HTTP status codes
- Health and observability endpoints
"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .applications.router import router as applications_router
from .config import get_settings
from .database import init_db
from .domain.errors import (
    NotFound,
    PersistenceFailure,
    PortalError,
    StorageError,
    StoreUnavailable,
    UploadFailure,
    ValidationError,
)
from .files.router import router as files_router
from .infrastructure.storage.s3_blob_store import S3BlobStore
from .infrastructure.storage.storage_config import load_storage_config
from .observability.logging_config import configure_logging
from .observability.middleware import RequestIDMiddleware
from .observability.router import router as observability_router

settings = get_settings()

configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)

logger = logging.getLogger(__name__)

_PRODUCTION = settings.ENVIRONMENT == "production"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    - Startup: create tables, build and initialize the blob store
    - Shutdown: log only; boto3 clients need no explicit close

    A store that fails to initialize stays on app.state un-ready: requests
    touching attachments answer 503 and /ready reports not ready.
    """
    logger.info("Application portal starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    init_db()

    store = S3BlobStore.from_config(load_storage_config(settings))
    app.state.blob_store = store
    try:
        await store.initialize()
    except StorageError as e:
        logger.error(f"Blob store initialization failed, attachments unavailable: {e.message}")

    yield

    logger.info("Application portal shutting down...")


app = FastAPI(
    title="Application Portal API",
    description="Student application forms with attachment lifecycle management",
    version="0.1.0",
    docs_url=None if _PRODUCTION else "/docs",
    redoc_url=None if _PRODUCTION else "/redoc",
    openapi_url=None if _PRODUCTION else "/openapi.json",
    lifespan=lifespan,
)


# =============================================================================
# MIDDLEWARE CONFIGURATION
# =============================================================================

app.add_middleware(RequestIDMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "Content-Disposition"],
)


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

ERROR_STATUS = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFound: status.HTTP_404_NOT_FOUND,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    UploadFailure: status.HTTP_500_INTERNAL_SERVER_ERROR,
    PersistenceFailure: status.HTTP_500_INTERNAL_SERVER_ERROR,
    StorageError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(exc: PortalError) -> int:
    for error_type in type(exc).__mro__:
        if error_type in ERROR_STATUS:
            return ERROR_STATUS[error_type]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(PortalError)
async def portal_exception_handler(request: Request, exc: PortalError) -> JSONResponse:
    """Map portal errors to status codes with a structured body.

    Client errors are logged as warnings, server-side failures as errors.
    """
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content=exc.to_dict(),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors as 400 like every other bad input."""
    logger.warning(
        f"Validation error on {request.method} {request.url.path}",
        extra={"errors": exc.errors()}
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "validation_error",
            "message": "Request validation failed",
            "details": jsonable_errors(exc),
        },
    )


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(
    request: Request,
    exc: SQLAlchemyError
) -> JSONResponse:
    """Handle database errors.

    Logs the full error but returns a generic message to prevent
    information leakage.
    """
    logger.error(
        f"Database error on {request.method} {request.url.path}",
        exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "persistence_failure",
            "message": "A database error occurred. Please try again later.",
            "details": None,
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle uncaught exceptions without exposing internals."""
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}",
        exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred. Please try again later.",
            "details": None,
        },
    )


# =============================================================================
# ROUTER REGISTRATION
# =============================================================================

app.include_router(observability_router)
app.include_router(applications_router, prefix="/api/v1")
app.include_router(files_router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
async def root() -> dict[str, Any]:
    """Root endpoint - API information."""
    return {
        "name": "Application Portal API",
        "version": "0.1.0",
        "status": "running",
        "docs": None if _PRODUCTION else "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "portal.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )
