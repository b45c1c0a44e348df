"""Observability API endpoints.

Provides metrics, health checks, and readiness probes for monitoring.
"""

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.orm import Session

from ..database import get_db
from .health import (
    HealthStatus,
    check_blob_store_health,
    check_database_health,
    get_overall_health,
)
from .logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Observability"])


@router.get("/metrics", include_in_schema=False)
def metrics():
    """Expose Prometheus metrics in text exposition format."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@router.get(
    "/health",
    summary="Health check endpoint",
    description="Returns health status of the database and the blob store",
)
def health_check(request: Request, db: Session = Depends(get_db)):
    """Check health of all system components.

    Returns 200 OK if no component is unhealthy, 503 otherwise.
    """
    components = {
        "database": check_database_health(db),
        "blob_store": check_blob_store_health(getattr(request.app.state, "blob_store", None)),
    }
    overall_status = get_overall_health(components)

    return JSONResponse(
        content={
            "status": overall_status.value,
            "components": {name: comp.to_dict() for name, comp in components.items()},
        },
        status_code=200 if overall_status != HealthStatus.UNHEALTHY else 503,
    )


@router.get(
    "/ready",
    summary="Readiness check endpoint",
    description="Returns 503 until the blob store has been initialized",
)
def readiness_check(request: Request):
    """Check if application is ready to serve traffic.

    Uploads and downloads fail until the blob store is initialized, so the
    probe reports not ready until then.
    """
    store_health = check_blob_store_health(getattr(request.app.state, "blob_store", None))

    if store_health.status == HealthStatus.HEALTHY:
        return {
            "status": "ready",
            "message": "Application is ready to serve traffic"
        }

    logger.warning(f"Readiness probe failed: {store_health.message}")
    return JSONResponse(
        content={
            "status": "not_ready",
            "message": store_health.message
        },
        status_code=503
    )
