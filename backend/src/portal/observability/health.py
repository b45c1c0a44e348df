"""Health check utilities for the portal.

Checks the two components a request depends on: the record database and the
blob store.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from ..domain.blobs.ports.blob_store_port import BlobStorePort
from .logging_config import get_logger

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    """Health check status enum."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


@dataclass
class ComponentHealth:
    """Health status for a single component."""
    status: HealthStatus
    message: Optional[str] = None
    latency_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, object]:
        return {"status": self.status.value, "message": self.message, "latency_ms": self.latency_ms}


def check_database_health(db: Session) -> ComponentHealth:
    """Run SELECT 1 against the record database."""
    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        latency_ms = (time.time() - start) * 1000

        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message="Database connection OK",
            latency_ms=round(latency_ms, 2)
        )
    except Exception as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            message=f"Database error: {str(e)}"
        )


def check_blob_store_health(store: Optional[BlobStorePort]) -> ComponentHealth:
    """Report whether the blob store has been initialized.

    A store that exists but has not finished initialize() is UNHEALTHY:
    every upload or download would fail with StoreUnavailable.
    """
    if store is None:
        return ComponentHealth(status=HealthStatus.UNHEALTHY, message="Blob store not configured")
    if not store.is_ready:
        return ComponentHealth(status=HealthStatus.UNHEALTHY, message="Blob store not initialized")
    return ComponentHealth(status=HealthStatus.HEALTHY, message="Blob store ready")


def get_overall_health(components: Dict[str, ComponentHealth]) -> HealthStatus:
    """Determine overall health from component statuses.

    Example:
        >>> get_overall_health({"db": ComponentHealth(HealthStatus.HEALTHY)})
        <HealthStatus.HEALTHY: 'healthy'>
    """
    if all(c.status == HealthStatus.HEALTHY for c in components.values()):
        return HealthStatus.HEALTHY

    if any(c.status == HealthStatus.UNHEALTHY for c in components.values()):
        return HealthStatus.UNHEALTHY

    return HealthStatus.DEGRADED
