"""Observability module for the application portal.

Provides structured logging, metrics, request correlation and health checks.
"""

from .logging_config import configure_logging, get_logger
from .metrics import (
    blob_upload_bytes,
    blob_upload_failures_total,
    blobs_uploaded_total,
    compensating_deletes_total,
    submissions_total,
    unresolved_references_total,
    upload_rollbacks_total,
)
from .request_id import (
    generate_request_id,
    get_owner_id,
    get_request_id,
    request_id_var,
    set_owner_id,
    set_request_id,
)
from .health import ComponentHealth, HealthStatus
from .middleware import RequestIDMiddleware

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    # Metrics
    "blob_upload_bytes",
    "blob_upload_failures_total",
    "blobs_uploaded_total",
    "compensating_deletes_total",
    "submissions_total",
    "unresolved_references_total",
    "upload_rollbacks_total",
    # Request context
    "request_id_var",
    "get_request_id",
    "set_request_id",
    "generate_request_id",
    "get_owner_id",
    "set_owner_id",
    # Health
    "HealthStatus",
    "ComponentHealth",
    # Middleware
    "RequestIDMiddleware",
]
