"""Global FastAPI dependencies.

This module provides:
- get_blob_store: the blob store initialized during application startup
- get_caller: caller identity asserted by the authenticating gateway
- get_application_service: service wired to the request's database session

Authentication happens upstream; the gateway forwards X-Owner-Id, X-Role and
optionally X-Branch headers.
"""

from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .database import get_db
from .domain.blobs.ports.blob_store_port import BlobStorePort
from .domain.errors import StoreUnavailable, ValidationError
from .infrastructure.repositories.form_record_repository import FormRecordRepository
from .observability.request_id import set_owner_id
from .services.applications import ApplicationService
from .services.query import Caller


def get_blob_store(request: Request) -> BlobStorePort:
    """Blob store stored on app.state by the lifespan handler.

    Raises:
        StoreUnavailable: If startup has not created the store
    """
    store = getattr(request.app.state, "blob_store", None)
    if store is None:
        raise StoreUnavailable()
    return store


def get_caller(
    x_owner_id: Optional[str] = Header(None),
    x_role: Optional[str] = Header(None),
    x_branch: Optional[str] = Header(None),
) -> Caller:
    """Build the caller identity from gateway headers.

    Raises:
        ValidationError: If X-Owner-Id is missing or blank

    Example:
        @router.get("/applications")
        async def list_applications(caller: Caller = Depends(get_caller)):
            ...
    """
    if not x_owner_id or not x_owner_id.strip():
        raise ValidationError("X-Owner-Id header is required")

    owner_id = x_owner_id.strip()
    set_owner_id(owner_id)
    return Caller(owner_id=owner_id, role=x_role, branch=x_branch)


def get_application_service(
    store: BlobStorePort = Depends(get_blob_store),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> ApplicationService:
    return ApplicationService(
        store=store,
        repo=FormRecordRepository(db),
        file_base_url=settings.FILE_BASE_URL,
        upload_concurrency=settings.UPLOAD_MAX_CONCURRENCY,
        resolve_concurrency=settings.RESOLVE_MAX_CONCURRENCY,
        max_file_size=settings.MAX_UPLOAD_SIZE_BYTES,
        elevated_roles=settings.elevated_roles,
    )
