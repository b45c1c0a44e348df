"""Application API endpoints

Submission with attachments, slot replacement, listing, retrieval and review
of applications of every form variant.

Multipart conventions:
- POST /applications/{variant}: a `payload` field holding the form as a JSON
  string plus one file field per attachment, named after its slot
  (e.g. -F "guideSignature=@sig.png" -F "documents=@a.pdf" -F "documents=@b.pdf")
- PUT /applications/{id}/slots/{slot}: file fields (`files` or the slot name)
  and an optional `clear` flag
"""

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from starlette.datastructures import FormData, UploadFile

from ..dependencies import get_application_service, get_caller
from ..domain.attachments.validation import MAX_FILE_SIZE
from ..domain.errors import ValidationError
from ..domain.forms.variants import parse_variant
from ..services.applications import ApplicationService
from ..services.query import Caller
from ..services.upload_transaction import PendingUpload
from .schemas import (
    ApplicationCreatedResponse,
    ApplicationResponse,
    ErrorResponse,
    StatusUpdateRequest,
    StatusUpdateResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/applications", tags=["Applications"])

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _parse_payload(raw: Any) -> Dict[str, Any]:
    """Decode the `payload` form field. Missing payload means an empty form."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, UploadFile):
        raise ValidationError("Field 'payload' must be a JSON string, not a file")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Field 'payload' is not valid JSON: {e.msg}")
    if not isinstance(payload, dict):
        raise ValidationError("Field 'payload' must be a JSON object")
    return payload


def _too_large(slot: str, upload: UploadFile, limit: int) -> ValidationError:
    return ValidationError(
        f"File exceeds maximum size of {limit} bytes",
        details={"slot": slot, "file": upload.filename},
    )


async def _collect_files(
    form: FormData,
    slot: Optional[str] = None,
    max_size: Optional[int] = None,
) -> List[PendingUpload]:
    """Read every uploaded file of a multipart form.

    Files over the size limit are rejected before they are buffered: the
    declared size is checked first and reads never go past limit + 1 bytes.

    Args:
        form: Parsed multipart form
        slot: Force every file into this slot; otherwise the field name is the slot
        max_size: Per-file limit in bytes (MAX_FILE_SIZE when None)
    """
    limit = MAX_FILE_SIZE if max_size is None else max_size
    files = []
    for field_name, value in form.multi_items():
        if not isinstance(value, UploadFile):
            continue
        target = slot or field_name
        if value.size is not None and value.size > limit:
            raise _too_large(target, value, limit)
        data = await value.read(limit + 1)
        if len(data) > limit:
            raise _too_large(target, value, limit)
        # browsers post empty file inputs with no filename
        if not value.filename and not data:
            continue
        files.append(PendingUpload(
            slot=target,
            name=value.filename or "",
            content_type=value.content_type or "application/octet-stream",
            data=data,
        ))
    return files


@router.post(
    "/{variant}",
    response_model=ApplicationCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_ERROR_RESPONSES,
)
async def submit_application(
    variant: str,
    request: Request,
    caller: Caller = Depends(get_caller),
    service: ApplicationService = Depends(get_application_service),
):
    """Submit a new application together with its attachments

    All files are validated before any upload. If an upload or the record
    write fails, every blob written by this request is deleted again.

    Example:
        curl -X POST http://localhost:8000/api/v1/applications/UG_1 \\
             -H "X-Owner-Id: 2021-cs-042" \\
             -F 'payload={"projectTitle": "Line follower"}' \\
             -F "documents=@proposal.pdf" \\
             -F "guideSignature=@guide.png"
    """
    form_variant = parse_variant(variant)
    if form_variant is None:
        raise ValidationError(f"Unknown form variant '{variant}'")

    form = await request.form()
    payload = _parse_payload(form.get("payload"))
    files = await _collect_files(form, max_size=service.max_file_size)

    record = await service.submit_with_attachments(form_variant, caller.owner_id, payload, files)
    return ApplicationCreatedResponse(id=str(record.id))


@router.put(
    "/{record_id}/slots/{slot}",
    response_model=ApplicationResponse,
    responses=_ERROR_RESPONSES,
)
async def replace_slot(
    record_id: str,
    slot: str,
    request: Request,
    caller: Caller = Depends(get_caller),
    service: ApplicationService = Depends(get_application_service),
):
    """Upload files into one attachment slot of an existing application

    Without `clear`, documents are appended to multi-file slots. Single
    slots, archives, and uploads with `clear=true` replace the slot. Sending
    no files with `clear=true` empties the slot.
    """
    form = await request.form()
    clear = str(form.get("clear") or "").strip().lower() in _TRUE_VALUES
    files = await _collect_files(form, slot=slot, max_size=service.max_file_size)

    projection = await service.replace_slot(record_id, slot, files, clear, caller)
    return projection.to_dict()


@router.get("", response_model=List[ApplicationResponse], responses=_ERROR_RESPONSES)
async def list_applications(
    status_filter: Optional[str] = Query(None, alias="status", description="pending | approved | rejected"),
    caller: Caller = Depends(get_caller),
    service: ApplicationService = Depends(get_application_service),
):
    """List applications of every variant, newest first

    Elevated roles see every owner's applications; everyone else sees their own.
    """
    projections = await service.list_applications(caller, status_filter)
    return [p.to_dict() for p in projections]


@router.get("/{record_id}", response_model=ApplicationResponse, responses=_ERROR_RESPONSES)
async def get_application(
    record_id: str,
    caller: Caller = Depends(get_caller),
    service: ApplicationService = Depends(get_application_service),
):
    projection = await service.get_application(record_id, caller)
    return projection.to_dict()


@router.put("/{record_id}/status", response_model=StatusUpdateResponse, responses=_ERROR_RESPONSES)
async def update_status(
    record_id: str,
    body: StatusUpdateRequest,
    caller: Caller = Depends(get_caller),
    service: ApplicationService = Depends(get_application_service),
):
    """Record a review decision (pending, approved or rejected) with optional remarks"""
    record = service.update_status(record_id, body.status, body.remarks, caller)
    return StatusUpdateResponse(id=str(record.id), status=record.status, remarks=record.remarks)
