"""File download endpoint

Streams stored attachments back to the browser. Every attachment URL in an
application projection points here.
"""

import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ..dependencies import get_application_service
from ..services.applications import ApplicationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["Files"])


def content_disposition(filename: str) -> str:
    """Inline disposition with an ASCII fallback and an RFC 5987 UTF-8 name.

    Example:
        >>> content_disposition("report.pdf")
        'inline; filename="report.pdf"; filename*=UTF-8\\'\\'report.pdf'
    """
    fallback = filename.encode("ascii", "replace").decode("ascii").replace('"', "_")
    return f"inline; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


@router.get("/{blob_id}")
async def download_file(
    blob_id: str,
    service: ApplicationService = Depends(get_application_service),
):
    """Stream a stored file

    Raises:
        400: Malformed file id
        404: No such file
        503: Blob store not initialized
    """
    blob, stream = await service.fetch_blob(blob_id)
    logger.debug(f"Streaming blob {blob.id} ({blob.size_bytes} bytes)")

    return StreamingResponse(
        stream,
        media_type=blob.content_type,
        headers={
            "Content-Disposition": content_disposition(blob.original_name),
            "Content-Length": str(blob.size_bytes),
        },
    )
