"""Error taxonomy for the attachment lifecycle.

Every failure the core reports to its callers is one of these types, so the
HTTP layer can map them to status codes without inspecting messages.

- ValidationError: malformed input, raised before any side effect
- StoreUnavailable: blob store not initialized, no partial work performed
- UploadFailure: one or more blob writes failed, transaction rolled back
- NotFound: record or blob absent (downgraded to a warning in cleanup paths)
- PersistenceFailure: record write failed after uploads succeeded
- StorageError: unexpected object storage backend failure
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


class PortalError(Exception):
    """Base exception for the portal core."""

    code = "portal_error"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationError(PortalError):
    code = "validation_error"


class StoreUnavailable(PortalError):
    code = "store_unavailable"

    def __init__(self, message: str = "Blob store is not initialized"):
        super().__init__(message)


class NotFound(PortalError):
    code = "not_found"


class StorageError(PortalError):
    code = "storage_error"


class PersistenceFailure(PortalError):
    code = "persistence_failure"


@dataclass
class FileUploadError:
    """Per-file detail of a failed blob write."""
    slot: str
    name: str
    cause: str

    def to_dict(self) -> Dict[str, str]:
        return {"slot": self.slot, "name": self.name, "cause": self.cause}


class UploadFailure(PortalError):
    code = "upload_failure"

    def __init__(self, failures: List[FileUploadError]):
        self.failures = failures
        names = ", ".join(f.name for f in failures)
        super().__init__(
            f"{len(failures)} file(s) failed to upload: {names}",
            details=[f.to_dict() for f in failures],
        )
