"""Application API request/response schemas"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AttachmentResponse(BaseModel):
    """Resolved attachment reference"""
    id: str = Field(..., description="Blob id")
    original_name: str = Field(..., description="File name supplied by the uploader")
    content_type: str = Field(..., description="MIME type")
    size_bytes: int = Field(..., description="File size in bytes")
    url: str = Field(..., description="Download URL")


class ApplicationResponse(BaseModel):
    """Display projection of an application, identical for every variant"""
    id: str
    variant: str
    owner_id: str
    topic: str = Field(..., description="Project, paper or event title")
    applicant_name: str
    branch: str
    submitted_at: datetime
    status: str = Field(..., description="pending | approved | rejected")
    remarks: Optional[str] = None
    attachments: Dict[str, List[Optional[AttachmentResponse]]] = Field(
        ..., description="Every slot name; unresolvable references are null"
    )
    details: Dict[str, Any] = Field(default_factory=dict, description="Variant-specific payload")


class ApplicationCreatedResponse(BaseModel):
    """Response for a new submission"""
    id: str = Field(..., description="Id of the created application")


class StatusUpdateRequest(BaseModel):
    """Review decision"""
    model_config = ConfigDict(str_strip_whitespace=True)

    status: str = Field(..., min_length=1, description="pending | approved | rejected (accepted/declined accepted)")
    remarks: Optional[str] = Field(None, max_length=5000)


class StatusUpdateResponse(BaseModel):
    id: str
    status: str
    remarks: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error body returned for every PortalError"""
    error: str = Field(..., description="Error code (e.g., validation_error, upload_failure)")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Any] = Field(None, description="Per-file failures or offending fields")
