"""FormRecord SQLAlchemy model

FormRecord stores one submitted application of any variant. Variant-specific
fields live in the opaque `payload` JSON; attachment references live in the
`slots` JSON map (slot name -> list of {"blob_id", "content_type"}).
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlalchemy import Column, DateTime, Index, String, Text, Uuid

from ..domain.forms.variants import FormStatus, FormVariant
from .base import Base, PortableJSONB, utcnow


class FormRecord(Base):
    """Submitted application with embedded attachment references.

    Records are never physically deleted by the attachment subsystem. The
    slot map is replaced as a whole on every mutation (no in-place JSON
    mutation), so SQLAlchemy always detects the change.
    """
    __tablename__ = "form_record"
    __table_args__ = (
        Index("ix_form_record_variant_owner", "variant", "owner_id"),
        Index("ix_form_record_variant_status", "variant", "status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    variant = Column(String(16), nullable=False)
    owner_id = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default=FormStatus.PENDING.value)
    remarks = Column(Text, nullable=True)
    payload = Column(PortableJSONB, nullable=False, default=dict)
    slots = Column(PortableJSONB, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def form_variant(self) -> FormVariant:
        return FormVariant(self.variant)

    @property
    def submitted_at(self) -> datetime:
        # SQLite drops tzinfo on the way back
        created = self.created_at or utcnow()
        return created if created.tzinfo else created.replace(tzinfo=timezone.utc)

    def slot_refs(self, slot: str) -> List[Dict[str, Any]]:
        return list((self.slots or {}).get(slot) or [])

    def slot_blob_ids(self, slot: str) -> List[str]:
        return [ref["blob_id"] for ref in self.slot_refs(slot) if ref.get("blob_id")]

    def to_raw(self) -> Dict[str, Any]:
        """Raw view consumed by variant extractors: payload plus record fields."""
        raw = dict(self.payload or {})
        raw["status"] = self.status
        raw["createdAt"] = self.submitted_at
        return raw
