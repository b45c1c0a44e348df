"""Aggregation Normalizer.

Turns records of any variant into one display projection: common fields
resolved through the variant's extractor, plus every attachment reference
resolved to a descriptor (or None when the blob can no longer be found).
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Dict, Iterable, List, Optional, Sequence

from ..domain.attachments.slots import ALL_SLOTS
from ..domain.blobs.ports.blob_store_port import BlobStorePort
from ..domain.errors import NotFound, StorageError
from ..domain.forms.registry import get_variant_spec
from ..observability.metrics import unresolved_references_total

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 8


async def _gather_or_cancel(aws: Iterable[Awaitable]) -> List[Any]:
    """Await concurrently in order; the first error cancels the unfinished rest."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()


@dataclass(frozen=True)
class AttachmentDescriptor:
    """Resolved reference to a stored blob."""
    id: str
    original_name: str
    content_type: str
    size_bytes: int
    url: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "original_name": self.original_name,
            "content_type": self.content_type,
            "size_bytes": self.size_bytes,
            "url": self.url,
        }


@dataclass(frozen=True)
class DisplayProjection:
    """Uniform view of a record, independent of its variant.

    `attachments` has an entry for every slot name in ALL_SLOTS (declaration
    order); undeclared slots are empty lists and unresolvable references are
    None.
    """
    id: str
    variant: str
    owner_id: str
    topic: str
    applicant_name: str
    branch: str
    submitted_at: datetime
    status: str
    remarks: Optional[str]
    attachments: Dict[str, List[Optional[AttachmentDescriptor]]]
    details: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "variant": self.variant,
            "owner_id": self.owner_id,
            "topic": self.topic,
            "applicant_name": self.applicant_name,
            "branch": self.branch,
            "submitted_at": self.submitted_at.isoformat(),
            "status": self.status,
            "remarks": self.remarks,
            "attachments": {
                slot: [d.to_dict() if d is not None else None for d in descriptors]
                for slot, descriptors in self.attachments.items()
            },
            "details": self.details,
        }


class AggregationNormalizer:
    """Builds display projections.

    Blob metadata lookups for a record (or a whole listing) run concurrently,
    bounded by `max_concurrency`. StoreUnavailable propagates and cancels the
    lookups still pending; any other lookup failure degrades that one entry to
    None.
    """

    def __init__(
        self,
        store: BlobStorePort,
        file_base_url: str = "/api/v1/files",
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        self.store = store
        self.file_base_url = file_base_url.rstrip("/")
        self.max_concurrency = max(1, max_concurrency)

    def url_for(self, blob_id: str) -> str:
        return f"{self.file_base_url}/{blob_id}"

    async def normalize(self, record, branch_hint: Optional[str] = None) -> DisplayProjection:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        return await self._normalize(record, branch_hint, semaphore)

    async def normalize_many(self, records: Sequence, branch_hint: Optional[str] = None) -> List[DisplayProjection]:
        """Normalize a listing, preserving the input order."""
        semaphore = asyncio.Semaphore(self.max_concurrency)
        return await _gather_or_cancel(
            self._normalize(record, branch_hint, semaphore) for record in records
        )

    async def _normalize(self, record, branch_hint, semaphore: asyncio.Semaphore) -> DisplayProjection:
        spec = get_variant_spec(record.form_variant)
        common = spec.extract(record.to_raw(), branch_hint)

        pending = [
            (slot, ref.get("blob_id"))
            for slot in ALL_SLOTS if spec.has_slot(slot)
            for ref in record.slot_refs(slot)
        ]
        resolved = await _gather_or_cancel(
            self._resolve(blob_id, record, semaphore) for _, blob_id in pending
        )

        attachments: Dict[str, List[Optional[AttachmentDescriptor]]] = {slot: [] for slot in ALL_SLOTS}
        for (slot, _), descriptor in zip(pending, resolved):
            attachments[slot].append(descriptor)

        return DisplayProjection(
            id=str(record.id),
            variant=record.variant,
            owner_id=record.owner_id,
            topic=common.topic,
            applicant_name=common.applicant_name,
            branch=common.branch,
            submitted_at=common.submitted_at,
            status=common.status.value,
            remarks=record.remarks,
            attachments=attachments,
            details=dict(record.payload or {}),
        )

    async def _resolve(self, blob_id: Optional[str], record, semaphore) -> Optional[AttachmentDescriptor]:
        if not blob_id:
            return None
        try:
            async with semaphore:
                blob = await self.store.head(blob_id)
        except (NotFound, StorageError) as e:
            unresolved_references_total.labels(variant=record.variant).inc()
            logger.warning(f"Record {record.id} references unresolvable blob {blob_id}: {e}")
            return None

        return AttachmentDescriptor(
            id=blob.id,
            original_name=blob.original_name,
            content_type=blob.content_type,
            size_bytes=blob.size_bytes,
            url=self.url_for(blob.id),
        )
