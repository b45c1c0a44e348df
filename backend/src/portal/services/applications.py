"""Application service - orchestrates the attachment lifecycle.

Entry points used by the HTTP layer. Each mutation follows the same order:
validate everything, upload inside an UploadTransaction, write the record,
commit the transaction, then delete superseded blobs.
"""

import logging
from collections import OrderedDict
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple

from ..domain.attachments.slot_manager import IncomingFile, SlotManager
from ..domain.attachments.validation import check_attachment
from ..domain.blobs.ports.blob_store_port import BlobObject, BlobStorePort, is_valid_blob_id
from ..domain.errors import StoreUnavailable, ValidationError
from ..domain.forms.registry import get_variant_spec
from ..domain.forms.variants import FormStatus, FormVariant, parse_status
from ..infrastructure.repositories.form_record_repository import FormRecordRepository
from ..models.form_record import FormRecord
from ..observability.metrics import submissions_total
from .normalizer import AggregationNormalizer, DisplayProjection
from .query import Caller, ScopedQuery
from .upload_transaction import PendingUpload, UploadCoordinator

logger = logging.getLogger(__name__)


def parse_status_filter(value: Optional[str]) -> Optional[FormStatus]:
    """Parse the ?status= filter. Blank means no filter.

    Raises:
        ValidationError: If a non-blank value names no known status
    """
    if value is None or not value.strip():
        return None
    status = parse_status(value)
    if status is None:
        raise ValidationError(
            f"Unknown status '{value}'",
            details={"allowed": [s.value for s in FormStatus] + ["accepted", "declined"]},
        )
    return status


class ApplicationService:
    """Submission, slot replacement, retrieval and review of applications.

    Example:
        service = ApplicationService(store, FormRecordRepository(db))
        record = await service.submit_with_attachments(
            FormVariant.UG_1, "student-42", {"projectTitle": "Drone"}, files
        )
    """

    def __init__(
        self,
        store: BlobStorePort,
        repo: FormRecordRepository,
        file_base_url: str = "/api/v1/files",
        upload_concurrency: int = 8,
        resolve_concurrency: int = 8,
        max_file_size: Optional[int] = None,
        elevated_roles: Optional[Sequence[str]] = None,
    ):
        self.store = store
        self.repo = repo
        self.max_file_size = max_file_size
        self.coordinator = UploadCoordinator(store, upload_concurrency)
        self.slots = SlotManager(store)
        self.normalizer = AggregationNormalizer(store, file_base_url, resolve_concurrency)
        self.query = ScopedQuery(repo, elevated_roles)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def submit_with_attachments(
        self,
        variant: FormVariant,
        owner_id: str,
        payload: Mapping[str, Any],
        files: Sequence[PendingUpload],
    ) -> FormRecord:
        """Create a record together with its initial attachments.

        Either the record exists and references exactly the uploaded blobs,
        or no record exists and every uploaded blob has been deleted.

        Raises:
            StoreUnavailable: Blob store not initialized (nothing attempted)
            ValidationError: Bad payload or files (nothing uploaded)
            UploadFailure: A file failed to upload (batch rolled back)
            PersistenceFailure: Record insert failed (batch rolled back)
        """
        self._require_store()
        if not owner_id:
            raise ValidationError("Owner id is required")
        if not isinstance(payload, Mapping):
            raise ValidationError("Payload must be a JSON object")

        spec = get_variant_spec(variant)
        files = self._prepare(files)
        by_slot = self._group(files)
        self.slots.validate_submission(
            spec, {slot: [self._incoming(f) for f in batch] for slot, batch in by_slot.items()}
        )

        try:
            async with self.coordinator.begin() as txn:
                uploaded = await txn.upload_all(files)
                refs_by_slot: Dict[str, List[Dict[str, str]]] = OrderedDict()
                for item in uploaded:
                    refs_by_slot.setdefault(item.slot, []).append(item.to_ref())

                transition = self.slots.plan_submission(spec, refs_by_slot)
                record = self.repo.add(variant, owner_id, dict(payload), transition.slots)
                txn.commit()
        except Exception:
            submissions_total.labels(variant=variant.value, operation="submit", status="error").inc()
            raise

        submissions_total.labels(variant=variant.value, operation="submit", status="success").inc()
        logger.info(f"Created {variant.value} application {record.id} with {len(files)} attachment(s)")
        return record

    async def replace_slot(
        self,
        record_id,
        slot: str,
        files: Sequence[PendingUpload],
        clear: bool,
        caller: Caller,
    ) -> DisplayProjection:
        """Upload files into one slot of an existing record.

        Superseded blobs (the slot's old contents, or its exclusive partner's)
        are deleted only after the record write succeeded.

        Raises:
            StoreUnavailable, NotFound, ValidationError, UploadFailure, PersistenceFailure
        """
        self._require_store()
        record = self.query.fetch_one(record_id, caller)
        variant = record.variant
        spec = get_variant_spec(record.form_variant)

        files = self._prepare([self._retarget(f, slot) for f in files])
        self.slots.validate(spec, record.slots, slot, [self._incoming(f) for f in files], clear)

        if not files and not clear:
            logger.info(f"No files for slot '{slot}' of application {record.id}, nothing to do")
            return await self.normalizer.normalize(record)

        try:
            async with self.coordinator.begin() as txn:
                uploaded = await txn.upload_all(files)
                transition = self.slots.plan(
                    spec, record.slots, slot, [item.to_ref() for item in uploaded], clear
                )
                if not transition.is_noop:
                    transition.apply(record)
                    self.repo.save(record)
                txn.commit()
        except Exception:
            submissions_total.labels(variant=variant, operation="replace_slot", status="error").inc()
            raise

        submissions_total.labels(variant=variant, operation="replace_slot", status="success").inc()
        logger.info(
            f"Updated slot '{slot}' of application {record.id}: "
            f"{len(files)} uploaded, {len(transition.superseded)} superseded"
        )
        await self.slots.execute_deletions(transition)
        return await self.normalizer.normalize(record)

    def update_status(
        self,
        record_id,
        status: str,
        remarks: Optional[str],
        caller: Caller,
    ) -> FormRecord:
        """Set the review status (and optionally remarks) of a record.

        Raises:
            ValidationError: If the status is not recognized
            NotFound: If the record is missing or outside the caller's scope
        """
        new_status = parse_status(status)
        if new_status is None:
            raise ValidationError(
                f"Invalid status '{status}'",
                details={"allowed": [s.value for s in FormStatus]},
            )

        record = self.query.fetch_one(record_id, caller)
        record.status = new_status.value
        if remarks is not None:
            record.remarks = remarks
        self.repo.save(record)

        logger.info(f"Application {record.id} set to {new_status.value} by {caller.role} {caller.owner_id}")
        return record

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch_blob(self, blob_id: str) -> Tuple[BlobObject, AsyncIterator[bytes]]:
        """Open a stored blob for streaming.

        Raises:
            ValidationError: Malformed blob id
            StoreUnavailable: Blob store not initialized
            NotFound: No such blob
        """
        if not is_valid_blob_id(blob_id):
            raise ValidationError(f"Malformed file id '{blob_id}'")
        self._require_store()
        return await self.store.get(blob_id)

    async def list_by_owner(
        self,
        owner_id: str,
        status: Optional[str] = None,
        branch_hint: Optional[str] = None,
    ) -> List[DisplayProjection]:
        records = self.query.fetch_for_owner(owner_id, parse_status_filter(status))
        return await self.normalizer.normalize_many(records, branch_hint)

    async def list_all(self, status: Optional[str] = None) -> List[DisplayProjection]:
        records = self.query.fetch_for_owner(None, parse_status_filter(status))
        return await self.normalizer.normalize_many(records)

    async def list_applications(self, caller: Caller, status: Optional[str] = None) -> List[DisplayProjection]:
        """Listing scoped by the caller's role."""
        if self.query.is_elevated(caller):
            return await self.list_all(status)
        return await self.list_by_owner(caller.owner_id, status, caller.branch)

    async def get_application(self, record_id, caller: Caller) -> DisplayProjection:
        record = self.query.fetch_one(record_id, caller)
        branch_hint = caller.branch if record.owner_id == caller.owner_id else None
        return await self.normalizer.normalize(record, branch_hint)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_store(self) -> None:
        if not self.store.is_ready:
            raise StoreUnavailable()

    def _prepare(self, files: Sequence[PendingUpload]) -> List[PendingUpload]:
        """Sanitize names and enforce per-file limits before any upload."""
        prepared = []
        for item in files:
            name = check_attachment(item.slot, item.name, item.size_bytes, self.max_file_size)
            prepared.append(PendingUpload(
                slot=item.slot,
                name=name,
                content_type=(item.content_type or "application/octet-stream").lower(),
                data=item.data,
            ))
        return prepared

    @staticmethod
    def _retarget(item: PendingUpload, slot: str) -> PendingUpload:
        if item.slot == slot:
            return item
        return PendingUpload(slot=slot, name=item.name, content_type=item.content_type, data=item.data)

    @staticmethod
    def _group(files: Sequence[PendingUpload]) -> Dict[str, List[PendingUpload]]:
        grouped: Dict[str, List[PendingUpload]] = OrderedDict()
        for item in files:
            grouped.setdefault(item.slot, []).append(item)
        return grouped

    @staticmethod
    def _incoming(item: PendingUpload) -> IncomingFile:
        return IncomingFile(name=item.name, content_type=item.content_type, size_bytes=item.size_bytes)
