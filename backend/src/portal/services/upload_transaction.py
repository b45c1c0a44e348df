"""Upload Transaction Coordinator.

Uploads a batch of files concurrently and guarantees that a failed or
abandoned operation leaves no orphaned blobs behind.

Usage:
    async with coordinator.begin() as txn:
        uploaded = await txn.upload_all(files)
        ...persist the record...
        txn.commit()

Leaving the block without commit(), or with any exception (including
asyncio.CancelledError), deletes every blob the transaction created.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..domain.blobs.ports.blob_store_port import BlobObject, BlobStorePort
from ..domain.errors import (
    FileUploadError,
    PortalError,
    StoreUnavailable,
    UploadFailure,
)
from ..observability.metrics import (
    blob_upload_bytes,
    blob_upload_failures_total,
    blobs_uploaded_total,
    compensating_deletes_total,
    upload_rollbacks_total,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 8


@dataclass(frozen=True)
class PendingUpload:
    """A file received from the client, not yet in the blob store."""
    slot: str
    name: str
    content_type: str
    data: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class UploadedBlob:
    """A file that now exists in the blob store."""
    slot: str
    blob: BlobObject

    @property
    def blob_id(self) -> str:
        return self.blob.id

    def to_ref(self) -> Dict[str, str]:
        """Reference stored in the record's slot map."""
        return {"blob_id": self.blob.id, "content_type": self.blob.content_type}


class UploadTransaction:
    """Tracks blobs created during one operation.

    States: open -> committed | rolled_back. Both end states are terminal;
    rollback() and commit() are idempotent.
    """

    def __init__(self, store: BlobStorePort, max_concurrency: int = DEFAULT_MAX_CONCURRENCY):
        self.store = store
        self.max_concurrency = max(1, max_concurrency)
        self.blob_ids: List[str] = []
        self.committed = False
        self.rolled_back = False

    @property
    def is_open(self) -> bool:
        return not (self.committed or self.rolled_back)

    async def __aenter__(self) -> "UploadTransaction":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if self.committed:
            return False

        if exc_type is None:
            reason = "abandoned"
            logger.warning(f"Upload transaction left without commit, rolling back {len(self.blob_ids)} blob(s)")
        elif issubclass(exc_type, asyncio.CancelledError):
            reason = "cancelled"
        elif issubclass(exc_type, UploadFailure):
            reason = "upload_failure"
        elif isinstance(exc, PortalError):
            reason = exc.code
        else:
            reason = "error"

        # Rollback must finish even when the surrounding task is cancelled
        cleanup = asyncio.ensure_future(self.rollback(reason=reason))
        try:
            await asyncio.shield(cleanup)
        except asyncio.CancelledError:
            await cleanup
            raise
        return False

    async def upload_all(self, files: Sequence[PendingUpload]) -> List[UploadedBlob]:
        """Upload every file concurrently.

        Concurrency is bounded by min(len(files), max_concurrency). All
        attempts run to completion before a failure is reported; ids of
        successful writes are recorded either way so rollback can find them.

        Returns:
            Uploaded blobs in the same order as `files`

        Raises:
            StoreUnavailable: If the store is not initialized (nothing attempted)
            UploadFailure: If any write failed, with one entry per failed file
        """
        if not self.is_open:
            raise RuntimeError("Upload transaction is already closed")
        if not files:
            return []
        if not self.store.is_ready:
            raise StoreUnavailable()

        semaphore = asyncio.Semaphore(min(len(files), self.max_concurrency))

        async def _put(pending: PendingUpload) -> UploadedBlob:
            async with semaphore:
                write = asyncio.ensure_future(
                    self.store.put(pending.name, pending.content_type, pending.data)
                )
                try:
                    blob = await asyncio.shield(write)
                except asyncio.CancelledError:
                    # the write may still land; record it so rollback removes it
                    try:
                        blob = await write
                    except Exception:
                        raise asyncio.CancelledError()
                    self.blob_ids.append(blob.id)
                    raise
            self.blob_ids.append(blob.id)
            blobs_uploaded_total.labels(slot=pending.slot).inc()
            blob_upload_bytes.observe(blob.size_bytes)
            return UploadedBlob(slot=pending.slot, blob=blob)

        results = await asyncio.gather(*(_put(f) for f in files), return_exceptions=True)

        uploaded: List[UploadedBlob] = []
        failures: List[FileUploadError] = []
        for pending, result in zip(files, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                blob_upload_failures_total.labels(slot=pending.slot).inc()
                logger.error(f"Upload of '{pending.name}' into slot '{pending.slot}' failed: {result}")
                failures.append(FileUploadError(slot=pending.slot, name=pending.name, cause=str(result)))
            else:
                uploaded.append(result)

        if failures:
            raise UploadFailure(failures)

        logger.info(f"Uploaded {len(uploaded)} blob(s)")
        return uploaded

    def commit(self) -> None:
        """Mark the transaction successful. Created blobs stay in the store."""
        if self.rolled_back:
            raise RuntimeError("Cannot commit a rolled back upload transaction")
        self.committed = True

    async def rollback(self, reason: Optional[str] = None) -> int:
        """Delete every blob this transaction created, best effort.

        Each failed delete is logged and the remaining ones still run.

        Returns:
            Number of blobs actually deleted
        """
        if not self.is_open:
            return 0
        self.rolled_back = True
        upload_rollbacks_total.labels(reason=reason or "error").inc()

        deleted = 0
        for blob_id in list(self.blob_ids):
            try:
                removed = await self.store.delete(blob_id)
            except Exception as e:
                compensating_deletes_total.labels(source="rollback", status="error").inc()
                logger.error(f"Rollback could not delete blob {blob_id}: {e}")
                continue
            if removed:
                deleted += 1
                compensating_deletes_total.labels(source="rollback", status="deleted").inc()
            else:
                compensating_deletes_total.labels(source="rollback", status="missing").inc()

        logger.info(f"Rolled back upload transaction ({reason}): {deleted}/{len(self.blob_ids)} blob(s) deleted")
        return deleted


class UploadCoordinator:
    """Factory for upload transactions bound to one blob store."""

    def __init__(self, store: BlobStorePort, max_concurrency: int = DEFAULT_MAX_CONCURRENCY):
        self.store = store
        self.max_concurrency = max_concurrency

    def begin(self) -> UploadTransaction:
        return UploadTransaction(self.store, self.max_concurrency)
