"""Blob Store Port - Domain interface for attachment storage.

This port defines the contract for storing and retrieving attachment payloads.
Adapters must implement this interface to provide S3, MinIO, or other storage backends.

Architecture: Hexagonal - Port interface in domain layer
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Tuple

# Store-generated ids are uuid4 hex strings
BLOB_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


def is_valid_blob_id(blob_id: str) -> bool:
    """Check whether a string has the shape of a store-generated blob id.

    Example:
        >>> is_valid_blob_id("0f8fad5bd9cb469fa16570867728950e")
        True
        >>> is_valid_blob_id("../etc/passwd")
        False
    """
    return bool(blob_id) and bool(BLOB_ID_PATTERN.match(blob_id))


@dataclass(frozen=True)
class BlobObject:
    """Metadata for a payload stored in the blob store.

    Immutable once written. Records reference blobs by id and never copy them.

    Attributes:
        id: Opaque store-generated identifier
        original_name: File name supplied by the uploader
        content_type: MIME type (e.g., 'application/pdf')
        size_bytes: Payload size in bytes
        created_at: When the blob was written (UTC)
    """
    id: str
    original_name: str
    content_type: str
    size_bytes: int
    created_at: datetime


class BlobStorePort(ABC):
    """Port interface for attachment blob storage.

    Key Design Principles:
    - One logical store shared by every form variant
    - Explicit initialization before first use; operations raise
      StoreUnavailable until initialize() has completed
    - Missing blobs on delete are a soft failure (logged, not raised) because
      rollback and replacement paths can race with another deletion
    - Safe for concurrent independent operations

    Example Usage:
        store = S3BlobStore(...)
        await store.initialize()

        blob = await store.put("invoice.pdf", "application/pdf", data)
        meta, stream = await store.get(blob.id)
    """

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        """Whether initialize() has completed successfully."""

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (verify or create the bucket).

        Raises:
            StorageError: If the backend cannot be reached or is misconfigured
        """

    @abstractmethod
    async def put(self, name: str, content_type: str, data: bytes) -> BlobObject:
        """Store a payload and return its metadata.

        Args:
            name: Original file name
            content_type: MIME type of the payload
            data: Payload bytes (must not be empty)

        Returns:
            BlobObject: Metadata of the new blob

        Raises:
            StoreUnavailable: If the store is not initialized
            ValidationError: If the payload is empty
            StorageError: If the write fails
        """

    @abstractmethod
    async def get(self, blob_id: str) -> Tuple[BlobObject, AsyncIterator[bytes]]:
        """Retrieve metadata and a chunked byte stream for a blob.

        Raises:
            StoreUnavailable: If the store is not initialized
            NotFound: If no blob with this id exists
            StorageError: If retrieval fails
        """

    @abstractmethod
    async def head(self, blob_id: str) -> BlobObject:
        """Retrieve metadata only (no payload transfer).

        Raises:
            StoreUnavailable: If the store is not initialized
            NotFound: If no blob with this id exists
            StorageError: If the lookup fails
        """

    @abstractmethod
    async def delete(self, blob_id: str) -> bool:
        """Delete a blob.

        Returns:
            bool: True if the blob was deleted, False if it did not exist

        Raises:
            StoreUnavailable: If the store is not initialized
            StorageError: If deletion fails

        Note:
            Idempotent. A missing blob is logged as a warning and reported
            through the return value, never raised.
        """
