"""S3 Blob Store - Implementation of BlobStorePort using boto3.

Provides attachment storage on AWS S3, MinIO, and other S3-compatible services.
Blocking boto3 calls run in worker threads so request-scoped fan-out
(uploads, metadata lookups) proceeds concurrently.

Architecture: Hexagonal - Adapter implementation in infrastructure layer
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import AsyncIterator, Optional, Tuple
from urllib.parse import quote, unquote

import boto3
from botocore.exceptions import ClientError, NoCredentialsError

from ...domain.blobs.ports.blob_store_port import (
    BlobObject,
    BlobStorePort,
    is_valid_blob_id,
)
from ...domain.errors import NotFound, StorageError, StoreUnavailable, ValidationError
from .storage_config import StorageConfig

logger = logging.getLogger(__name__)

KEY_PREFIX = "blobs/"
STREAM_CHUNK_SIZE = 64 * 1024
_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "Unknown")


class S3BlobStore(BlobStorePort):
    """S3-compatible blob store using boto3.

    Features:
    - Store-generated opaque ids (uuid4 hex), object key: blobs/{id}
    - Original file name and creation time kept as object metadata
    - Metadata-only lookups via HEAD (used when rendering listings)
    - Idempotent delete; a missing object is a logged soft failure

    Example:
        store = S3BlobStore.from_config(load_storage_config(settings))
        await store.initialize()

        blob = await store.put("report.pdf", "application/pdf", data)
    """

    def __init__(
        self,
        endpoint_url: Optional[str],
        access_key: str,
        secret_key: str,
        bucket_name: str,
        region: str = "us-east-1",
        create_bucket: bool = False,
    ):
        """Initialize the S3 client.

        The store is not usable until initialize() has been awaited.

        Raises:
            StorageError: If S3 client initialization fails
        """
        try:
            self.s3_client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
            )
        except NoCredentialsError as e:
            raise StorageError(f"Invalid S3 credentials: {e}")
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

        self.bucket_name = bucket_name
        self.region = region
        self.endpoint_url = endpoint_url
        self.create_bucket = create_bucket
        self._ready = False

    @classmethod
    def from_config(cls, config: StorageConfig) -> "S3BlobStore":
        return cls(
            endpoint_url=config.endpoint_url,
            access_key=config.access_key,
            secret_key=config.secret_key,
            bucket_name=config.bucket_name,
            region=config.region,
            create_bucket=config.create_bucket,
        )

    @property
    def is_ready(self) -> bool:
        return self._ready

    async def initialize(self) -> None:
        """Verify the bucket exists, creating it when configured to.

        Must be called once at application startup, before any request is
        served.

        Raises:
            StorageError: If the bucket is missing or cannot be checked
        """
        try:
            await asyncio.to_thread(self.s3_client.head_bucket, Bucket=self.bucket_name)
        except ClientError as e:
            error_code = _error_code(e)
            if error_code not in {"404", "NoSuchBucket"}:
                raise StorageError(f"Failed to verify bucket: {error_code}")
            if not self.create_bucket:
                raise StorageError(
                    f"Bucket '{self.bucket_name}' does not exist. "
                    f"Create it first or set S3_CREATE_BUCKET=true."
                )
            try:
                await asyncio.to_thread(self._create_bucket)
            except Exception as create_error:
                raise StorageError(f"Failed to create bucket '{self.bucket_name}': {create_error}")
            logger.info(f"Created bucket: {self.bucket_name}")
        except Exception as e:
            raise StorageError(f"Failed to verify bucket: {e}")

        self._ready = True
        logger.info(
            f"Initialized blob store: bucket={self.bucket_name}, "
            f"endpoint={self.endpoint_url or 'AWS S3'}, region={self.region}"
        )

    def _create_bucket(self) -> None:
        if self.region == "us-east-1":
            self.s3_client.create_bucket(Bucket=self.bucket_name)
        else:
            self.s3_client.create_bucket(
                Bucket=self.bucket_name,
                CreateBucketConfiguration={"LocationConstraint": self.region},
            )

    def _require_ready(self) -> None:
        if not self._ready:
            raise StoreUnavailable()

    async def put(self, name: str, content_type: str, data: bytes) -> BlobObject:
        """Store a payload under a freshly generated id.

        Raises:
            StoreUnavailable: If the store is not initialized
            ValidationError: If the payload is empty
            StorageError: If the upload fails
        """
        self._require_ready()
        if not data:
            raise ValidationError(f"Cannot store empty file: {name}")

        blob_id = uuid.uuid4().hex
        created_at = datetime.now(timezone.utc)
        content_type = content_type or "application/octet-stream"

        try:
            await asyncio.to_thread(
                self.s3_client.put_object,
                Bucket=self.bucket_name,
                Key=self._key(blob_id),
                Body=data,
                ContentType=content_type,
                Metadata={
                    # S3 metadata must be ASCII
                    "original-name": quote(name),
                    "created-at": created_at.isoformat(),
                },
            )
        except ClientError as e:
            error_code = _error_code(e)
            logger.error(f"S3 upload failed: blob_id={blob_id}, name={name}, error={error_code}")
            raise StorageError(f"Failed to upload file: {error_code}")
        except Exception as e:
            logger.error(f"Unexpected error during upload: blob_id={blob_id}, error={e}")
            raise StorageError(f"Failed to upload file: {e}")

        logger.info(
            f"Stored blob: blob_id={blob_id}, name={name}, "
            f"size={len(data)}, content_type={content_type}"
        )
        return BlobObject(
            id=blob_id,
            original_name=name,
            content_type=content_type,
            size_bytes=len(data),
            created_at=created_at,
        )

    async def get(self, blob_id: str) -> Tuple[BlobObject, AsyncIterator[bytes]]:
        """Retrieve a blob's metadata and a chunked byte stream.

        Raises:
            StoreUnavailable: If the store is not initialized
            NotFound: If the blob doesn't exist
            StorageError: If retrieval fails
        """
        self._require_ready()
        self._check_id(blob_id)
        try:
            response = await asyncio.to_thread(
                self.s3_client.get_object,
                Bucket=self.bucket_name,
                Key=self._key(blob_id),
            )
        except ClientError as e:
            error_code = _error_code(e)
            if error_code in _MISSING_CODES:
                raise NotFound(f"Blob not found: {blob_id}")
            logger.error(f"S3 retrieval failed: blob_id={blob_id}, error={error_code}")
            raise StorageError(f"Failed to retrieve file: {error_code}")
        except Exception as e:
            logger.error(f"Unexpected error during retrieval: blob_id={blob_id}, error={e}")
            raise StorageError(f"Failed to retrieve file: {e}")

        blob = self._to_blob(blob_id, response)
        return blob, self._iter_body(response["Body"])

    async def head(self, blob_id: str) -> BlobObject:
        """Retrieve blob metadata with a HEAD request.

        Raises:
            StoreUnavailable: If the store is not initialized
            NotFound: If the blob doesn't exist
            StorageError: If the lookup fails
        """
        self._require_ready()
        self._check_id(blob_id)
        try:
            response = await asyncio.to_thread(
                self.s3_client.head_object,
                Bucket=self.bucket_name,
                Key=self._key(blob_id),
            )
        except ClientError as e:
            error_code = _error_code(e)
            if error_code in _MISSING_CODES:
                raise NotFound(f"Blob not found: {blob_id}")
            logger.error(f"S3 head failed: blob_id={blob_id}, error={error_code}")
            raise StorageError(f"Failed to read file metadata: {error_code}")
        except Exception as e:
            raise StorageError(f"Failed to read file metadata: {e}")

        return self._to_blob(blob_id, response)

    async def delete(self, blob_id: str) -> bool:
        """Delete a blob; a missing blob is logged and reported as False.

        Raises:
            StoreUnavailable: If the store is not initialized
            StorageError: If deletion fails
        """
        self._require_ready()
        try:
            await self.head(blob_id)
        except NotFound:
            logger.warning(f"Blob not found for deletion: blob_id={blob_id}")
            return False

        try:
            await asyncio.to_thread(
                self.s3_client.delete_object,
                Bucket=self.bucket_name,
                Key=self._key(blob_id),
            )
        except ClientError as e:
            error_code = _error_code(e)
            logger.error(f"S3 deletion failed: blob_id={blob_id}, error={error_code}")
            raise StorageError(f"Failed to delete file: {error_code}")
        except Exception as e:
            logger.error(f"Unexpected error during deletion: blob_id={blob_id}, error={e}")
            raise StorageError(f"Failed to delete file: {e}")

        logger.info(f"Deleted blob: blob_id={blob_id}")
        return True

    @staticmethod
    def _key(blob_id: str) -> str:
        return f"{KEY_PREFIX}{blob_id}"

    @staticmethod
    def _check_id(blob_id: str) -> None:
        # Malformed ids cannot exist in the store
        if not is_valid_blob_id(blob_id):
            raise NotFound(f"Blob not found: {blob_id}")

    @staticmethod
    def _to_blob(blob_id: str, response: dict) -> BlobObject:
        metadata = response.get("Metadata") or {}
        created_raw = metadata.get("created-at")
        if created_raw:
            created_at = datetime.fromisoformat(created_raw)
        else:
            created_at = response.get("LastModified") or datetime.now(timezone.utc)
        return BlobObject(
            id=blob_id,
            original_name=unquote(metadata.get("original-name", blob_id)),
            content_type=response.get("ContentType") or "application/octet-stream",
            size_bytes=int(response.get("ContentLength", 0)),
            created_at=created_at,
        )

    @staticmethod
    async def _iter_body(body) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await asyncio.to_thread(body.read, STREAM_CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk
        finally:
            body.close()
