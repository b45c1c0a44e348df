"""S3-compatible blob store adapter."""

from .s3_blob_store import S3BlobStore
from .storage_config import StorageConfig, load_storage_config, validate_storage_config

__all__ = ["S3BlobStore", "StorageConfig", "load_storage_config", "validate_storage_config"]
