"""Blob store port."""

from .blob_store_port import BlobObject, BlobStorePort, is_valid_blob_id

__all__ = ["BlobObject", "BlobStorePort", "is_valid_blob_id"]
