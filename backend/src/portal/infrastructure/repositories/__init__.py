"""Database repositories."""

from .form_record_repository import FormRecordRepository

__all__ = ["FormRecordRepository"]
