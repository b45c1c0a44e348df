"""Attachment slots: policies, validation and the slot manager."""

from .slot_manager import IncomingFile, SlotManager, SlotTransition
from .slots import ALL_SLOTS, Cardinality, SlotPolicy, is_archive
from .validation import (
    MAX_FILE_SIZE,
    check_attachment,
    sanitize_filename,
    validate_file_size,
    validate_filename,
)

__all__ = [
    "ALL_SLOTS",
    "Cardinality",
    "IncomingFile",
    "MAX_FILE_SIZE",
    "SlotManager",
    "SlotPolicy",
    "SlotTransition",
    "check_attachment",
    "is_archive",
    "sanitize_filename",
    "validate_file_size",
    "validate_filename",
]
