"""Attachment slot policies.

A slot is a named role on a form record ("guideSignature", "documents",
"archive", ...). Each variant declares its slots with a SlotPolicy; the slot
manager evaluates these policies once per mutation.
"""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional


class Cardinality(str, Enum):
    """How many blobs a slot may hold."""
    SINGLE = "single"  # 0 or 1 blob
    MULTI = "multi"    # 0..max_items blobs


PDF_TYPES = frozenset({"application/pdf"})
IMAGE_TYPES = frozenset({"image/jpeg", "image/png"})
ARCHIVE_TYPES = frozenset({"application/zip", "application/x-zip-compressed"})
DOCUMENT_TYPES = PDF_TYPES | IMAGE_TYPES

# Every slot name any variant may declare, in projection order
ALL_SLOTS = (
    "documents",
    "archive",
    "groupLeaderSignature",
    "guideSignature",
    "studentSignature",
    "hodSignature",
    "sdcChairpersonSignature",
    "paperCopy",
    "additionalDocuments",
    "proofDocument",
    "image",
    "bills",
)


def is_archive(content_type: Optional[str]) -> bool:
    return (content_type or "").lower() in ARCHIVE_TYPES


@dataclass(frozen=True)
class SlotPolicy:
    """Cardinality and exclusivity rules for one slot.

    Attributes:
        name: Slot name (one of ALL_SLOTS)
        cardinality: SINGLE or MULTI
        max_items: Upper bound for MULTI slots
        content_types: Accepted MIME types
        accepts_archive: A single archive may stand in for the whole slot
        exclusive_with: Partner slot that must be empty while this one is populated
        required: Slot must be populated on submission
    """
    name: str
    cardinality: Cardinality = Cardinality.SINGLE
    max_items: int = 1
    content_types: FrozenSet[str] = DOCUMENT_TYPES
    accepts_archive: bool = False
    exclusive_with: Optional[str] = None
    required: bool = False

    @property
    def is_single(self) -> bool:
        return self.cardinality == Cardinality.SINGLE

    @property
    def capacity(self) -> int:
        return 1 if self.is_single else self.max_items

    def accepts(self, content_type: Optional[str]) -> bool:
        content_type = (content_type or "").lower()
        if content_type in self.content_types:
            return True
        return self.accepts_archive and is_archive(content_type)


def single(name: str, content_types: FrozenSet[str] = DOCUMENT_TYPES, **kwargs) -> SlotPolicy:
    return SlotPolicy(name=name, cardinality=Cardinality.SINGLE, max_items=1,
                      content_types=content_types, **kwargs)


def multi(name: str, max_items: int, content_types: FrozenSet[str] = DOCUMENT_TYPES, **kwargs) -> SlotPolicy:
    return SlotPolicy(name=name, cardinality=Cardinality.MULTI, max_items=max_items,
                      content_types=content_types, **kwargs)


def signature(name: str, **kwargs) -> SlotPolicy:
    return single(name, IMAGE_TYPES, **kwargs)


def archive(partner: str = "documents") -> SlotPolicy:
    return single("archive", ARCHIVE_TYPES, exclusive_with=partner)
