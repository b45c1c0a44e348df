"""Form variants and application status values."""

from enum import Enum
from typing import Dict, Optional


class FormVariant(str, Enum):
    """The eight application form shapes.

    Declaration order matters: it breaks ties when listings from several
    variants are merged.
    """
    UG_1 = "UG_1"
    UG_2 = "UG_2"
    UG_3_A = "UG_3_A"
    UG_3_B = "UG_3_B"
    PG_1 = "PG_1"
    PG_2_A = "PG_2_A"
    PG_2_B = "PG_2_B"
    R1 = "R1"

    @property
    def order(self) -> int:
        return _VARIANT_ORDER[self]


_VARIANT_ORDER: Dict["FormVariant", int] = {v: i for i, v in enumerate(FormVariant)}


class FormStatus(str, Enum):
    """Review status of an application.

    State flow: PENDING → APPROVED or REJECTED (reviewers may reopen to PENDING)
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# Older clients send these words
STATUS_SYNONYMS = {
    "accepted": FormStatus.APPROVED,
    "declined": FormStatus.REJECTED,
}


def parse_status(value: Optional[str]) -> Optional[FormStatus]:
    """Parse a status string case-insensitively, honoring synonyms.

    Returns None for empty or unknown values.

    Example:
        >>> parse_status("Accepted")
        <FormStatus.APPROVED: 'approved'>
        >>> parse_status("archived") is None
        True
    """
    if not value or not isinstance(value, str):
        return None
    value = value.strip().lower()
    if value in STATUS_SYNONYMS:
        return STATUS_SYNONYMS[value]
    try:
        return FormStatus(value)
    except ValueError:
        return None


def parse_variant(value: str) -> Optional[FormVariant]:
    """Parse a variant tag, accepting lowercase and dashed spellings.

    Example:
        >>> parse_variant("ug-3-a")
        <FormVariant.UG_3_A: 'UG_3_A'>
    """
    if not value:
        return None
    try:
        return FormVariant(value.strip().upper().replace("-", "_"))
    except ValueError:
        return None
