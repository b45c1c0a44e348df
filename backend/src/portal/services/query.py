"""Scoped Query Layer.

Fetches records across all variants, restricted to the caller's own records
unless the caller holds an elevated role, and merges them into one listing.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from ..auth.roles import is_elevated, normalize_role
from ..domain.errors import NotFound
from ..domain.forms.variants import FormStatus, FormVariant
from ..infrastructure.repositories.form_record_repository import FormRecordRepository
from ..models.form_record import FormRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Caller:
    """Identity of the requester, as asserted by the gateway."""
    owner_id: str
    role: str = "student"
    branch: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "role", normalize_role(self.role))


def merge_key(record: FormRecord):
    """Newest first; ties broken by variant declaration order."""
    return (-record.submitted_at.timestamp(), record.form_variant.order)


class ScopedQuery:
    """Role-scoped, cross-variant record reads."""

    def __init__(self, repo: FormRecordRepository, elevated_roles: Optional[Iterable[str]] = None):
        self.repo = repo
        self.elevated_roles = list(elevated_roles) if elevated_roles is not None else None

    def is_elevated(self, caller: Caller) -> bool:
        return is_elevated(caller.role, self.elevated_roles)

    def fetch(self, caller: Caller, status: Optional[FormStatus] = None) -> List[FormRecord]:
        """Records visible to the caller, optionally filtered by status.

        Args:
            caller: Requesting identity
            status: Parsed status filter (None = every status)

        Returns:
            Records from every variant, newest first
        """
        owner_id = None if self.is_elevated(caller) else caller.owner_id
        return self.fetch_for_owner(owner_id, status)

    def fetch_for_owner(self, owner_id: Optional[str], status: Optional[FormStatus] = None) -> List[FormRecord]:
        statuses = [status] if status is not None else None
        records: List[FormRecord] = []
        for variant in FormVariant:
            records.extend(self.repo.list_for_variant(variant, owner_id=owner_id, statuses=statuses))

        records.sort(key=merge_key)
        logger.debug(f"Fetched {len(records)} record(s) for owner={owner_id or '*'} status={status}")
        return records

    def fetch_one(self, record_id, caller: Caller) -> FormRecord:
        """Single record, subject to the same scoping as fetch().

        Raises:
            NotFound: If the record does not exist or is outside the caller's scope
        """
        record = self.repo.get(record_id)
        if record is None or (not self.is_elevated(caller) and record.owner_id != caller.owner_id):
            raise NotFound(f"Application {record_id} not found", details={"id": str(record_id)})
        return record
