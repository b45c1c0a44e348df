"""Form record repository for database operations"""

import logging
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...domain.errors import PersistenceFailure
from ...domain.forms.variants import FormStatus, FormVariant
from ...models.form_record import FormRecord

logger = logging.getLogger(__name__)


def _parse_uuid(value) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


class FormRecordRepository:
    """Repository for form_record database operations.

    Every write commits immediately. SQLAlchemy failures are rolled back and
    surfaced as PersistenceFailure so callers can compensate uploaded blobs.
    """

    def __init__(self, db: Session):
        """Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    def add(
        self,
        variant: FormVariant,
        owner_id: str,
        payload: Dict[str, Any],
        slots: Dict[str, List[Dict[str, Any]]],
    ) -> FormRecord:
        """Insert a new record.

        Raises:
            PersistenceFailure: If the insert fails
        """
        record = FormRecord(
            variant=variant.value,
            owner_id=owner_id,
            status=FormStatus.PENDING.value,
            payload=payload,
            slots=slots,
        )
        self.db.add(record)
        self._commit(f"insert {variant.value} record for owner {owner_id}")
        self.db.refresh(record)
        return record

    def save(self, record: FormRecord) -> FormRecord:
        """Persist changes made to a loaded record.

        Raises:
            PersistenceFailure: If the update fails
        """
        self.db.add(record)
        self._commit(f"update record {record.id}")
        self.db.refresh(record)
        return record

    def get(self, record_id) -> Optional[FormRecord]:
        """Load a record by id; malformed ids simply match nothing."""
        record_uuid = _parse_uuid(record_id)
        if record_uuid is None:
            return None
        try:
            return self.db.get(FormRecord, record_uuid)
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Failed to load record {record_id}: {e}")

    def list_for_variant(
        self,
        variant: FormVariant,
        owner_id: Optional[str] = None,
        statuses: Optional[Iterable[FormStatus]] = None,
    ) -> List[FormRecord]:
        """Records of one variant, newest first.

        Args:
            variant: Form variant
            owner_id: Restrict to this owner (None = all owners)
            statuses: Restrict to these statuses (None = any)
        """
        query = select(FormRecord).where(FormRecord.variant == variant.value)
        if owner_id is not None:
            query = query.where(FormRecord.owner_id == owner_id)
        if statuses:
            query = query.where(FormRecord.status.in_([s.value for s in statuses]))
        query = query.order_by(FormRecord.created_at.desc())

        try:
            return list(self.db.execute(query).scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Failed to list {variant.value} records: {e}")

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database write failed ({action}): {e}")
            raise PersistenceFailure(f"Failed to {action}", details={"cause": str(e)})
