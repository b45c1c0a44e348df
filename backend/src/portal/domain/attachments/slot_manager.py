"""Attachment Slot Manager.

Decides, for one mutation of one slot, which blobs stay referenced and which
become superseded. Every mutation goes through the same policy table
(SlotPolicy) instead of per-route content type checks.

Ordering contract:
    1. validate() before any upload, no side effects on failure
    2. plan() after the new blobs exist, apply() to the in-memory record
    3. caller persists the record
    4. execute_deletions() only after the write succeeded

If the write fails the caller rolls back the *new* blobs and the superseded
ones are never touched, so the record keeps pointing at live blobs.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..blobs.ports.blob_store_port import BlobStorePort
from ..errors import ValidationError
from ...observability.metrics import compensating_deletes_total
from .slots import SlotPolicy, is_archive

logger = logging.getLogger(__name__)

SlotRef = Dict[str, Any]
SlotMap = Dict[str, List[SlotRef]]


@dataclass(frozen=True)
class IncomingFile:
    """File announced for a slot, before it has been uploaded."""
    name: str
    content_type: str
    size_bytes: int = 0


@dataclass
class SlotTransition:
    """Result of planning one or more slot mutations.

    Attributes:
        slots: Complete slot map the record must hold after the mutation
        superseded: Blob ids no longer referenced once the record is written
        changed: Slots whose contents differ from the current record
    """
    slots: SlotMap
    superseded: List[str] = field(default_factory=list)
    changed: List[str] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.changed

    def apply(self, record) -> None:
        """Write the planned slot map onto a record (caller persists)."""
        # new dict so the JSON column is flagged dirty
        record.slots = {name: list(refs) for name, refs in self.slots.items()}


def _copy_slots(current: Optional[Mapping[str, Sequence[SlotRef]]]) -> SlotMap:
    return {name: [dict(ref) for ref in refs or []] for name, refs in (current or {}).items()}


def _content_type(item) -> Optional[str]:
    if isinstance(item, Mapping):
        return item.get("content_type")
    return getattr(item, "content_type", None)


def _holds_archive(items) -> bool:
    return any(is_archive(_content_type(item)) for item in items)


def _ids(refs: Sequence[SlotRef]) -> List[str]:
    return [ref["blob_id"] for ref in refs if ref.get("blob_id")]


class SlotManager:
    """Applies slot policies of a form variant.

    Stateless apart from the blob store used for superseded deletions.

    Example:
        manager = SlotManager(store)
        manager.validate(spec, record.slots, "archive", files)
        transition = manager.plan(spec, record.slots, "archive", uploaded)
        transition.apply(record)
        repo.save(record)
        await manager.execute_deletions(transition)
    """

    def __init__(self, store: BlobStorePort):
        self.store = store

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(
        self,
        spec,
        current_slots: Optional[Mapping[str, Sequence[SlotRef]]],
        slot_name: str,
        files: Sequence[IncomingFile],
        clear: bool = False,
    ) -> SlotPolicy:
        """Validate a single-slot mutation before anything is uploaded.

        Args:
            spec: VariantSpec of the record's variant
            current_slots: Slot map currently stored on the record
            slot_name: Target slot
            files: Files that will be uploaded into the slot
            clear: Replace instead of append

        Returns:
            SlotPolicy of the target slot

        Raises:
            ValidationError: If the slot is unknown or the batch breaks its policy
        """
        policy = spec.slot(slot_name)
        if not files:
            return policy

        self._check_batch(policy, files)

        if not policy.is_single:
            existing = 0
            if not self._replaces(policy, current_slots, files, clear):
                existing = len((current_slots or {}).get(slot_name) or [])
            if existing + len(files) > policy.max_items:
                raise ValidationError(
                    f"Slot '{slot_name}' holds at most {policy.max_items} files "
                    f"({existing} stored, {len(files)} uploaded)",
                    details={"slot": slot_name, "max_items": policy.max_items},
                )
        return policy

    def validate_submission(self, spec, files_by_slot: Mapping[str, Sequence[IncomingFile]]) -> None:
        """Validate every slot of a new submission.

        Raises:
            ValidationError: Unknown slot, bad batch, both slots of an
                exclusive pair populated, or a required slot missing
        """
        for slot_name, files in files_by_slot.items():
            self.validate(spec, None, slot_name, files)

        populated = {name for name, files in files_by_slot.items() if files}
        for policy in spec.slots:
            if policy.exclusive_with and policy.name in populated and policy.exclusive_with in populated:
                raise ValidationError(
                    f"Slots '{policy.name}' and '{policy.exclusive_with}' cannot both be provided",
                    details={"slots": [policy.exclusive_with, policy.name]},
                )
            if policy.required and policy.name not in populated:
                raise ValidationError(
                    f"Slot '{policy.name}' is required",
                    details={"slot": policy.name},
                )

    def _check_batch(self, policy: SlotPolicy, files: Sequence[IncomingFile]) -> None:
        for incoming in files:
            if not policy.accepts(incoming.content_type):
                raise ValidationError(
                    f"Content type '{incoming.content_type}' is not accepted in slot '{policy.name}'",
                    details={
                        "slot": policy.name,
                        "file": incoming.name,
                        "allowed": sorted(policy.content_types),
                    },
                )

        archives = [f for f in files if is_archive(f.content_type)]
        if archives and len(files) > 1:
            raise ValidationError(
                f"An archive must be uploaded alone in slot '{policy.name}'",
                details={"slot": policy.name},
            )
        if policy.is_single and len(files) > 1:
            raise ValidationError(
                f"Slot '{policy.name}' accepts a single file (got {len(files)})",
                details={"slot": policy.name},
            )

    @staticmethod
    def _replaces(policy: SlotPolicy, current_slots, files, clear: bool) -> bool:
        if clear or policy.is_single:
            return True
        if _holds_archive(files):
            return True
        return _holds_archive((current_slots or {}).get(policy.name) or [])

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(
        self,
        spec,
        current_slots: Optional[Mapping[str, Sequence[SlotRef]]],
        slot_name: str,
        new_refs: Sequence[SlotRef],
        clear: bool = False,
    ) -> SlotTransition:
        """Compute the slot map after writing `new_refs` into `slot_name`.

        Rules:
            - zero refs and no clear: no change
            - zero refs with clear: slot emptied, its blobs superseded
            - non-empty value empties the exclusive partner slot
            - single slots, archives, documents replacing an archive and
              explicit clears replace the slot; other multi uploads append
        """
        policy = spec.slot(slot_name)
        slots = _copy_slots(current_slots)
        transition = SlotTransition(slots=slots)
        self._plan_slot(spec, policy, slots, list(new_refs), clear, transition)
        return transition

    def plan_submission(self, spec, refs_by_slot: Mapping[str, Sequence[SlotRef]]) -> SlotTransition:
        """Slot map for a brand new record, every declared slot present."""
        slots: SlotMap = {policy.name: [] for policy in spec.slots}
        transition = SlotTransition(slots=slots)
        for slot_name, refs in refs_by_slot.items():
            if refs:
                self._plan_slot(spec, spec.slot(slot_name), slots, list(refs), False, transition)
        return transition

    def _plan_slot(
        self,
        spec,
        policy: SlotPolicy,
        slots: SlotMap,
        new_refs: List[SlotRef],
        clear: bool,
        transition: SlotTransition,
    ) -> None:
        current = slots.get(policy.name) or []

        if not new_refs and not clear:
            return

        if new_refs:
            partner = spec.partner(policy.name)
            if partner is not None and slots.get(partner.name):
                transition.superseded.extend(_ids(slots[partner.name]))
                slots[partner.name] = []
                transition.changed.append(partner.name)

        if self._replaces(policy, {policy.name: current}, new_refs, clear):
            transition.superseded.extend(_ids(current))
            slots[policy.name] = list(new_refs)
        else:
            slots[policy.name] = current + list(new_refs)

        if slots[policy.name] != current:
            transition.changed.append(policy.name)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def execute_deletions(self, transition: SlotTransition) -> Tuple[int, int]:
        """Delete superseded blobs, best effort.

        Must only run after the record write succeeded. Failures are logged
        and never raised; there is no retry.

        Returns:
            Tuple of (deleted, failed)
        """
        deleted = failed = 0
        for blob_id in transition.superseded:
            try:
                removed = await self.store.delete(blob_id)
            except Exception as e:
                failed += 1
                compensating_deletes_total.labels(source="superseded", status="error").inc()
                logger.error(f"Failed to delete superseded blob {blob_id}: {e}")
                continue
            if removed:
                deleted += 1
                compensating_deletes_total.labels(source="superseded", status="deleted").inc()
            else:
                compensating_deletes_total.labels(source="superseded", status="missing").inc()

        if transition.superseded:
            logger.info(
                f"Superseded blob cleanup finished: {deleted} deleted, {failed} failed, "
                f"{len(transition.superseded) - deleted - failed} already gone"
            )
        return deleted, failed
