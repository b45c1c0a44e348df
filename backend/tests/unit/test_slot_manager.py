"""Unit tests for the attachment slot manager

Covers validation before upload, planning of slot transitions (append,
replace, exclusivity, clear) and best-effort cleanup of superseded blobs.
"""

import pytest

from portal.domain.attachments.slot_manager import IncomingFile, SlotManager, SlotTransition
from portal.domain.errors import ValidationError
from portal.domain.forms.registry import get_variant_spec
from portal.domain.forms.variants import FormVariant

from fixtures.blob_stores import FailingBlobStore, list_blob_ids

PDF = "application/pdf"
PNG = "image/png"
ZIP = "application/zip"


def ref(blob_id: str, content_type: str = PDF):
    return {"blob_id": blob_id, "content_type": content_type}


def incoming(name: str = "a.pdf", content_type: str = PDF) -> IncomingFile:
    return IncomingFile(name=name, content_type=content_type, size_bytes=10)


@pytest.fixture
def manager():
    return SlotManager(store=None)


class TestValidate:
    """Test validation rules applied before any upload"""

    def test_unknown_slot_rejected(self, manager):
        spec = get_variant_spec(FormVariant.UG_2)
        with pytest.raises(ValidationError) as exc_info:
            manager.validate(spec, {}, "proofDocument", [incoming()])
        assert "groupLeaderSignature" in exc_info.value.details["allowed"]

    def test_content_type_must_match_slot(self, manager):
        spec = get_variant_spec(FormVariant.UG_1)
        with pytest.raises(ValidationError, match="not accepted"):
            manager.validate(spec, {}, "guideSignature", [incoming("sig.pdf", PDF)])

    def test_archive_must_be_alone(self, manager):
        spec = get_variant_spec(FormVariant.UG_1)
        with pytest.raises(ValidationError, match="alone"):
            manager.validate(spec, {}, "documents", [incoming("a.zip", ZIP), incoming("b.pdf")])

    def test_single_slot_takes_one_file(self, manager):
        spec = get_variant_spec(FormVariant.UG_1)
        with pytest.raises(ValidationError, match="single file"):
            manager.validate(spec, {}, "guideSignature", [incoming("a.png", PNG), incoming("b.png", PNG)])

    def test_multi_bound_counts_existing_files_when_appending(self, manager):
        spec = get_variant_spec(FormVariant.UG_1)  # documents: at most 5
        current = {"documents": [ref(f"id{i}") for i in range(4)]}

        manager.validate(spec, current, "documents", [incoming()])
        with pytest.raises(ValidationError, match="at most 5"):
            manager.validate(spec, current, "documents", [incoming(), incoming("b.pdf")])

    def test_clear_resets_the_bound(self, manager):
        spec = get_variant_spec(FormVariant.UG_1)
        current = {"documents": [ref(f"id{i}") for i in range(5)]}

        manager.validate(spec, current, "documents", [incoming(f"{i}.pdf") for i in range(5)], clear=True)
        with pytest.raises(ValidationError):
            manager.validate(spec, current, "documents", [incoming(f"{i}.pdf") for i in range(6)], clear=True)

    def test_no_files_is_valid(self, manager):
        spec = get_variant_spec(FormVariant.UG_1)
        policy = manager.validate(spec, {}, "documents", [])
        assert policy.name == "documents"


class TestValidateSubmission:
    """Test whole-submission rules"""

    def test_both_slots_of_exclusive_pair_rejected(self, manager):
        spec = get_variant_spec(FormVariant.UG_3_A)
        with pytest.raises(ValidationError, match="cannot both"):
            manager.validate_submission(spec, {
                "documents": [incoming()],
                "archive": [incoming("all.zip", ZIP)],
            })

    def test_required_slot_missing(self, manager):
        spec = get_variant_spec(FormVariant.R1)
        with pytest.raises(ValidationError, match="studentSignature"):
            manager.validate_submission(spec, {"proofDocument": [incoming()]})

    def test_required_slot_present(self, manager):
        spec = get_variant_spec(FormVariant.R1)
        manager.validate_submission(spec, {"studentSignature": [incoming("s.png", PNG)]})


class TestPlan:
    """Test slot transitions"""

    def test_documents_append(self, manager):
        spec = get_variant_spec(FormVariant.UG_2)
        current = {"documents": [ref("old")]}

        transition = manager.plan(spec, current, "documents", [ref("new")])

        assert [r["blob_id"] for r in transition.slots["documents"]] == ["old", "new"]
        assert transition.superseded == []
        assert transition.changed == ["documents"]

    def test_single_slot_replaces(self, manager):
        spec = get_variant_spec(FormVariant.UG_1)
        current = {"guideSignature": [ref("old-sig", PNG)]}

        transition = manager.plan(spec, current, "guideSignature", [ref("new-sig", PNG)])

        assert transition.slots["guideSignature"] == [ref("new-sig", PNG)]
        assert transition.superseded == ["old-sig"]

    def test_archive_replaces_documents_in_same_slot(self, manager):
        spec = get_variant_spec(FormVariant.UG_1)
        current = {"documents": [ref("d1"), ref("d2")]}

        transition = manager.plan(spec, current, "documents", [ref("z", ZIP)])

        assert transition.slots["documents"] == [ref("z", ZIP)]
        assert sorted(transition.superseded) == ["d1", "d2"]

    def test_documents_replace_an_archive_in_same_slot(self, manager):
        spec = get_variant_spec(FormVariant.UG_1)
        current = {"documents": [ref("z", ZIP)]}

        transition = manager.plan(spec, current, "documents", [ref("d1")])

        assert transition.slots["documents"] == [ref("d1")]
        assert transition.superseded == ["z"]

    def test_archive_empties_exclusive_partner(self, manager):
        spec = get_variant_spec(FormVariant.UG_3_A)
        current = {"documents": [ref("d1"), ref("d2")], "archive": [], "image": [ref("img", PNG)]}

        transition = manager.plan(spec, current, "archive", [ref("z", ZIP)])

        assert transition.slots["archive"] == [ref("z", ZIP)]
        assert transition.slots["documents"] == []
        assert transition.slots["image"] == [ref("img", PNG)]
        assert sorted(transition.superseded) == ["d1", "d2"]
        assert set(transition.changed) == {"archive", "documents"}

    def test_documents_empty_exclusive_archive(self, manager):
        spec = get_variant_spec(FormVariant.PG_2_A)  # bills <-> archive
        current = {"bills": [], "archive": [ref("z", ZIP)]}

        transition = manager.plan(spec, current, "bills", [ref("b1")])

        assert transition.slots["archive"] == []
        assert transition.slots["bills"] == [ref("b1")]
        assert transition.superseded == ["z"]

    def test_zero_files_without_clear_changes_nothing(self, manager):
        spec = get_variant_spec(FormVariant.UG_2)
        current = {"documents": [ref("d1")]}

        transition = manager.plan(spec, current, "documents", [])

        assert transition.is_noop
        assert transition.slots == current
        assert transition.superseded == []

    def test_zero_files_with_clear_empties_slot(self, manager):
        spec = get_variant_spec(FormVariant.UG_2)
        current = {"documents": [ref("d1"), ref("d2")]}

        transition = manager.plan(spec, current, "documents", [], clear=True)

        assert transition.slots["documents"] == []
        assert sorted(transition.superseded) == ["d1", "d2"]

    def test_clear_with_files_replaces(self, manager):
        spec = get_variant_spec(FormVariant.UG_2)
        current = {"documents": [ref("d1")]}

        transition = manager.plan(spec, current, "documents", [ref("d2")], clear=True)

        assert transition.slots["documents"] == [ref("d2")]
        assert transition.superseded == ["d1"]

    def test_plan_does_not_mutate_current(self, manager):
        spec = get_variant_spec(FormVariant.UG_3_A)
        current = {"documents": [ref("d1")], "archive": []}

        manager.plan(spec, current, "archive", [ref("z", ZIP)])

        assert current == {"documents": [ref("d1")], "archive": []}

    def test_submission_map_has_every_declared_slot(self, manager):
        spec = get_variant_spec(FormVariant.PG_1)

        transition = manager.plan_submission(spec, {"guideSignature": [ref("g", PNG)]})

        assert set(transition.slots) == set(spec.slot_names)
        assert transition.slots["guideSignature"] == [ref("g", PNG)]
        assert transition.superseded == []

    def test_apply_replaces_record_slots(self, manager):
        class Record:
            slots = {"documents": [ref("d1")]}

        record = Record()
        original = record.slots
        transition = SlotTransition(slots={"documents": [ref("d2")]})
        transition.apply(record)

        assert record.slots == {"documents": [ref("d2")]}
        assert record.slots is not original


class TestExecuteDeletions:
    """Test cleanup of superseded blobs"""

    @pytest.mark.asyncio
    async def test_superseded_blobs_deleted(self, blob_store, s3_client):
        old = await blob_store.put("old.pdf", PDF, b"old")
        keep = await blob_store.put("keep.pdf", PDF, b"keep")

        deleted, failed = await SlotManager(blob_store).execute_deletions(
            SlotTransition(slots={}, superseded=[old.id])
        )

        assert (deleted, failed) == (1, 0)
        assert list_blob_ids(s3_client) == [keep.id]

    @pytest.mark.asyncio
    async def test_missing_and_failing_deletes_are_not_raised(self, blob_store, s3_client):
        a = await blob_store.put("a.pdf", PDF, b"a")
        b = await blob_store.put("b.pdf", PDF, b"b")
        store = FailingBlobStore(blob_store, fail_deletes={a.id})

        deleted, failed = await SlotManager(store).execute_deletions(
            SlotTransition(slots={}, superseded=[a.id, "c" * 32, b.id])
        )

        assert (deleted, failed) == (1, 1)
        assert list_blob_ids(s3_client) == [a.id]
