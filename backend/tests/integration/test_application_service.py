"""Integration tests for ApplicationService

Exercise the full attachment lifecycle against the moto bucket and the
SQLite database: submission, slot replacement, compensation on failure and
review.
"""

import pytest

from portal.domain.errors import (
    NotFound,
    PersistenceFailure,
    StoreUnavailable,
    UploadFailure,
    ValidationError,
)
from portal.domain.forms.variants import FormVariant
from portal.services.applications import ApplicationService, parse_status_filter
from portal.services.query import Caller

from fixtures.blob_stores import FailingBlobStore, list_blob_ids, pdf, png, zip_archive

OWNER = Caller(owner_id="2021-cs-042")
REVIEWER = Caller(owner_id="hod-1", role="hod")


def make_service(store, repo, **kwargs) -> ApplicationService:
    return ApplicationService(store=store, repo=repo, **kwargs)


def blob_ids(record, slot):
    return record.slot_blob_ids(slot)


class TestSubmit:
    """Test new submissions"""

    @pytest.mark.asyncio
    async def test_submission_references_exactly_the_uploaded_blobs(self, service, s3_client):
        record = await service.submit_with_attachments(
            FormVariant.UG_1,
            OWNER.owner_id,
            {"projectTitle": "Line follower"},
            [pdf("a.pdf"), pdf("b.pdf"), png("guideSignature")],
        )

        referenced = blob_ids(record, "documents") + blob_ids(record, "guideSignature")
        assert sorted(referenced) == list_blob_ids(s3_client)
        assert len(blob_ids(record, "documents")) == 2
        assert record.slots["groupLeaderSignature"] == []
        assert record.status == "pending"

    @pytest.mark.asyncio
    async def test_file_names_are_sanitized(self, service, blob_store):
        record = await service.submit_with_attachments(
            FormVariant.UG_2, OWNER.owner_id, {}, [pdf("../../fee receipt.pdf")]
        )

        blob = await blob_store.head(blob_ids(record, "documents")[0])
        assert blob.original_name == "fee_receipt.pdf"

    @pytest.mark.asyncio
    async def test_invalid_file_rejected_before_upload(self, blob_store, repo, s3_client):
        store = FailingBlobStore(blob_store)
        service = make_service(store, repo)

        with pytest.raises(ValidationError, match="not accepted"):
            await service.submit_with_attachments(
                FormVariant.UG_1, OWNER.owner_id, {}, [pdf("a.pdf"), pdf("sig.pdf", slot="guideSignature")]
            )

        assert store.put_calls == []
        assert repo.list_for_variant(FormVariant.UG_1) == []

    @pytest.mark.asyncio
    async def test_oversized_file_rejected(self, blob_store, repo):
        service = make_service(blob_store, repo, max_file_size=10)
        with pytest.raises(ValidationError, match="exceeds maximum size"):
            await service.submit_with_attachments(FormVariant.UG_2, OWNER.owner_id, {}, [pdf()])

    @pytest.mark.asyncio
    async def test_required_slot_enforced(self, service):
        with pytest.raises(ValidationError, match="studentSignature"):
            await service.submit_with_attachments(FormVariant.R1, OWNER.owner_id, {}, [pdf(slot="proofDocument")])

    @pytest.mark.asyncio
    async def test_mid_batch_failure_leaves_nothing(self, blob_store, repo, s3_client):
        store = FailingBlobStore(blob_store, fail_names={"c.pdf"})
        service = make_service(store, repo)

        with pytest.raises(UploadFailure) as exc_info:
            await service.submit_with_attachments(
                FormVariant.UG_2, OWNER.owner_id, {}, [pdf("a.pdf"), pdf("b.pdf"), pdf("c.pdf")]
            )

        assert [f.name for f in exc_info.value.failures] == ["c.pdf"]
        assert list_blob_ids(s3_client) == []
        assert repo.list_for_variant(FormVariant.UG_2) == []

    @pytest.mark.asyncio
    async def test_record_write_failure_rolls_back_uploads(self, service, repo, s3_client, monkeypatch):
        def failing_add(*args, **kwargs):
            raise PersistenceFailure("Failed to insert record")

        monkeypatch.setattr(repo, "add", failing_add)

        with pytest.raises(PersistenceFailure):
            await service.submit_with_attachments(
                FormVariant.UG_2, OWNER.owner_id, {}, [pdf("a.pdf"), pdf("b.pdf")]
            )

        assert list_blob_ids(s3_client) == []

    @pytest.mark.asyncio
    async def test_uninitialized_store_rejected_up_front(self, uninitialized_store, repo):
        store = FailingBlobStore(uninitialized_store)
        service = make_service(store, repo)

        with pytest.raises(StoreUnavailable):
            await service.submit_with_attachments(FormVariant.UG_2, OWNER.owner_id, {}, [pdf()])

        assert store.put_calls == []
        assert repo.list_for_variant(FormVariant.UG_2) == []

    @pytest.mark.asyncio
    async def test_submission_without_files(self, service, s3_client):
        record = await service.submit_with_attachments(FormVariant.PG_1, OWNER.owner_id, {"sttpTitle": "ML"}, [])

        assert all(refs == [] for refs in record.slots.values())
        assert list_blob_ids(s3_client) == []

    @pytest.mark.asyncio
    async def test_payload_must_be_object(self, service):
        with pytest.raises(ValidationError):
            await service.submit_with_attachments(FormVariant.UG_2, OWNER.owner_id, ["not", "a", "dict"], [])


class TestReplaceSlot:
    """Test slot mutations on existing records"""

    @pytest.mark.asyncio
    async def test_documents_appended(self, service, s3_client):
        record = await service.submit_with_attachments(FormVariant.UG_2, OWNER.owner_id, {}, [pdf("a.pdf")])

        projection = await service.replace_slot(record.id, "documents", [pdf("b.pdf")], False, OWNER)

        names = [d.original_name for d in projection.attachments["documents"]]
        assert names == ["a.pdf", "b.pdf"]
        assert len(list_blob_ids(s3_client)) == 2

    @pytest.mark.asyncio
    async def test_signature_replaced_and_old_blob_deleted(self, service, s3_client):
        record = await service.submit_with_attachments(
            FormVariant.UG_1, OWNER.owner_id, {}, [png("guideSignature", "old.png")]
        )
        (old_id,) = blob_ids(record, "guideSignature")

        projection = await service.replace_slot(
            record.id, "guideSignature", [png("ignored-slot", "new.png")], False, OWNER
        )

        (descriptor,) = projection.attachments["guideSignature"]
        assert descriptor.original_name == "new.png"
        assert list_blob_ids(s3_client) == [descriptor.id]
        assert old_id not in list_blob_ids(s3_client)

    @pytest.mark.asyncio
    async def test_archive_replaces_exclusive_documents(self, service, repo, s3_client):
        record = await service.submit_with_attachments(
            FormVariant.UG_3_A, OWNER.owner_id, {}, [pdf("a.pdf"), pdf("b.pdf"), png("image", "poster.png")]
        )
        poster_id = blob_ids(record, "image")[0]

        projection = await service.replace_slot(record.id, "archive", [zip_archive()], False, OWNER)

        (archive,) = projection.attachments["archive"]
        assert projection.attachments["documents"] == []
        assert sorted(list_blob_ids(s3_client)) == sorted([archive.id, poster_id])

        stored = repo.get(record.id)
        assert stored.slots["documents"] == []
        assert blob_ids(stored, "archive") == [archive.id]

    @pytest.mark.asyncio
    async def test_clear_without_files_empties_slot(self, service, s3_client):
        record = await service.submit_with_attachments(
            FormVariant.UG_2, OWNER.owner_id, {}, [pdf("a.pdf"), pdf("b.pdf")]
        )

        projection = await service.replace_slot(record.id, "documents", [], True, OWNER)

        assert projection.attachments["documents"] == []
        assert list_blob_ids(s3_client) == []

    @pytest.mark.asyncio
    async def test_no_files_no_clear_is_a_no_op(self, blob_store, repo, s3_client):
        store = FailingBlobStore(blob_store)
        service = make_service(store, repo)
        record = await service.submit_with_attachments(FormVariant.UG_2, OWNER.owner_id, {}, [pdf()])
        before = list_blob_ids(s3_client)

        projection = await service.replace_slot(record.id, "documents", [], False, OWNER)

        assert len(projection.attachments["documents"]) == 1
        assert list_blob_ids(s3_client) == before
        assert store.delete_calls == []

    @pytest.mark.asyncio
    async def test_record_write_failure_keeps_old_blobs(self, service, repo, db_session, s3_client, monkeypatch):
        record = await service.submit_with_attachments(
            FormVariant.UG_1, OWNER.owner_id, {}, [png("guideSignature", "old.png")]
        )
        (old_id,) = blob_ids(record, "guideSignature")

        def failing_save(record):
            raise PersistenceFailure("Failed to update record")

        monkeypatch.setattr(repo, "save", failing_save)

        with pytest.raises(PersistenceFailure):
            await service.replace_slot(record.id, "guideSignature", [png("guideSignature", "new.png")], False, OWNER)

        # new upload compensated, old reference still valid
        assert list_blob_ids(s3_client) == [old_id]
        db_session.expire_all()
        assert blob_ids(repo.get(record.id), "guideSignature") == [old_id]

    @pytest.mark.asyncio
    async def test_upload_failure_leaves_record_untouched(self, blob_store, repo, s3_client):
        store = FailingBlobStore(blob_store, fail_names={"bad.pdf"})
        service = make_service(store, repo)
        record = await service.submit_with_attachments(FormVariant.UG_2, OWNER.owner_id, {}, [pdf("a.pdf")])
        before = list_blob_ids(s3_client)

        with pytest.raises(UploadFailure):
            await service.replace_slot(record.id, "documents", [pdf("ok.pdf"), pdf("bad.pdf")], True, OWNER)

        assert list_blob_ids(s3_client) == before
        assert blob_ids(repo.get(record.id), "documents") == before

    @pytest.mark.asyncio
    async def test_failed_superseded_delete_does_not_fail_request(self, blob_store, repo, s3_client):
        store = FailingBlobStore(blob_store)
        service = make_service(store, repo)
        record = await service.submit_with_attachments(
            FormVariant.UG_1, OWNER.owner_id, {}, [png("guideSignature", "old.png")]
        )
        (old_id,) = blob_ids(record, "guideSignature")
        store.fail_deletes.add(old_id)

        projection = await service.replace_slot(
            record.id, "guideSignature", [png("guideSignature", "new.png")], False, OWNER
        )

        assert projection.attachments["guideSignature"][0].original_name == "new.png"
        # orphan left behind, reference moved on
        assert old_id in list_blob_ids(s3_client)

    @pytest.mark.asyncio
    async def test_other_owner_cannot_modify(self, service):
        record = await service.submit_with_attachments(FormVariant.UG_2, OWNER.owner_id, {}, [])

        with pytest.raises(NotFound):
            await service.replace_slot(record.id, "documents", [pdf()], False, Caller(owner_id="someone-else"))

    @pytest.mark.asyncio
    async def test_unknown_slot_rejected(self, service):
        record = await service.submit_with_attachments(FormVariant.UG_2, OWNER.owner_id, {}, [])

        with pytest.raises(ValidationError):
            await service.replace_slot(record.id, "bills", [pdf()], False, OWNER)


class TestReview:
    """Test status updates and reads"""

    @pytest.mark.asyncio
    async def test_reviewer_updates_status(self, service):
        record = await service.submit_with_attachments(FormVariant.UG_2, OWNER.owner_id, {}, [])

        updated = service.update_status(record.id, "Accepted", "Looks good", REVIEWER)

        assert updated.status == "approved"
        assert updated.remarks == "Looks good"

    @pytest.mark.asyncio
    async def test_invalid_status_rejected(self, service):
        record = await service.submit_with_attachments(FormVariant.UG_2, OWNER.owner_id, {}, [])

        with pytest.raises(ValidationError):
            service.update_status(record.id, "archived", None, REVIEWER)

    @pytest.mark.asyncio
    async def test_listing_scoped_and_filtered(self, service):
        mine = await service.submit_with_attachments(FormVariant.UG_2, OWNER.owner_id, {}, [])
        other = await service.submit_with_attachments(FormVariant.PG_1, "someone-else", {}, [])
        service.update_status(other.id, "approved", None, REVIEWER)

        assert [p.id for p in await service.list_applications(OWNER)] == [str(mine.id)]
        assert len(await service.list_applications(REVIEWER)) == 2
        approved = await service.list_applications(REVIEWER, "approved")
        assert [p.id for p in approved] == [str(other.id)]

    @pytest.mark.asyncio
    async def test_owner_branch_hint_applies_to_own_record(self, service):
        record = await service.submit_with_attachments(FormVariant.UG_2, OWNER.owner_id, {"branch": "Civil"}, [])

        own = await service.get_application(record.id, Caller(owner_id=OWNER.owner_id, branch="Computer"))
        reviewed = await service.get_application(record.id, Caller(owner_id="hod-1", role="hod", branch="EXTC"))

        assert own.branch == "Computer"
        assert reviewed.branch == "Civil"

    @pytest.mark.asyncio
    async def test_fetch_blob_streams_content(self, service):
        record = await service.submit_with_attachments(FormVariant.UG_2, OWNER.owner_id, {}, [pdf("a.pdf")])

        blob, stream = await service.fetch_blob(blob_ids(record, "documents")[0])
        data = b"".join([chunk async for chunk in stream])

        assert blob.original_name == "a.pdf"
        assert data.startswith(b"%PDF")

    @pytest.mark.asyncio
    async def test_fetch_blob_malformed_id(self, service):
        with pytest.raises(ValidationError):
            await service.fetch_blob("../etc/passwd")

    @pytest.mark.asyncio
    async def test_fetch_blob_missing(self, service):
        with pytest.raises(NotFound):
            await service.fetch_blob("0" * 32)


class TestStatusFilter:

    def test_blank_means_no_filter(self):
        assert parse_status_filter(None) is None
        assert parse_status_filter("  ") is None

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            parse_status_filter("archived")
