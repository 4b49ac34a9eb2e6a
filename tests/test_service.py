"""Unit tests for docvault.documents.service — uploads, mutations, listings, view links."""

from unittest.mock import MagicMock

import pytest

from docvault.db.models import ActivityLog, Upload, User
from docvault.documents.models import FileKind, UploadedFile
from docvault.documents.service import DocumentService
from docvault.engine.errors import (
    DocVaultNotFoundError,
    DocVaultSecurityError,
    DocVaultSessionError,
    DocVaultStorageError,
    DocVaultValidationError,
)
from docvault.security.identity import UNAUTHENTICATED
from docvault.storage.base import SignedUrlPolicy

from samples import PDF_BYTES, PNG_BYTES


def _count(session_factory, model):
    session = session_factory()
    try:
        return session.query(model).count()
    finally:
        session.close()


def _actions(session_factory):
    session = session_factory()
    try:
        return [row.action for row in session.query(ActivityLog).order_by(ActivityLog.id).all()]
    finally:
        session.close()


class TestInvoiceScenario:
    """Customer A's invoice: broad read for everyone approved, delete only for A and staff."""

    def test_scenario(self, documents, delivery, stored_file, users, make_ctx):
        manager_read = delivery.serve(stored_file.storage_key, make_ctx("mia@example.com"))
        assert manager_read.status_code == 200
        assert manager_read.body == PDF_BYTES

        other_customer_read = delivery.serve(stored_file.storage_key, make_ctx("bob@example.com"))
        assert other_customer_read.status_code == 200

        with pytest.raises(DocVaultSecurityError) as exc_info:
            documents.delete_upload(stored_file.id, users["customer_b"].id)
        assert exc_info.value.status_code == 403
        assert exc_info.value.reason == "NOT_OWNER"

        assert documents.delete_upload(stored_file.id, users["customer_a"].id)["success"] is True

    def test_uploaded_invoice_end_to_end(self, documents, delivery, users, make_ctx):
        invoice = UploadedFile(filename="invoice.pdf", content_type="application/pdf", data=PDF_BYTES)
        receipt = documents.upload_for_self(users["customer_a"], invoice)
        assert receipt.file_kind == FileKind.IMAGE
        assert receipt.storage_key.endswith("_invoice.pdf")

        for email in ("mia@example.com", "bob@example.com"):
            result = delivery.serve(receipt.storage_key, make_ctx(email))
            assert result.status_code == 200
            assert result.headers["Content-Type"] == "application/pdf"
            assert result.body == PDF_BYTES

        with pytest.raises(DocVaultSecurityError) as exc_info:
            documents.delete_upload(receipt.upload_id, users["customer_b"].id)
        assert exc_info.value.status_code == 403


class TestSelfUpload:

    def test_customer_upload_creates_record_and_activity(
        self, documents, session_factory, store, users, png_file
    ):
        receipt = documents.upload_for_self(users["customer_a"], png_file)
        assert receipt.file_kind == FileKind.IMAGE
        assert receipt.locator == f"/api/secure-file/{receipt.storage_key}"
        assert receipt.storage_key.endswith("_photo.png")
        assert store.read(receipt.storage_key) == PNG_BYTES

        session = session_factory()
        upload = session.get(Upload, receipt.upload_id)
        assert upload.user_id == users["customer_a"].id
        assert upload.locator == receipt.locator
        session.close()
        assert _actions(session_factory) == ["UPLOAD"]

    def test_video_kind(self, documents, users, mp4_file):
        assert documents.upload_for_self(users["customer_a"], mp4_file).file_kind == FileKind.VIDEO

    def test_unauthenticated(self, documents, png_file):
        with pytest.raises(DocVaultSessionError):
            documents.upload_for_self(UNAUTHENTICATED, png_file)

    def test_pending_customer_denied(self, documents, users, png_file):
        with pytest.raises(DocVaultSecurityError) as exc_info:
            documents.upload_for_self(users["pending_customer"], png_file)
        assert exc_info.value.reason == "NOT_APPROVED"

    def test_manager_cannot_self_upload(self, documents, users, png_file):
        with pytest.raises(DocVaultSecurityError) as exc_info:
            documents.upload_for_self(users["manager"], png_file)
        assert exc_info.value.reason == "INVALID_TARGET"

    def test_invalid_file_persists_nothing(self, documents, session_factory, store, users):
        empty = UploadedFile(filename="invoice.pdf", content_type="application/pdf", data=b"")
        with pytest.raises(DocVaultValidationError, match="Empty file"):
            documents.upload_for_self(users["customer_a"], empty)
        assert _count(session_factory, Upload) == 0
        assert list(store.root.iterdir()) == []

    def test_long_filename_rejected(self, documents, session_factory, users):
        named = UploadedFile(filename="x" * 300 + ".png", content_type="image/png", data=PNG_BYTES)
        with pytest.raises(DocVaultValidationError, match="File name too long"):
            documents.upload_for_self(users["customer_a"], named)
        assert _count(session_factory, Upload) == 0

    def test_storage_failure_persists_nothing(self, session_factory, resolver, recorder, users, png_file):
        broken = MagicMock()
        broken.store.side_effect = DocVaultStorageError("bucket unavailable", backend="remote")
        service = DocumentService(session_factory, broken, resolver, recorder)
        with pytest.raises(DocVaultStorageError):
            service.upload_for_self(users["customer_a"], png_file)
        assert _count(session_factory, Upload) == 0
        assert _count(session_factory, ActivityLog) == 0

    def test_locator_failure_removes_bytes(self, session_factory, resolver, recorder, users, png_file):
        broken = MagicMock()
        broken.store.return_value = "a" * 32 + "_photo.png"
        broken.locator.side_effect = DocVaultStorageError("sign failed", backend="remote")
        service = DocumentService(session_factory, broken, resolver, recorder)
        with pytest.raises(DocVaultStorageError):
            service.upload_for_self(users["customer_a"], png_file)
        broken.delete.assert_called_once_with("a" * 32 + "_photo.png")
        assert _count(session_factory, Upload) == 0

    def test_remote_locator_uses_canonical_policy(self, session_factory, resolver, recorder, users, png_file):
        remote = MagicMock()
        remote.store.return_value = "b" * 32 + "_photo.png"
        remote.locator.return_value = "https://cdn.example.com/signed?token=abc"
        service = DocumentService(session_factory, remote, resolver, recorder)
        receipt = service.upload_for_self(users["customer_a"], png_file)
        remote.locator.assert_called_once_with("b" * 32 + "_photo.png", SignedUrlPolicy.CANONICAL)
        assert receipt.locator == "https://cdn.example.com/signed?token=abc"

    def test_activity_failure_does_not_undo_upload(self, session_factory, store, resolver, users, png_file):
        recorder = MagicMock()
        recorder.try_record.return_value = False
        service = DocumentService(session_factory, store, resolver, recorder)
        receipt = service.upload_for_self(users["customer_a"], png_file)
        assert store.exists(receipt.storage_key)
        assert _count(session_factory, Upload) == 1


class TestManagerUpload:

    def test_existing_customer(self, documents, session_factory, users, png_file):
        receipt = documents.upload_for_customer(users["manager"], "bob@example.com", png_file)
        session = session_factory()
        assert session.get(Upload, receipt.upload_id).user_id == users["customer_b"].id
        session.close()
        assert _actions(session_factory) == ["MANAGER_UPLOAD"]

    def test_unknown_customer_is_created_approved(self, documents, session_factory, users, png_file):
        receipt = documents.upload_for_customer(users["manager"], "new.client@example.com", png_file)
        session = session_factory()
        customer = session.query(User).filter(User.email == "new.client@example.com").one()
        assert customer.role == "CUSTOMER"
        assert customer.status == "APPROVED"
        assert customer.password_hash == ""
        assert customer.name == "new.client"
        assert session.get(Upload, receipt.upload_id).user_id == customer.id
        session.close()

    def test_manager_target_rejected(self, documents, session_factory, users, png_file):
        with pytest.raises(DocVaultSecurityError) as exc_info:
            documents.upload_for_customer(users["manager"], "pete@example.com", png_file)
        assert exc_info.value.reason == "INVALID_TARGET"
        assert _count(session_factory, Upload) == 0

    def test_pending_manager_denied(self, documents, users, png_file):
        with pytest.raises(DocVaultSecurityError):
            documents.upload_for_customer(users["pending_manager"], "bob@example.com", png_file)

    def test_customer_cannot_upload_for_others(self, documents, users, png_file):
        with pytest.raises(DocVaultSecurityError):
            documents.upload_for_customer(users["customer_a"], "bob@example.com", png_file)

    def test_unauthenticated_manager(self, documents, png_file):
        with pytest.raises(DocVaultSessionError):
            documents.upload_for_customer(UNAUTHENTICATED, "bob@example.com", png_file)

    @pytest.mark.parametrize("email, message", [
        (None, "Missing customer email"),
        ("", "Missing customer email"),
        ("not-an-email", "Invalid customer email format"),
    ])
    def test_customer_email_validation(self, documents, users, png_file, email, message):
        with pytest.raises(DocVaultValidationError, match=message):
            documents.upload_for_customer(users["manager"], email, png_file)

    def test_invalid_file_creates_no_customer(self, documents, session_factory, users):
        bad = UploadedFile(filename="x.png", content_type="image/png", data=b"nope")
        with pytest.raises(DocVaultValidationError):
            documents.upload_for_customer(users["manager"], "new.client@example.com", bad)
        session = session_factory()
        assert session.query(User).filter(User.email == "new.client@example.com").first() is None
        session.close()

    def test_notifier_called_and_failures_swallowed(
        self, session_factory, store, resolver, recorder, users, png_file
    ):
        notifier = MagicMock()
        notifier.file_uploaded.side_effect = RuntimeError("smtp down")
        service = DocumentService(session_factory, store, resolver, recorder, notifier=notifier)
        receipt = service.upload_for_customer(users["manager"], "bob@example.com", png_file)
        assert receipt.upload_id
        args = notifier.file_uploaded.call_args[0]
        assert args[0] == "bob@example.com"
        assert args[3] == FileKind.IMAGE
        assert args[5] == "Manager"


class TestMutations:

    def test_owner_deletes_record_and_bytes(self, documents, session_factory, store, stored_file, users):
        result = documents.delete_upload(stored_file.id, users["customer_a"].id)
        assert result == {"success": True, "message": "Upload deleted successfully"}
        assert _count(session_factory, Upload) == 0
        assert not store.exists(stored_file.storage_key)
        assert _actions(session_factory) == ["DELETE"]

    @pytest.mark.parametrize("who", ["manager", "admin"])
    def test_staff_delete(self, documents, stored_file, users, who):
        assert documents.delete_upload(stored_file.id, users[who].id)["success"] is True

    def test_pending_manager_cannot_delete(self, documents, stored_file, users):
        with pytest.raises(DocVaultSecurityError):
            documents.delete_upload(stored_file.id, users["pending_manager"].id)

    def test_missing_upload(self, documents, users):
        with pytest.raises(DocVaultNotFoundError):
            documents.delete_upload(424242, users["admin"].id)

    def test_unknown_performer(self, documents, stored_file):
        with pytest.raises(DocVaultSessionError):
            documents.delete_upload(stored_file.id, None)
        with pytest.raises(DocVaultSessionError):
            documents.delete_upload(stored_file.id, 99999)

    def test_title_update(self, documents, session_factory, stored_file, users):
        result = documents.update_title(stored_file.id, "  March invoice ", users["customer_a"].id)
        assert result["success"] is True
        assert result["upload"]["title"] == "March invoice"
        assert result["upload"]["storageKey"] == stored_file.storage_key
        assert _actions(session_factory) == ["TITLE_UPDATE"]

    def test_title_update_by_other_customer_denied(self, documents, stored_file, users):
        with pytest.raises(DocVaultSecurityError):
            documents.update_title(stored_file.id, "mine now", users["customer_b"].id)

    def test_title_too_long(self, documents, stored_file, users):
        with pytest.raises(DocVaultValidationError):
            documents.update_title(stored_file.id, "x" * 300, users["customer_a"].id)


class TestReads:

    def test_list_own_uploads_newest_first(self, documents, users, png_file, mp4_file):
        first = documents.upload_for_self(users["customer_a"], png_file)
        second = documents.upload_for_self(users["customer_a"], mp4_file)
        documents.upload_for_customer(users["manager"], "bob@example.com", png_file)

        listing = documents.list_uploads(users["customer_a"])
        assert listing["user"]["uploadCount"] == 2
        assert [u["id"] for u in listing["uploads"]] == [second.upload_id, first.upload_id]
        assert listing["uploads"][0]["imagePath"] == second.locator

    def test_list_requires_identity(self, documents):
        with pytest.raises(DocVaultSessionError):
            documents.list_uploads(UNAUTHENTICATED)

    def test_view_link_local(self, documents, stored_file, users):
        link = documents.view_link(users["customer_b"], stored_file.storage_key)
        assert link == f"/api/secure-file/{stored_file.storage_key}"

    def test_view_link_uses_view_policy(self, session_factory, resolver, recorder, stored_file, users):
        remote = MagicMock()
        remote.locator.return_value = "https://signed/short"
        service = DocumentService(session_factory, remote, resolver, recorder)
        assert service.view_link(users["admin"], stored_file.storage_key) == "https://signed/short"
        remote.locator.assert_called_once_with(stored_file.storage_key, SignedUrlPolicy.VIEW)

    def test_view_link_unknown_key_is_forbidden(self, documents, users):
        with pytest.raises(DocVaultSecurityError):
            documents.view_link(users["admin"], "0" * 32 + "_nope.png")

    def test_view_link_requires_approval(self, documents, stored_file, users):
        with pytest.raises(DocVaultSecurityError):
            documents.view_link(users["pending_customer"], stored_file.storage_key)

    def test_view_link_requires_name(self, documents, users):
        with pytest.raises(DocVaultValidationError):
            documents.view_link(users["admin"], "")


class TestStaffListings:

    def test_all_users_with_uploads(self, documents, stored_file, users):
        listed = documents.list_users_with_uploads()
        assert [u["name"] for u in listed] == ["alice", "bob", "mia", "paula", "pete", "rex", "root"]
        alice = listed[0]
        assert alice["status"] == "APPROVED"
        assert [u["storageKey"] for u in alice["uploads"]] == [stored_file.storage_key]
        assert listed[1]["uploads"] == []

    def test_managers_left_out(self, documents, users):
        listed = documents.list_users_with_uploads(include_managers=False)
        assert "MANAGER" not in {u["role"] for u in listed}
        assert all("status" not in u for u in listed)

    def test_single_user(self, documents, stored_file, users, png_file):
        receipt = documents.upload_for_self(users["customer_a"], png_file)
        detail = documents.get_user_uploads(users["customer_a"].id)
        assert detail["user"]["email"] == "alice@example.com"
        assert "uploads" not in detail["user"]
        assert {u["id"] for u in detail["uploads"]} == {receipt.upload_id, stored_file.id}

    def test_single_user_missing(self, documents):
        with pytest.raises(DocVaultNotFoundError):
            documents.get_user_uploads(404)
