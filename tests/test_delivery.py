"""Unit tests for docvault.documents.delivery — the read path state machine."""

import json
from unittest.mock import MagicMock

import pytest

from docvault.documents.delivery import (
    DeliveryStage,
    FileDeliveryService,
    content_type_for,
)
from docvault.engine.errors import DocVaultStorageError
from docvault.engine.logging import FileLogger
from docvault.security.policy import AccessPolicy

from samples import PDF_BYTES

APPROVED_EMAILS = ["alice@example.com", "bob@example.com", "mia@example.com", "root@example.com"]


def _error(result):
    return json.loads(result.body)["error"]


class TestContentTypes:

    @pytest.mark.parametrize("name, expected", [
        ("k_photo.JPG", "image/jpeg"),
        ("k_photo.jpeg", "image/jpeg"),
        ("k_img.png", "image/png"),
        ("k_anim.gif", "image/gif"),
        ("k_invoice.pdf", "application/pdf"),
        ("k_letter.docx", "application/vnd.openxmlformats-officedocument.wordprocessingml.document"),
        ("k_notes.txt", "text/plain"),
        ("k_clip.mp4", "video/mp4"),
        ("k_clip.mov", "video/quicktime"),
        ("k_clip.avi", "video/x-msvideo"),
        ("k_image.webp", "image/webp"),
        ("k_clip.m4v", "video/mp4"),
        ("k_clip.webm", "video/webm"),
        ("k_clip.ogg", "video/ogg"),
        ("k_clip.ogv", "video/ogg"),
        ("k_clip.qt", "video/quicktime"),
        ("k_archive.zip", "application/octet-stream"),
        ("k_noext", "application/octet-stream"),
    ])
    def test_static_table(self, name, expected):
        assert content_type_for(name) == expected


class TestServe:

    def test_unauthenticated_gets_401(self, delivery, stored_file, make_ctx):
        for ctx in (make_ctx(), make_ctx("unknown@example.com"), make_ctx("ghost@example.com")):
            result = delivery.serve(stored_file.storage_key, ctx)
            assert result.status_code == 401
            assert result.stage == DeliveryStage.RESOLVE_IDENTITY
            assert PDF_BYTES not in result.body

    @pytest.mark.parametrize("email", ["paula@example.com", "rex@example.com", "pete@example.com"])
    def test_unapproved_never_gets_bytes(self, delivery, stored_file, make_ctx, email):
        result = delivery.serve(stored_file.storage_key, make_ctx(email))
        assert result.status_code == 401
        assert result.stage == DeliveryStage.CHECK_APPROVAL
        assert PDF_BYTES not in result.body

    @pytest.mark.parametrize("email", APPROVED_EMAILS)
    def test_any_approved_identity_reads_any_file(self, delivery, stored_file, make_ctx, email):
        result = delivery.serve(stored_file.storage_key, make_ctx(email))
        assert result.status_code == 200
        assert result.stage == DeliveryStage.SERVE
        assert result.body == PDF_BYTES
        assert result.headers["Content-Type"] == "application/pdf"

    def test_success_headers(self, delivery, stored_file, make_ctx):
        result = delivery.serve(stored_file.storage_key, make_ctx("alice@example.com"))
        assert result.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"
        assert result.headers["Pragma"] == "no-cache"
        assert result.headers["Expires"] == "0"
        assert result.headers["X-Content-Type-Options"] == "nosniff"
        assert result.headers["Content-Length"] == str(len(PDF_BYTES))
        assert result.headers["Content-Disposition"] == f'inline; filename="{stored_file.storage_key}"'

    def test_unknown_key_is_forbidden_not_missing(self, delivery, users, make_ctx):
        result = delivery.serve("0" * 32 + "_nothing.png", make_ctx("alice@example.com"))
        assert result.status_code == 403
        assert result.stage == DeliveryStage.CHECK_FILE_ACCESS
        assert _error(result) == "Access denied"

    def test_traversal_key_is_forbidden(self, delivery, users, make_ctx):
        result = delivery.serve("../../etc/passwd", make_ctx("alice@example.com"))
        assert result.status_code == 403

    def test_record_without_bytes_is_404(self, delivery, store, stored_file, make_ctx):
        store.delete(stored_file.storage_key)
        result = delivery.serve(stored_file.storage_key, make_ctx("bob@example.com"))
        assert result.status_code == 404
        assert result.stage == DeliveryStage.LOCATE
        assert stored_file.storage_key not in result.body.decode()

    def test_storage_failure_fails_closed(self, session_factory, resolver, stored_file, make_ctx):
        broken = MagicMock()
        broken.backend_name = "local"
        broken.read.side_effect = DocVaultStorageError("disk on fire", backend="local")
        service = FileDeliveryService(session_factory, resolver, AccessPolicy(), broken)

        result = service.serve(stored_file.storage_key, make_ctx("alice@example.com"))
        assert result.status_code == 500
        assert result.stage == DeliveryStage.INTERNAL_ERROR
        assert _error(result) == "Internal server error"
        assert "disk on fire" not in result.body.decode()

    def test_unexpected_error_fails_closed(self, session_factory, stored_file, make_ctx):
        resolver = MagicMock()
        resolver.resolve.side_effect = RuntimeError("db gone")
        service = FileDeliveryService(session_factory, resolver, AccessPolicy(), MagicMock())
        result = service.serve(stored_file.storage_key, make_ctx("alice@example.com"))
        assert result.status_code == 500
        assert not result.ok

    def test_every_failure_body_is_json_error(self, delivery, stored_file, make_ctx):
        result = delivery.serve(stored_file.storage_key, make_ctx())
        assert result.headers["Content-Type"] == "application/json"
        assert _error(result) == "Authentication required"


class TestDeliveryEvents:

    def test_denials_and_reads_are_logged(self, tmp_path, delivery, stored_file, make_ctx):
        import docvault.engine.logging as log_mod

        log_mod._file_logger = FileLogger(str(tmp_path / "events"))
        delivery.serve(stored_file.storage_key, make_ctx("paula@example.com"))
        delivery.serve(stored_file.storage_key, make_ctx("bob@example.com"))

        denied = log_mod._file_logger.read("access", "security")
        served = log_mod._file_logger.read("access", "execution")
        assert denied[0]["reason"] == "NOT_APPROVED"
        assert denied[0]["client_ip"] == "10.0.0.1"
        assert served[0]["event"] == "file_served"
        assert served[0]["size_bytes"] == len(PDF_BYTES)
