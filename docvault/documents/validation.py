"""
DocVault Upload Validation — size, MIME type, extension and magic bytes.

Checks run in order and stop at the first failure:
1. Non-empty filename (at most 255 characters) and payload
2. Size against uploads.max_upload_size_mb
3. Declared MIME type against the image/video allow-lists
4. File extension belongs to the declared MIME type
5. Leading bytes match the declared type (JPEG, PNG, GIF, WebP, MP4, WebM)

Customer self-uploads stop after step 2 and may carry any type; manager
uploads run every step.

Every failure raises DocVaultValidationError with a message that is safe
to return to the caller.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Tuple

from docvault.documents.models import FileKind, UploadedFile
from docvault.engine.config import UploadsConfig
from docvault.engine.errors import DocVaultValidationError

logger = logging.getLogger("docvault.documents.validation")

MIN_HEADER_BYTES = 8
MAX_FILENAME_LENGTH = 255

# MIME type → accepted filename extensions
MIME_EXTENSIONS: Dict[str, Tuple[str, ...]] = {
    "image/jpeg": (".jpg", ".jpeg"),
    "image/jpg": (".jpg", ".jpeg"),
    "image/png": (".png",),
    "image/gif": (".gif",),
    "image/webp": (".webp",),
    "video/mp4": (".mp4", ".m4v"),
    "video/webm": (".webm",),
    "video/ogg": (".ogg", ".ogv"),
    "video/quicktime": (".mov", ".qt"),
}


# ---------------------------------------------------------------------------
# Magic-byte signatures
# ---------------------------------------------------------------------------

def _is_jpeg(header: bytes) -> bool:
    return header[:2] == b"\xff\xd8"


def _is_png(header: bytes) -> bool:
    return header[:4] == b"\x89PNG"


def _is_gif(header: bytes) -> bool:
    return header[:3] == b"GIF"


def _is_webp(header: bytes) -> bool:
    return header[:4] == b"RIFF" and header[8:12] == b"WEBP"


def _is_mp4(header: bytes) -> bool:
    return header[4:8] == b"ftyp"


def _is_webm(header: bytes) -> bool:
    return header[:4] == b"\x1a\x45\xdf\xa3"


SIGNATURES: Dict[str, Callable[[bytes], bool]] = {
    "image/jpeg": _is_jpeg,
    "image/jpg": _is_jpeg,
    "image/png": _is_png,
    "image/gif": _is_gif,
    "image/webp": _is_webp,
    "video/mp4": _is_mp4,
    "video/webm": _is_webm,
}


def matches_signature(data: bytes, mime_type: str) -> bool:
    """
    Check the leading bytes against the signature for `mime_type`.

    Buffers shorter than 8 bytes never match. Types without a known
    signature (ogg, quicktime) are accepted.
    """
    if len(data) < MIN_HEADER_BYTES:
        return False
    check = SIGNATURES.get(mime_type)
    if check is None:
        return True
    return check(data[:16])


def file_kind_for(mime_type: str) -> FileKind:
    """VIDEO for video/* types; everything else is filed as IMAGE."""
    return FileKind.VIDEO if mime_type.startswith("video/") else FileKind.IMAGE


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------

class UploadValidator:
    """
    Validates inbound files against UploadsConfig.

    validate_basic() is the customer self-upload gate: presence, size and
    filename length only. validate() adds the image/video allow-list, the
    extension check and the magic-byte check used for manager uploads.
    """

    def __init__(self, config: Optional[UploadsConfig] = None):
        self._config = config or UploadsConfig()

    @property
    def max_bytes(self) -> int:
        return self._config.max_upload_bytes

    def validate_basic(self, file: Optional[UploadedFile]) -> FileKind:
        """
        Check presence, size and filename length; any declared type passes.

        Raises:
            DocVaultValidationError on the first failed check.
        """
        if file is None or not file.filename:
            raise DocVaultValidationError("Missing file", field="document")

        if len(file.filename) > MAX_FILENAME_LENGTH:
            raise DocVaultValidationError(
                f"File name too long. Maximum length is {MAX_FILENAME_LENGTH} characters",
                field="document",
            )

        if file.size == 0:
            raise DocVaultValidationError("Empty file", field="document")

        if file.size > self.max_bytes:
            raise DocVaultValidationError(
                f"File too large. Maximum size is {self._config.max_upload_size_mb}MB",
                field="document",
                size=file.size,
            )

        return file_kind_for((file.content_type or "").lower())

    def validate(self, file: Optional[UploadedFile]) -> FileKind:
        """
        Full validation for image/video uploads.

        Raises:
            DocVaultValidationError on the first failed check.
        """
        self.validate_basic(file)

        mime_type = (file.content_type or "").lower()
        if mime_type not in self._config.allowed_types:
            raise DocVaultValidationError(
                "Invalid file type. Only images and videos are allowed.",
                field="document",
                mime_type=mime_type,
            )

        name = file.filename.lower()
        extensions = MIME_EXTENSIONS.get(mime_type) or ("." + mime_type.split("/")[-1],)
        if not name.endswith(extensions):
            raise DocVaultValidationError(
                "Invalid file extension", field="document", mime_type=mime_type
            )

        if not matches_signature(file.data, mime_type):
            logger.info(f"Rejected upload '{file.filename}': content does not match {mime_type}")
            raise DocVaultValidationError(
                "Invalid file content", field="document", mime_type=mime_type
            )

        return file_kind_for(mime_type)
