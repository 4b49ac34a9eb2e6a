"""
DocVault Document Models — Pydantic views over stored uploads.

FileReference is what the access policy and delivery service see: the
owner, the immutable storage key and the one mutable field (title).
UploadedFile is the validated inbound payload handed to the store.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from docvault.db.models import Upload


class FileKind(str, enum.Enum):
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"


class FileReference(BaseModel):
    """A stored file as seen by the access policy. Storage key never changes."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    storage_key: str = Field(max_length=300)
    owner_user_id: int
    file_kind: FileKind = FileKind.IMAGE
    display_title: Optional[str] = None
    original_name: str
    locator: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_upload(cls, upload: Upload) -> "FileReference":
        return cls(
            id=upload.id,
            storage_key=upload.storage_key,
            owner_user_id=upload.user_id,
            file_kind=FileKind(upload.file_type),
            display_title=upload.title,
            original_name=upload.name,
            locator=upload.locator,
            created_at=upload.created_at,
        )


class UploadedFile(BaseModel):
    """Inbound file bytes plus the metadata the client sent with them."""

    filename: str
    content_type: str = "application/octet-stream"
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)
