"""
DocVault File Delivery Service — Proxy stored bytes to authorized callers.

serve() walks a fixed sequence of stages; the first failing stage decides
the response:

    RESOLVE_IDENTITY   → 401  no usable identity assertion
    CHECK_APPROVAL     → 401  identity is not APPROVED
    CHECK_FILE_ACCESS  → 403  no file record for the key, or policy DENY
    LOCATE             → 404  record exists but the store has no bytes
    SERVE              → 200  bytes + hardened headers

Anything unexpected becomes INTERNAL_ERROR (500) with a generic body.
Storage keys never leave the server inside an error body.
"""

from __future__ import annotations

import enum
import json
import logging
import posixpath
from dataclasses import dataclass, field
from typing import Dict, Optional

from sqlalchemy.orm import sessionmaker

from docvault.db.models import Upload
from docvault.documents.models import FileReference
from docvault.engine.errors import StorageNotFoundError
from docvault.engine.logging import log, log_file_access, log_security_event
from docvault.security.identity import Identity, IdentityResolver, RequestContext
from docvault.security.policy import AccessPolicy, Action
from docvault.storage.base import FileStore

logger = logging.getLogger("docvault.documents.delivery")

CONTENT_TYPES: Dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".txt": "text/plain",
    ".mp4": "video/mp4",
    ".m4v": "video/mp4",
    ".webm": "video/webm",
    ".ogg": "video/ogg",
    ".ogv": "video/ogg",
    ".mov": "video/quicktime",
    ".qt": "video/quicktime",
    ".avi": "video/x-msvideo",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

NO_CACHE_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "X-Content-Type-Options": "nosniff",
}


class DeliveryStage(str, enum.Enum):
    RESOLVE_IDENTITY = "RESOLVE_IDENTITY"
    CHECK_APPROVAL = "CHECK_APPROVAL"
    CHECK_FILE_ACCESS = "CHECK_FILE_ACCESS"
    LOCATE = "LOCATE"
    SERVE = "SERVE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# stage → (status, public message) for terminal failures
STAGE_ERRORS: Dict[DeliveryStage, tuple] = {
    DeliveryStage.RESOLVE_IDENTITY: (401, "Authentication required"),
    DeliveryStage.CHECK_APPROVAL: (401, "User not found or not approved"),
    DeliveryStage.CHECK_FILE_ACCESS: (403, "Access denied"),
    DeliveryStage.LOCATE: (404, "File not found"),
    DeliveryStage.INTERNAL_ERROR: (500, "Internal server error"),
}


def content_type_for(name: str) -> str:
    """Static extension lookup; unknown extensions are served as octet-stream."""
    ext = posixpath.splitext(name)[1].lower()
    return CONTENT_TYPES.get(ext, DEFAULT_CONTENT_TYPE)


@dataclass
class DeliveryResult:
    """Framework-neutral response produced by FileDeliveryService.serve()."""

    status_code: int
    stage: DeliveryStage
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status_code == 200

    @classmethod
    def failure(cls, stage: DeliveryStage) -> "DeliveryResult":
        status, message = STAGE_ERRORS[stage]
        return cls(
            status_code=status,
            stage=stage,
            body=json.dumps({"error": message}).encode("utf-8"),
            headers={"Content-Type": "application/json", **NO_CACHE_HEADERS},
        )


class FileDeliveryService:
    """
    Serves stored files through the application.

    Holds no per-request state; every call resolves identity, looks up the
    file record and evaluates policy afresh.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        resolver: IdentityResolver,
        policy: AccessPolicy,
        store: FileStore,
    ):
        self._session_factory = session_factory
        self._resolver = resolver
        self._policy = policy
        self._store = store

    def serve(self, storage_key: str, ctx: RequestContext) -> DeliveryResult:
        try:
            return self._serve(storage_key, ctx)
        except Exception:
            logger.exception(f"Unexpected error serving {storage_key}")
            return DeliveryResult.failure(DeliveryStage.INTERNAL_ERROR)

    def _serve(self, storage_key: str, ctx: RequestContext) -> DeliveryResult:
        caller = self._resolver.resolve(ctx)
        if not isinstance(caller, Identity):
            self._deny(storage_key, ctx, None, "UNAUTHENTICATED")
            return DeliveryResult.failure(DeliveryStage.RESOLVE_IDENTITY)

        if not caller.is_approved:
            self._deny(storage_key, ctx, caller, "NOT_APPROVED")
            return DeliveryResult.failure(DeliveryStage.CHECK_APPROVAL)

        file_ref = self.find_reference(storage_key)
        decision = self._policy.evaluate(Action.READ, caller, file_ref)
        if not decision:
            # Unknown keys and policy denials are indistinguishable to the caller.
            self._deny(storage_key, ctx, caller, decision.reason.value)
            return DeliveryResult.failure(DeliveryStage.CHECK_FILE_ACCESS)

        try:
            data = self._store.read(storage_key)
        except StorageNotFoundError:
            logger.warning(f"File record {storage_key} has no stored bytes ({self._store.backend_name})")
            log(log_file_access(storage_key, caller.id, 404))
            return DeliveryResult.failure(DeliveryStage.LOCATE)

        content_type = content_type_for(storage_key)
        headers = {
            "Content-Type": content_type,
            "Content-Length": str(len(data)),
            "Content-Disposition": f'inline; filename="{posixpath.basename(storage_key)}"',
            **NO_CACHE_HEADERS,
        }
        log(log_file_access(storage_key, caller.id, 200, size_bytes=len(data), content_type=content_type))
        return DeliveryResult(status_code=200, stage=DeliveryStage.SERVE, body=data, headers=headers)

    def find_reference(self, storage_key: str) -> Optional[FileReference]:
        """Look up the file record for a storage key, or None."""
        session = self._session_factory()
        try:
            upload = session.query(Upload).filter(Upload.storage_key == storage_key).first()
            return FileReference.from_upload(upload) if upload is not None else None
        finally:
            session.close()

    def _deny(self, storage_key: str, ctx: RequestContext, caller: Optional[Identity], reason: str) -> None:
        log(log_security_event(
            event="file_access_denied",
            object_ref=storage_key,
            action=Action.READ.value,
            reason=reason,
            user_id=caller.id if caller else None,
            role=caller.role.value if caller else None,
            client_ip=ctx.client_ip,
        ))
