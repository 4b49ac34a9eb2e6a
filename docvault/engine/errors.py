"""
DocVault Error Hierarchy — Structured exceptions for the vault services.

Every error carries a message plus free-form context so it can be logged
server-side as JSON without ever being echoed to a client.

Hierarchy:
    DocVaultError
    ├── DocVaultSecurityError     — Policy denied the action (403)
    ├── DocVaultSessionError      — No usable identity (401)
    ├── DocVaultValidationError   — Missing / malformed input (400)
    ├── DocVaultNotFoundError     — Target file or user absent (404)
    ├── DocVaultStorageError      — Store adapter failure (500)
    │   └── StorageNotFoundError  — Storage key has no bytes behind it
    ├── DocVaultRecordError       — Persistence failure (500)
    └── DocVaultConfigError       — Invalid configuration at startup
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class DocVaultError(Exception):
    """Base error for all DocVault failures."""

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.user_id: Optional[Any] = context.get("user_id")
        self.object_ref: Optional[str] = context.get("object_ref")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict for server-side logs."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "user_id": self.user_id,
            "object_ref": self.object_ref,
            "status_code": self.status_code,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("user_id", "object_ref")
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.object_ref:
            parts.append(f"object_ref={self.object_ref}")
        if self.user_id is not None:
            parts.append(f"user_id={self.user_id}")
        return " | ".join(parts)


class DocVaultSecurityError(DocVaultError):
    """
    Access denied by the access policy.
    Carries the decision reason so audit logs can tell denials apart.
    """

    status_code = 403
    public_message = "Access denied"

    def __init__(self, message: str, **context: Any):
        self.reason: Optional[str] = context.get("reason")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["reason"] = self.reason
        return d


class DocVaultSessionError(DocVaultError):
    """No identity assertion, or the asserted identity is unusable."""

    status_code = 401
    public_message = "Authentication required"


class DocVaultValidationError(DocVaultError):
    """
    Input validation failed (missing field, bad MIME type, oversize file).
    The message is safe to return to the caller.
    """

    status_code = 400
    public_message = "Invalid request"

    def __init__(self, message: str, **context: Any):
        self.field: Optional[str] = context.get("field")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["field"] = self.field
        return d


class DocVaultNotFoundError(DocVaultError):
    """Target upload, user or application does not exist."""

    status_code = 404
    public_message = "Not found"


class DocVaultStorageError(DocVaultError):
    """Store adapter failed (write, read, delete or signed-url generation)."""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str, **context: Any):
        self.backend: Optional[str] = context.get("backend")
        self.storage_key: Optional[str] = context.get("storage_key")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["backend"] = self.backend
        d["storage_key"] = self.storage_key
        return d


class StorageNotFoundError(DocVaultStorageError):
    """No bytes are stored under the requested key."""

    status_code = 404
    public_message = "File not found"


class DocVaultRecordError(DocVaultError):
    """Persistence operation failed (create, update, delete, query)."""

    def __init__(self, message: str, **context: Any):
        self.record_type: Optional[str] = context.get("record_type")
        self.operation: Optional[str] = context.get("operation")
        super().__init__(message, **context)


class DocVaultConfigError(DocVaultError):
    """Configuration error — invalid docvault.yaml or missing environment."""
    pass
