"""
DocVault Document Service — Uploads, mutations and listings of stored files.

Handles:
- Customer self-upload and manager upload on behalf of a customer
- Title update and hard delete by an explicit performer
- Listing the caller's own uploads and staff listings of users with uploads
- Short-lived view links

Upload lifecycle (each step only runs if the previous one succeeded):
    policy → validation → store bytes → canonical locator → file record → activity

A failure before the file record is created leaves nothing persisted.
Activity and notification failures are logged and never undo an upload.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from docvault.activity.recorder import ActivityAction, ActivityRecorder
from docvault.db.models import Upload, User
from docvault.db.session import session_scope
from docvault.documents.models import FileKind, FileReference, UploadedFile
from docvault.documents.validation import UploadValidator
from docvault.engine.errors import (
    DocVaultError,
    DocVaultNotFoundError,
    DocVaultRecordError,
    DocVaultSecurityError,
    DocVaultSessionError,
    DocVaultValidationError,
)
from docvault.engine.logging import log, log_security_event
from docvault.security.identity import (
    ApprovalStatus,
    Caller,
    Identity,
    IdentityResolver,
    Role,
)
from docvault.security.policy import AccessPolicy, Action, Decision, Reason
from docvault.storage.base import FileStore, SignedUrlPolicy

logger = logging.getLogger("docvault.documents.service")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_TITLE_LENGTH = 255


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class Notifier(Protocol):
    def file_uploaded(
        self,
        recipient_email: str,
        recipient_name: str,
        file_name: str,
        file_kind: FileKind,
        uploader_name: str,
        uploader_role: str,
    ) -> None:
        ...


class LoggingNotifier:
    """Default notifier: records the notification in the log only."""

    def file_uploaded(
        self,
        recipient_email: str,
        recipient_name: str,
        file_name: str,
        file_kind: FileKind,
        uploader_name: str,
        uploader_role: str,
    ) -> None:
        logger.info(
            f"Notify {recipient_email}: {uploader_role} {uploader_name} uploaded "
            f"{file_kind.value.lower()} '{file_name}'"
        )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class UploadReceipt:
    upload_id: int
    storage_key: str
    locator: str
    file_name: str
    file_size: int
    file_kind: FileKind
    owner_email: str

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["file_kind"] = self.file_kind.value
        return d


def raise_for_decision(decision: Decision, object_ref: str, user_id: Optional[int] = None) -> None:
    """Translate a DENY decision into the matching DocVault error."""
    if decision:
        return
    if decision.reason == Reason.UNAUTHENTICATED:
        raise DocVaultSessionError("Authentication required", object_ref=object_ref)
    if decision.reason == Reason.NOT_FOUND:
        raise DocVaultNotFoundError("Not found", object_ref=object_ref, user_id=user_id)
    raise DocVaultSecurityError(
        "Access denied", object_ref=object_ref, user_id=user_id, reason=decision.reason.value
    )


class DocumentService:
    """
    Upload and mutation operations over the file store and the uploads table.

    One instance per application; holds no per-request state.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        store: FileStore,
        resolver: IdentityResolver,
        recorder: ActivityRecorder,
        policy: Optional[AccessPolicy] = None,
        validator: Optional[UploadValidator] = None,
        notifier: Optional[Notifier] = None,
    ):
        self._session_factory = session_factory
        self._store = store
        self._resolver = resolver
        self._recorder = recorder
        self._policy = policy or AccessPolicy()
        self._validator = validator or UploadValidator()
        self._notifier = notifier or LoggingNotifier()

    # -------------------------------------------------------------------
    # Uploads
    # -------------------------------------------------------------------

    def upload_for_self(self, caller: Caller, file: Optional[UploadedFile]) -> UploadReceipt:
        """
        Customer uploads a file they will own.

        Any file type is accepted; only presence, size and name length are checked.
        """
        decision = self._policy.can_upload(caller, caller)
        self._check(decision, Action.UPLOAD, caller, "self-upload")
        identity: Identity = decision.performer  # type: ignore[assignment]

        file_kind = self._validator.validate_basic(file)
        storage_key, locator = self._put_bytes(file)

        try:
            with session_scope(self._session_factory) as session:
                upload = self._new_upload(storage_key, locator, file, file_kind, identity.id)
                session.add(upload)
                session.flush()
                upload_id = upload.id
        except SQLAlchemyError as e:
            self._discard_bytes(storage_key)
            raise DocVaultRecordError(
                "Failed to create upload record", record_type="upload", operation="create",
                user_id=identity.id, detail=str(e),
            ) from e

        self._recorder.try_record(
            identity.id,
            ActivityAction.UPLOAD,
            f"Uploaded {file_kind.value.lower()}: {file.filename} ({_mb(file.size)}MB)",
        )
        logger.info(f"User {identity.id} uploaded {storage_key}")
        return UploadReceipt(upload_id, storage_key, locator, file.filename, file.size, file_kind, identity.email)

    def upload_for_customer(
        self,
        manager: Caller,
        customer_email: Optional[str],
        file: Optional[UploadedFile],
    ) -> UploadReceipt:
        """
        Manager uploads a file owned by a customer.

        An unknown customer email gets a new APPROVED customer account with
        no password, created in the same transaction as the file record.
        """
        if not isinstance(manager, Identity):
            raise DocVaultSessionError("Manager not authenticated")
        customer_email = (customer_email or "").strip()
        if file is None:
            raise DocVaultValidationError("Missing file", field="document")
        if not customer_email:
            raise DocVaultValidationError("Missing customer email", field="customerEmail")
        if not EMAIL_PATTERN.match(customer_email):
            raise DocVaultValidationError("Invalid customer email format", field="customerEmail")

        existing = self._resolver.resolve_email(customer_email)
        target = existing if isinstance(existing, Identity) else _prospective_customer(customer_email)
        decision = self._policy.can_upload(manager, target)
        self._check(decision, Action.UPLOAD, manager, f"upload-for:{customer_email}")

        file_kind = self._validator.validate(file)
        storage_key, locator = self._put_bytes(file)

        try:
            with session_scope(self._session_factory) as session:
                customer = session.query(User).filter(User.email == customer_email).first()
                if customer is None:
                    customer = User(
                        name=customer_email.split("@")[0],
                        email=customer_email,
                        password_hash="",
                        role=Role.CUSTOMER.value,
                        status=ApprovalStatus.APPROVED.value,
                    )
                    session.add(customer)
                    session.flush()
                    logger.info(f"Created customer account {customer.id} for manager upload")
                elif customer.role != Role.CUSTOMER.value:
                    raise DocVaultSecurityError(
                        "Upload target is not a customer", user_id=manager.id,
                        object_ref=customer_email, reason=Reason.INVALID_TARGET.value,
                    )
                upload = self._new_upload(storage_key, locator, file, file_kind, customer.id)
                session.add(upload)
                session.flush()
                upload_id = upload.id
                customer_name = customer.name
        except DocVaultError:
            self._discard_bytes(storage_key)
            raise
        except SQLAlchemyError as e:
            self._discard_bytes(storage_key)
            raise DocVaultRecordError(
                "Failed to create upload record", record_type="upload", operation="create",
                user_id=manager.id, detail=str(e),
            ) from e

        self._recorder.try_record(
            manager.id,
            ActivityAction.MANAGER_UPLOAD,
            f"Manager uploaded {file_kind.value.lower()} for customer {customer_email}: "
            f"{file.filename} ({_mb(file.size)}MB)",
        )
        try:
            self._notifier.file_uploaded(
                customer_email, customer_name, file.filename, file_kind,
                manager.name or manager.email, "Manager",
            )
        except Exception as e:
            logger.error(f"Upload notification to customer failed: {e}")

        return UploadReceipt(upload_id, storage_key, locator, file.filename, file.size, file_kind, customer_email)

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------

    def delete_upload(self, upload_id: int, performer_id: Optional[int]) -> Dict[str, Any]:
        """Hard-delete the record, then the stored bytes."""
        performer = self._resolver.resolve_id(performer_id)
        file_ref = self.get_reference(upload_id)
        decision = self._policy.can_delete(performer, file_ref)
        self._check(decision, Action.DELETE, performer, f"upload:{upload_id}")

        try:
            with session_scope(self._session_factory) as session:
                upload = session.get(Upload, upload_id)
                if upload is None:
                    raise DocVaultNotFoundError("Upload not found", object_ref=f"upload:{upload_id}")
                session.delete(upload)
        except SQLAlchemyError as e:
            raise DocVaultRecordError(
                "Failed to delete upload", record_type="upload", operation="delete", detail=str(e)
            ) from e

        removed = self._store.delete(file_ref.storage_key)
        if not removed:
            logger.warning(f"Deleted upload {upload_id} had no stored bytes under {file_ref.storage_key}")

        self._recorder.try_record(
            decision.performer.id,
            ActivityAction.DELETE,
            f"Deleted upload {upload_id}: {file_ref.original_name}",
        )
        return {"success": True, "message": "Upload deleted successfully"}

    def update_title(self, upload_id: int, title: Optional[str], performer_id: Optional[int]) -> Dict[str, Any]:
        """Set the display title; the only mutable field of a file record."""
        if title is not None and not isinstance(title, str):
            raise DocVaultValidationError("Title must be a string", field="title")
        title = title.strip() if title else None
        if title and len(title) > MAX_TITLE_LENGTH:
            raise DocVaultValidationError(
                f"Title must be at most {MAX_TITLE_LENGTH} characters", field="title"
            )

        performer = self._resolver.resolve_id(performer_id)
        file_ref = self.get_reference(upload_id)
        decision = self._policy.can_update_title(performer, file_ref)
        self._check(decision, Action.TITLE_UPDATE, performer, f"upload:{upload_id}")

        try:
            with session_scope(self._session_factory) as session:
                upload = session.get(Upload, upload_id)
                if upload is None:
                    raise DocVaultNotFoundError("Upload not found", object_ref=f"upload:{upload_id}")
                upload.title = title
                session.flush()
                updated = upload.to_dict()
        except SQLAlchemyError as e:
            raise DocVaultRecordError(
                "Failed to update upload", record_type="upload", operation="update", detail=str(e)
            ) from e

        self._recorder.try_record(
            decision.performer.id,
            ActivityAction.TITLE_UPDATE,
            f"Set title of upload {upload_id} to '{title or ''}'",
        )
        return {"success": True, "upload": updated}

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    def list_uploads(self, caller: Caller) -> Dict[str, Any]:
        """The caller's own uploads, newest first."""
        if not isinstance(caller, Identity):
            raise DocVaultSessionError("Authentication required")
        if not caller.is_approved:
            raise DocVaultSecurityError(
                "Account not approved", user_id=caller.id, reason=Reason.NOT_APPROVED.value
            )

        session = self._session_factory()
        try:
            uploads = (
                session.query(Upload)
                .filter(Upload.user_id == caller.id)
                .order_by(Upload.created_at.desc(), Upload.id.desc())
                .all()
            )
            items = [u.to_dict() for u in uploads]
        finally:
            session.close()

        return {
            "user": {
                "id": caller.id,
                "name": caller.name,
                "email": caller.email,
                "uploadCount": len(items),
            },
            "uploads": items,
        }

    def view_link(self, caller: Caller, storage_key: Optional[str]) -> str:
        """Short-lived locator for viewing a file the caller may read."""
        if not storage_key:
            raise DocVaultValidationError("File name is required", field="fileName")
        file_ref = self.find_reference(storage_key)
        decision = self._policy.can_read(caller, file_ref)
        if not decision and decision.reason == Reason.NOT_FOUND:
            # Same answer as a policy denial on the read path.
            decision = Decision.deny(Reason.ROLE_NOT_PERMITTED)
        self._check(decision, Action.READ, caller, storage_key)
        return self._store.locator(storage_key, SignedUrlPolicy.VIEW)

    def list_users_with_uploads(self, include_managers: bool = True) -> List[Dict[str, Any]]:
        """
        Every user with their uploads (newest first), ordered by name.

        Staff listing: callers must be gated by the admin or manager session.
        """
        session = self._session_factory()
        try:
            query = session.query(User)
            if not include_managers:
                query = query.filter(User.role != Role.MANAGER.value)
            users = query.order_by(User.name.asc(), User.id.asc()).all()
            return [_user_summary(u, with_status=include_managers) for u in users]
        finally:
            session.close()

    def get_user_uploads(self, user_id: int) -> Dict[str, Any]:
        """One user and their uploads, newest first."""
        session = self._session_factory()
        try:
            user = session.get(User, user_id)
            if user is None:
                raise DocVaultNotFoundError("User not found", object_ref=f"user:{user_id}")
            summary = _user_summary(user, with_status=True)
        finally:
            session.close()
        uploads = summary.pop("uploads")
        return {"user": summary, "uploads": uploads}

    def get_reference(self, upload_id: int) -> Optional[FileReference]:
        session = self._session_factory()
        try:
            upload = session.get(Upload, upload_id)
            return FileReference.from_upload(upload) if upload is not None else None
        finally:
            session.close()

    def find_reference(self, storage_key: str) -> Optional[FileReference]:
        session = self._session_factory()
        try:
            upload = session.query(Upload).filter(Upload.storage_key == storage_key).first()
            return FileReference.from_upload(upload) if upload is not None else None
        finally:
            session.close()

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    def _check(self, decision: Decision, action: Action, caller: Caller, object_ref: str) -> None:
        if decision:
            return
        user_id = caller.id if isinstance(caller, Identity) else None
        log(log_security_event(
            event="action_denied",
            object_ref=object_ref,
            action=action.value,
            reason=decision.reason.value,
            user_id=user_id,
            role=caller.role.value if isinstance(caller, Identity) else None,
        ))
        raise_for_decision(decision, object_ref, user_id)

    def _put_bytes(self, file: UploadedFile) -> Tuple[str, str]:
        """Store bytes and build the canonical locator. Nothing survives a failure."""
        storage_key = self._store.store(
            file.data,
            {"original_name": file.filename, "content_type": file.content_type},
        )
        try:
            locator = self._store.locator(storage_key, SignedUrlPolicy.CANONICAL)
        except DocVaultError:
            self._discard_bytes(storage_key)
            raise
        return storage_key, locator

    def _discard_bytes(self, storage_key: str) -> None:
        try:
            self._store.delete(storage_key)
        except DocVaultError as e:
            logger.error(f"Could not remove orphaned bytes {storage_key}: {e.to_json()}")

    @staticmethod
    def _new_upload(
        storage_key: str,
        locator: str,
        file: UploadedFile,
        file_kind: FileKind,
        owner_id: int,
    ) -> Upload:
        return Upload(
            storage_key=storage_key,
            name=file.filename,
            file_type=file_kind.value,
            locator=locator,
            size_bytes=file.size,
            mime_type=file.content_type,
            user_id=owner_id,
        )


def _prospective_customer(email: str) -> Identity:
    """Stand-in target for a customer account that will be created on upload."""
    return Identity(id=0, email=email, role=Role.CUSTOMER, approval_status=ApprovalStatus.APPROVED)


def _user_summary(user: User, with_status: bool) -> Dict[str, Any]:
    summary: Dict[str, Any] = {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
    }
    if with_status:
        summary["status"] = user.status
        summary["createdAt"] = user.created_at.isoformat() if user.created_at else None
    summary["uploads"] = [u.to_dict() for u in user.uploads]
    return summary


def _mb(size: int) -> str:
    return f"{size / 1024 / 1024:.2f}"
