"""
DocVault Accounts — Manager applications, admin approval and logins.

Handles:
- Manager sign-up as a pending application (bcrypt-hashed password)
- Admin APPROVE / REJECT of applications
- Manager login (bcrypt) and admin login (static configured password)

Approving an application creates an APPROVED MANAGER user carrying the
application's password hash and deletes the application in the same
transaction. Rejecting keeps the application with status REJECTED.
"""

from __future__ import annotations

import enum
import hmac
import logging
from typing import Any, Dict, List, Optional

import bcrypt
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from docvault.activity.recorder import ActivityAction, ActivityRecorder
from docvault.db.base import utcnow
from docvault.db.models import ManagerApplication, User
from docvault.db.session import session_scope
from docvault.documents.service import EMAIL_PATTERN
from docvault.engine.config import SecurityConfig
from docvault.engine.errors import (
    DocVaultConfigError,
    DocVaultNotFoundError,
    DocVaultRecordError,
    DocVaultSecurityError,
    DocVaultSessionError,
    DocVaultValidationError,
)
from docvault.engine.logging import log, log_security_event
from docvault.security.identity import ApprovalStatus, Identity, Role

logger = logging.getLogger("docvault.accounts.service")

MIN_PASSWORD_LENGTH = 8


class ApplicationDecision(str, enum.Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


# ---------------------------------------------------------------------------
# Password Utilities
# ---------------------------------------------------------------------------

def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its bcrypt hash. Empty hashes never match."""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


class AccountService:
    """Manager applications and the two login flows."""

    def __init__(
        self,
        session_factory: sessionmaker,
        recorder: ActivityRecorder,
        config: Optional[SecurityConfig] = None,
        bcrypt_rounds: int = 12,
    ):
        self._session_factory = session_factory
        self._recorder = recorder
        self._config = config or SecurityConfig()
        self._rounds = bcrypt_rounds

    # -------------------------------------------------------------------
    # Manager applications
    # -------------------------------------------------------------------

    def register_manager(self, name: Optional[str], email: Optional[str], password: Optional[str]) -> Dict[str, Any]:
        """
        File a pending manager application.

        Raises:
            DocVaultValidationError on missing fields, malformed email,
            short password, or an email already in use.
        """
        name = (name or "").strip()
        email = (email or "").strip()
        if not name or not email or not password:
            raise DocVaultValidationError("Missing required fields")
        if not EMAIL_PATTERN.match(email):
            raise DocVaultValidationError("Invalid email format", field="email")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise DocVaultValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters", field="password"
            )

        password_hash = hash_password(password, self._rounds)
        try:
            with session_scope(self._session_factory) as session:
                taken = (
                    session.query(User.id).filter(User.email == email).first()
                    or session.query(ManagerApplication.id).filter(ManagerApplication.email == email).first()
                )
                if taken:
                    raise DocVaultValidationError("User already exists", field="email")
                application = ManagerApplication(
                    name=name,
                    email=email,
                    password_hash=password_hash,
                    status=ApprovalStatus.PENDING.value,
                )
                session.add(application)
                session.flush()
                result = application.to_dict()
        except IntegrityError as e:
            raise DocVaultValidationError("User already exists", field="email") from e
        except SQLAlchemyError as e:
            raise DocVaultRecordError(
                "Failed to create manager application", record_type="manager_application",
                operation="create", detail=str(e),
            ) from e

        logger.info(f"Manager application {result['id']} filed")
        return result

    def list_pending_managers(self) -> List[Dict[str, Any]]:
        """Pending applications, oldest first."""
        session = self._session_factory()
        try:
            rows = (
                session.query(ManagerApplication)
                .filter(ManagerApplication.status == ApprovalStatus.PENDING.value)
                .order_by(ManagerApplication.created_at.asc(), ManagerApplication.id.asc())
                .all()
            )
            return [row.to_dict() for row in rows]
        finally:
            session.close()

    def decide_application(self, application_id: Any, action: Any, admin_id: Any) -> Dict[str, Any]:
        """
        Approve or reject a manager application.

        Raises:
            DocVaultValidationError on missing fields or an unknown action.
            DocVaultNotFoundError if the application does not exist.
        """
        if not application_id or not action or not admin_id:
            raise DocVaultValidationError("Missing required fields")
        try:
            decision = ApplicationDecision(action)
        except ValueError as e:
            raise DocVaultValidationError("Invalid action", field="action") from e
        try:
            application_id = int(application_id)
            admin_id = int(admin_id)
        except (TypeError, ValueError) as e:
            raise DocVaultValidationError("Invalid identifier") from e

        try:
            with session_scope(self._session_factory) as session:
                application = session.get(ManagerApplication, application_id)
                if application is None:
                    raise DocVaultNotFoundError(
                        "Application not found", object_ref=f"manager_application:{application_id}"
                    )
                actor_id = admin_id if session.get(User, admin_id) is not None else None
                email = application.email

                if decision == ApplicationDecision.APPROVE:
                    if session.query(User.id).filter(User.email == email).first():
                        raise DocVaultValidationError("User already exists", field="email")
                    user = User(
                        name=application.name,
                        email=email,
                        password_hash=application.password_hash,
                        role=Role.MANAGER.value,
                        status=ApprovalStatus.APPROVED.value,
                        approved_at=utcnow(),
                        approved_by=admin_id,
                    )
                    session.add(user)
                    session.delete(application)
                    session.flush()
                    user_id = user.id
                else:
                    application.status = ApprovalStatus.REJECTED.value
                    user_id = None
        except SQLAlchemyError as e:
            raise DocVaultRecordError(
                "Failed to apply manager decision", record_type="manager_application",
                operation="update", detail=str(e),
            ) from e

        if decision == ApplicationDecision.APPROVE:
            self._recorder.try_record(
                actor_id, ActivityAction.MANAGER_APPROVED,
                f"Approved manager application {application_id} ({email}) as user {user_id}",
            )
            logger.info(f"Manager application {application_id} approved by admin {admin_id}")
            return {"success": True, "message": "Manager account approved and created successfully"}

        self._recorder.try_record(
            actor_id, ActivityAction.MANAGER_REJECTED,
            f"Rejected manager application {application_id} ({email})",
        )
        logger.info(f"Manager application {application_id} rejected by admin {admin_id}")
        return {"success": True, "message": "Manager application rejected"}

    # -------------------------------------------------------------------
    # Logins
    # -------------------------------------------------------------------

    def authenticate_manager(self, email: Optional[str], password: Optional[str]) -> Identity:
        """
        Check manager credentials.

        Raises:
            DocVaultSessionError on unknown email or wrong password.
            DocVaultSecurityError if the account is not an approved manager.
        """
        if not email or not password:
            raise DocVaultValidationError("Missing required fields")

        session = self._session_factory()
        try:
            user = session.query(User).filter(User.email == email.strip()).first()
        finally:
            session.close()

        if user is None or not verify_password(password, user.password_hash):
            log(log_security_event(
                event="manager_login_failed", object_ref="manager_login", action="LOGIN",
                reason="invalid_credentials", user_id=user.id if user else None,
            ))
            raise DocVaultSessionError("Invalid email or password")

        identity = Identity.from_user(user)
        if identity.role != Role.MANAGER or not identity.is_approved:
            log(log_security_event(
                event="manager_login_failed", object_ref="manager_login", action="LOGIN",
                reason="not_approved_manager", user_id=user.id, role=identity.role.value,
            ))
            raise DocVaultSecurityError(
                "Manager account not approved", user_id=user.id, reason="NOT_APPROVED"
            )

        logger.info(f"Manager {user.id} logged in")
        return identity

    def verify_admin_password(self, password: Optional[str]) -> bool:
        """
        Compare against the configured admin password in constant time.

        Raises:
            DocVaultConfigError if no admin password is configured.
        """
        expected = self._config.admin_password
        if not expected:
            logger.error("Admin password not configured")
            raise DocVaultConfigError("Admin access not configured")
        ok = hmac.compare_digest((password or "").encode("utf-8"), expected.encode("utf-8"))
        if not ok:
            log(log_security_event(
                event="admin_login_failed", object_ref="admin_login", action="LOGIN",
                reason="invalid_password",
            ))
        return ok

    def admin_user_id(self) -> Optional[int]:
        """
        Id of the ADMIN user row that admin sessions act as.

        Prefers the approved ADMIN whose email matches security.admin_email,
        then the lowest-id approved ADMIN. None when no such row exists.
        """
        session = self._session_factory()
        try:
            query = session.query(User).filter(
                User.role == Role.ADMIN.value,
                User.status == ApprovalStatus.APPROVED.value,
            )
            wanted = (self._config.admin_email or "").strip()
            if wanted:
                match = query.filter(User.email == wanted).first()
                if match is not None:
                    return match.id
            first = query.order_by(User.id.asc()).first()
            if first is None:
                logger.warning("No approved ADMIN user row; admin sessions carry no user id")
                return None
            return first.id
        finally:
            session.close()
