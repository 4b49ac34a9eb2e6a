"""
DocVault Identity Resolver — Turn request metadata into a caller Identity.

The caller's email is asserted per request (header first, then cookie).
There are no sessions or tokens: the assertion is looked up fresh in the
users table on every call and mapped to role + approval status.

The resolver never rejects unapproved users. That is the access policy's
job; resolution only answers "who is this".
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from docvault.db.models import User
from docvault.engine.config import SecurityConfig
from docvault.engine.errors import DocVaultRecordError

logger = logging.getLogger("docvault.security.identity")


class Role(str, enum.Enum):
    CUSTOMER = "CUSTOMER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"


class ApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class Identity:
    """A resolved caller. Never persisted; rebuilt on every request."""

    id: int
    email: str
    role: Role
    approval_status: ApprovalStatus
    name: str = ""

    @property
    def is_approved(self) -> bool:
        return self.approval_status == ApprovalStatus.APPROVED

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(
            id=user.id,
            email=user.email,
            role=Role(user.role),
            approval_status=ApprovalStatus(user.status),
            name=user.name or "",
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role.value,
            "approval_status": self.approval_status.value,
        }


class _Unauthenticated:
    """Sentinel for "no usable identity assertion"."""

    _instance: Optional["_Unauthenticated"] = None

    def __new__(cls) -> "_Unauthenticated":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNAUTHENTICATED"


UNAUTHENTICATED = _Unauthenticated()

Caller = Union[Identity, _Unauthenticated]


@dataclass
class RequestContext:
    """
    Framework-neutral view of the inbound request.

    Header names are stored lower-cased; cookies as sent.
    """

    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)
    client_ip: Optional[str] = None

    def __post_init__(self) -> None:
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


class IdentityResolver:
    """
    Resolves RequestContext → Identity | UNAUTHENTICATED.

    Lookups are exact, case-sensitive email matches.
    """

    def __init__(self, session_factory: sessionmaker, config: Optional[SecurityConfig] = None):
        self._session_factory = session_factory
        self._config = config or SecurityConfig()

    def asserted_email(self, ctx: RequestContext) -> Optional[str]:
        """Return the email the request claims, or None if absent/anonymous."""
        email = ctx.header(self._config.identity_header) or ctx.cookies.get(self._config.identity_cookie)
        if not email:
            return None
        email = email.strip()
        if not email or email == self._config.anonymous_email:
            return None
        return email

    def resolve(self, ctx: RequestContext) -> Caller:
        """Resolve the asserted header/cookie identity."""
        return self.resolve_email(self.asserted_email(ctx))

    def resolve_manager_session(self, ctx: RequestContext) -> Caller:
        """
        Resolve the manager cookie pair (manager-auth=true + manager-email).

        Used by manager-initiated uploads, where the manager operates
        through a cookie session distinct from any customer header.
        """
        if ctx.cookies.get(self._config.manager_auth_cookie) != "true":
            return UNAUTHENTICATED
        email = ctx.cookies.get(self._config.manager_email_cookie)
        if not email or email == self._config.anonymous_email:
            return UNAUTHENTICATED
        return self.resolve_email(email)

    def resolve_email(self, email: Optional[str]) -> Caller:
        if not email:
            return UNAUTHENTICATED
        user = self._lookup(email=email)
        if user is None:
            logger.debug("Identity assertion did not match any user")
            return UNAUTHENTICATED
        return Identity.from_user(user)

    def resolve_id(self, user_id: Optional[int]) -> Caller:
        """Resolve an explicit performer id (mutate endpoints)."""
        if user_id is None:
            return UNAUTHENTICATED
        user = self._lookup(user_id=user_id)
        if user is None:
            return UNAUTHENTICATED
        return Identity.from_user(user)

    def _lookup(self, email: Optional[str] = None, user_id: Optional[int] = None) -> Optional[User]:
        session = self._session_factory()
        try:
            query = session.query(User)
            if email is not None:
                return query.filter(User.email == email).first()
            return query.filter(User.id == user_id).first()
        except SQLAlchemyError as e:
            raise DocVaultRecordError(
                "User lookup failed", record_type="user", operation="read", detail=str(e)
            ) from e
        finally:
            session.close()
