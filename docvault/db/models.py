"""
DocVault Models — SQLAlchemy tables for the vault database.

Tables:
1. users                 — Customers, managers and admins with approval status
2. uploads               — File references (owner, storage key, kind, title)
3. activity_logs         — Append-only audit trail of mutating actions
4. manager_applications  — Pending manager sign-ups awaiting an admin decision
"""

from __future__ import annotations

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from docvault.db.base import Base, TimestampMixin, utcnow


# ---------------------------------------------------------------------------
# 1. Users
# ---------------------------------------------------------------------------

class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False, default="")
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False, default="")
    role = Column(String(20), default="CUSTOMER", nullable=False, index=True)
    status = Column(String(20), default="APPROVED", nullable=False, index=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(Integer, nullable=True)

    uploads = relationship(
        "Upload",
        back_populates="owner",
        order_by="Upload.created_at.desc()",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("role IN ('CUSTOMER', 'MANAGER', 'ADMIN')", name="ck_users_role"),
        CheckConstraint("status IN ('PENDING', 'APPROVED', 'REJECTED')", name="ck_users_status"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}', status='{self.status}')>"


# ---------------------------------------------------------------------------
# 2. Uploads
# ---------------------------------------------------------------------------

class Upload(Base, TimestampMixin):
    __tablename__ = "uploads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    storage_key = Column(String(300), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    title = Column(String(255), nullable=True)
    file_type = Column(String(10), default="IMAGE", nullable=False)
    locator = Column(Text, nullable=False)
    size_bytes = Column(Integer, nullable=False, default=0)
    mime_type = Column(String(100), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    owner = relationship("User", back_populates="uploads")

    __table_args__ = (
        CheckConstraint("file_type IN ('IMAGE', 'VIDEO')", name="ck_uploads_file_type"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "name": self.name,
            "imagePath": self.locator,
            "storageKey": self.storage_key,
            "fileType": self.file_type,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<Upload(id={self.id}, key='{self.storage_key}', owner={self.user_id})>"


# ---------------------------------------------------------------------------
# 3. Activity log
# ---------------------------------------------------------------------------

class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(String(50), nullable=False, index=True)
    details = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    user = relationship("User", lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "action": self.action,
            "details": self.details,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "user": (
                {"name": self.user.name, "email": self.user.email, "role": self.user.role}
                if self.user is not None else None
            ),
        }


# ---------------------------------------------------------------------------
# 4. Manager applications
# ---------------------------------------------------------------------------

class ManagerApplication(Base, TimestampMixin):
    __tablename__ = "manager_applications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    status = Column(String(20), default="PENDING", nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "status": self.status,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
