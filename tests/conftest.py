"""
DocVault Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v
"""

from __future__ import annotations

from typing import Dict

import pytest

from docvault.accounts.service import hash_password
from docvault.activity.recorder import ActivityRecorder
from docvault.db.models import Upload, User
from docvault.db.session import init_db, session_scope
from docvault.documents.delivery import FileDeliveryService
from docvault.documents.models import FileReference, UploadedFile
from docvault.documents.service import DocumentService
from docvault.engine.config import (
    LoggingConfig,
    SecurityConfig,
    StorageConfig,
    VaultConfig,
)
from docvault.security.identity import Identity, IdentityResolver, RequestContext
from docvault.security.policy import AccessPolicy
from docvault.storage.local import LocalFileStore

from samples import ADMIN_PASSWORD, MANAGER_PASSWORD, MP4_BYTES, PDF_BYTES, PNG_BYTES


# ---------------------------------------------------------------------------
# Environment setup: reset global singletons between tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_globals():
    import docvault.engine.config as cfg_mod
    from docvault.engine.logging import shutdown_logging

    cfg_mod._config = None
    shutdown_logging()
    yield
    cfg_mod._config = None
    shutdown_logging()


# ---------------------------------------------------------------------------
# Persistence and storage
# ---------------------------------------------------------------------------

@pytest.fixture
def session_factory():
    """Fresh in-memory SQLite database with all tables."""
    return init_db("sqlite://")


@pytest.fixture
def store(tmp_path):
    return LocalFileStore(str(tmp_path / "secure-uploads"))


def _add_user(factory, email: str, role: str, status: str, password: str = "") -> Identity:
    with session_scope(factory) as session:
        user = User(
            name=email.split("@")[0],
            email=email,
            password_hash=hash_password(password, rounds=4) if password else "",
            role=role,
            status=status,
        )
        session.add(user)
        session.flush()
        return Identity.from_user(user)


@pytest.fixture
def users(session_factory) -> Dict[str, Identity]:
    """
    Seeded accounts:
        customer_a, customer_b     approved customers
        manager                    approved manager (password MANAGER_PASSWORD)
        pending_manager            manager awaiting approval
        admin                      approved admin
        pending_customer           customer awaiting approval
        rejected_customer          rejected customer
    """
    return {
        "customer_a": _add_user(session_factory, "alice@example.com", "CUSTOMER", "APPROVED"),
        "customer_b": _add_user(session_factory, "bob@example.com", "CUSTOMER", "APPROVED"),
        "manager": _add_user(session_factory, "mia@example.com", "MANAGER", "APPROVED", MANAGER_PASSWORD),
        "pending_manager": _add_user(
            session_factory, "pete@example.com", "MANAGER", "PENDING", MANAGER_PASSWORD
        ),
        "admin": _add_user(session_factory, "root@example.com", "ADMIN", "APPROVED"),
        "pending_customer": _add_user(session_factory, "paula@example.com", "CUSTOMER", "PENDING"),
        "rejected_customer": _add_user(session_factory, "rex@example.com", "CUSTOMER", "REJECTED"),
    }


@pytest.fixture
def stored_file(session_factory, store, users) -> FileReference:
    """invoice.pdf owned by customer_a, bytes in the local store."""
    owner = users["customer_a"]
    key = store.store(PDF_BYTES, {"original_name": "invoice.pdf"})
    with session_scope(session_factory) as session:
        upload = Upload(
            storage_key=key,
            name="invoice.pdf",
            file_type="IMAGE",
            locator=store.locator(key),
            size_bytes=len(PDF_BYTES),
            mime_type="application/pdf",
            user_id=owner.id,
        )
        session.add(upload)
        session.flush()
        return FileReference.from_upload(upload)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture
def resolver(session_factory):
    return IdentityResolver(session_factory, SecurityConfig())


@pytest.fixture
def policy():
    return AccessPolicy()


@pytest.fixture
def recorder(session_factory):
    return ActivityRecorder(session_factory)


@pytest.fixture
def delivery(session_factory, resolver, policy, store):
    return FileDeliveryService(session_factory, resolver, policy, store)


@pytest.fixture
def documents(session_factory, store, resolver, recorder, policy):
    return DocumentService(session_factory, store, resolver, recorder, policy=policy)


@pytest.fixture
def make_ctx():
    """Build a RequestContext asserting `email` through the identity header."""

    def _make(email=None, cookies=None, client_ip="10.0.0.1"):
        headers = {"x-user-email": email} if email is not None else {}
        return RequestContext(headers=headers, cookies=cookies or {}, client_ip=client_ip)

    return _make


@pytest.fixture
def png_file():
    return UploadedFile(filename="photo.png", content_type="image/png", data=PNG_BYTES)


@pytest.fixture
def mp4_file():
    return UploadedFile(filename="clip.mp4", content_type="video/mp4", data=MP4_BYTES)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

@pytest.fixture
def vault_config(tmp_path):
    return VaultConfig(
        storage=StorageConfig(local_root=str(tmp_path / "secure-uploads")),
        security=SecurityConfig(admin_password=ADMIN_PASSWORD),
        logging=LoggingConfig(directory=str(tmp_path / "logs")),
    )


@pytest.fixture
def app(vault_config, session_factory, store, users):
    from docvault.api.app import create_app

    return create_app(
        config=vault_config,
        session_factory=session_factory,
        store=store,
        rate_limiter=None,
        bcrypt_rounds=4,
        file_events=False,
    )


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app) as c:
        yield c
