"""
DocVault File Store Adapters.

One FileStore interface, two backends selected at startup:
    storage.backend: local   → LocalFileStore (secure directory on disk)
    storage.backend: remote  → RemoteObjectStore (signed-URL object storage)
"""

from __future__ import annotations

from docvault.engine.config import StorageConfig
from docvault.storage.base import (
    FileStore,
    SignedUrlPolicy,
    generate_storage_key,
    sanitize_filename,
)
from docvault.storage.local import LocalFileStore
from docvault.storage.remote import RemoteObjectStore


def create_file_store(config: StorageConfig) -> FileStore:
    """Build the backend named in config."""
    if config.backend == "remote":
        return RemoteObjectStore.from_config(config)
    return LocalFileStore(config.local_root)


__all__ = [
    "FileStore",
    "LocalFileStore",
    "RemoteObjectStore",
    "SignedUrlPolicy",
    "create_file_store",
    "generate_storage_key",
    "sanitize_filename",
]
