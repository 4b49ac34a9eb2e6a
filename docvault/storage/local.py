"""
DocVault Local File Store — bytes on disk in a directory outside any
publicly served path.

Reads buffer the entire file in memory; that is fine for the upload
ceiling (tens of MB) and keeps Content-Length exact.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from docvault.engine.errors import DocVaultStorageError, StorageNotFoundError
from docvault.engine.logging import log, log_storage_event
from docvault.storage.base import FileStore, SignedUrlPolicy

logger = logging.getLogger("docvault.storage.local")

SECURE_FILE_ROUTE = "/api/secure-file"


class LocalFileStore(FileStore):
    """Flat directory of files named by storage key."""

    backend_name = "local"

    def __init__(self, root: str = "secure-uploads", route_prefix: str = SECURE_FILE_ROUTE):
        self._root = Path(root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._route_prefix = route_prefix.rstrip("/")

    @property
    def root(self) -> Path:
        return self._root

    def _path_for(self, storage_key: str) -> Path:
        self._check_key(storage_key)
        path = (self._root / storage_key).resolve()
        if path.parent != self._root:
            raise StorageNotFoundError(
                "Storage key resolves outside the store root",
                backend=self.backend_name,
                storage_key=storage_key,
            )
        return path

    def store(self, data: bytes, metadata: Optional[Dict[str, Any]] = None) -> str:
        storage_key = self._new_key(metadata)
        path = self._path_for(storage_key)
        tmp_path = path.with_name(path.name + ".part")
        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            log(log_storage_event("store", self.backend_name, storage_key, False, error=str(e)))
            raise DocVaultStorageError(
                "Failed to write file", backend=self.backend_name, storage_key=storage_key
            ) from e

        logger.info(f"Stored {storage_key} ({len(data)} bytes)")
        log(log_storage_event("store", self.backend_name, storage_key, True))
        return storage_key

    def read(self, storage_key: str) -> bytes:
        path = self._path_for(storage_key)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError as e:
            raise StorageNotFoundError(
                "File not found", backend=self.backend_name, storage_key=storage_key
            ) from e
        except OSError as e:
            log(log_storage_event("read", self.backend_name, storage_key, False, error=str(e)))
            raise DocVaultStorageError(
                "Failed to read file", backend=self.backend_name, storage_key=storage_key
            ) from e

    def delete(self, storage_key: str) -> bool:
        try:
            path = self._path_for(storage_key)
        except StorageNotFoundError:
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            log(log_storage_event("delete", self.backend_name, storage_key, False, error=str(e)))
            raise DocVaultStorageError(
                "Failed to delete file", backend=self.backend_name, storage_key=storage_key
            ) from e
        logger.info(f"Deleted {storage_key}")
        return True

    def exists(self, storage_key: str) -> bool:
        try:
            return self._path_for(storage_key).is_file()
        except StorageNotFoundError:
            return False

    def locator(self, storage_key: str, policy: SignedUrlPolicy = SignedUrlPolicy.CANONICAL) -> str:
        # Local files are only reachable through the access-checked proxy route,
        # so both expiry policies map to the same path.
        self._check_key(storage_key)
        return f"{self._route_prefix}/{storage_key}"

    def __repr__(self) -> str:
        return f"<LocalFileStore root='{self._root}'>"
