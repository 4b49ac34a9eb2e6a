"""
DocVault File Store contract — storage keys, locators and the adapter ABC.

Every backend satisfies the same four operations (store, read, delete,
exists) plus locator(), so the policy and delivery layers never branch
on which backend is configured.

Storage keys are `<uuid4 hex>_<sanitized original name>`. The sanitized
name contains only letters, digits, dot, hyphen and underscore, and never
a `..` sequence, so a key can be used as a path segment or object name
without escaping.
"""

from __future__ import annotations

import enum
import re
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from docvault.engine.errors import StorageNotFoundError

STORAGE_KEY_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9.-]")
_DOT_RUNS = re.compile(r"\.{2,}")
MAX_NAME_LENGTH = 200


class SignedUrlPolicy(str, enum.Enum):
    """
    Which expiry applies to a locator.

    CANONICAL: long-lived URL persisted on the upload row (~1 year).
    VIEW: short-lived URL handed out on demand for viewing (~1 hour).
    """

    CANONICAL = "CANONICAL"
    VIEW = "VIEW"


def sanitize_filename(filename: str) -> str:
    """
    Reduce a user-supplied filename to [A-Za-z0-9._-].

    Disallowed characters become "_" and runs of dots collapse to one, so
    "../../etc/passwd" becomes "._._etc_passwd".
    """
    name = _UNSAFE_CHARS.sub("_", filename or "")
    name = _DOT_RUNS.sub(".", name)
    if not name.strip("._"):
        name = "file"
    if len(name) > MAX_NAME_LENGTH:
        stem, dot, ext = name.rpartition(".")
        if dot and len(ext) < 16:
            name = stem[: MAX_NAME_LENGTH - len(ext) - 1] + "." + ext
        else:
            name = name[:MAX_NAME_LENGTH]
    return name


def generate_storage_key(original_name: str) -> str:
    """Fresh unique key for one upload attempt."""
    return f"{uuid.uuid4().hex}_{sanitize_filename(original_name)}"


def is_valid_storage_key(key: str) -> bool:
    return bool(key) and bool(STORAGE_KEY_PATTERN.match(key)) and ".." not in key


class FileStore(ABC):
    """Abstract file store. Whole-file reads and writes; no ranges."""

    backend_name: str = "abstract"

    @abstractmethod
    def store(self, data: bytes, metadata: Optional[Dict[str, Any]] = None) -> str:
        """
        Persist bytes under a freshly generated key and return the key.

        metadata may carry "original_name" and "content_type".
        Raises DocVaultStorageError on failure.
        """

    @abstractmethod
    def read(self, storage_key: str) -> bytes:
        """Return the stored bytes. Raises StorageNotFoundError if absent."""

    @abstractmethod
    def delete(self, storage_key: str) -> bool:
        """Remove the bytes. Returns False if nothing was stored under the key."""

    @abstractmethod
    def exists(self, storage_key: str) -> bool:
        """Whether bytes are stored under the key."""

    @abstractmethod
    def locator(self, storage_key: str, policy: SignedUrlPolicy = SignedUrlPolicy.CANONICAL) -> str:
        """Locator clients use to fetch the file (proxy path or signed URL)."""

    def _check_key(self, storage_key: str) -> str:
        if not is_valid_storage_key(storage_key):
            # Keys are generated by us; anything else cannot exist in the store.
            raise StorageNotFoundError(
                "Invalid storage key",
                backend=self.backend_name,
                storage_key=storage_key,
            )
        return storage_key

    @staticmethod
    def _new_key(metadata: Optional[Dict[str, Any]]) -> str:
        original = (metadata or {}).get("original_name") or "file"
        return generate_storage_key(original)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} backend='{self.backend_name}'>"
