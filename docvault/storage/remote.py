"""
DocVault Remote Object Store — private bucket behind a Supabase-style
storage REST API, accessed through httpx.

Endpoints used (relative to {url}/storage/v1):
    POST   /object/{bucket}/{key}                     upload
    GET    /object/authenticated/{bucket}/{key}       download
    GET    /object/info/authenticated/{bucket}/{key}  existence check
    DELETE /object/{bucket}/{key}                     delete
    POST   /object/sign/{bucket}/{key}                signed URL

Signed URLs carry their own expiry. CANONICAL locators (persisted on the
upload row) use the long expiry; VIEW locators use the short one.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from docvault.engine.config import ONE_HOUR_SECONDS, ONE_YEAR_SECONDS, StorageConfig
from docvault.engine.errors import DocVaultStorageError, StorageNotFoundError
from docvault.engine.logging import log, log_storage_event
from docvault.storage.base import FileStore, SignedUrlPolicy

logger = logging.getLogger("docvault.storage.remote")

NOT_FOUND_STATUSES = (400, 404)


class RemoteObjectStore(FileStore):
    """Object storage bucket with time-limited signed URLs."""

    backend_name = "remote"

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str = "uploads",
        canonical_expiry: int = ONE_YEAR_SECONDS,
        view_expiry: int = ONE_HOUR_SECONDS,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._bucket = bucket
        self._expiry = {
            SignedUrlPolicy.CANONICAL: canonical_expiry,
            SignedUrlPolicy.VIEW: view_expiry,
        }
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout, connect=10.0))
        self._auth_headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }

    @classmethod
    def from_config(cls, config: StorageConfig, client: Optional[httpx.Client] = None) -> "RemoteObjectStore":
        return cls(
            base_url=config.url or "",
            service_key=config.service_key or "",
            bucket=config.bucket,
            canonical_expiry=config.canonical_url_expiry,
            view_expiry=config.view_url_expiry,
            timeout=config.timeout,
            client=client,
        )

    def expiry_for(self, policy: SignedUrlPolicy) -> int:
        return self._expiry[policy]

    def _object_url(self, *parts: str) -> str:
        path = "/".join(quote(p, safe="") for p in parts)
        return f"{self._base_url}/storage/v1/object/{path}"

    def _request(self, method: str, url: str, storage_key: str, operation: str, **kwargs: Any) -> httpx.Response:
        headers = {**self._auth_headers, **kwargs.pop("headers", {})}
        try:
            return self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            log(log_storage_event(operation, self.backend_name, storage_key, False, error=str(e)))
            raise DocVaultStorageError(
                f"Storage {operation} request failed",
                backend=self.backend_name,
                storage_key=storage_key,
                detail=str(e),
            ) from e

    def _fail(self, operation: str, storage_key: str, response: httpx.Response) -> DocVaultStorageError:
        detail = f"HTTP {response.status_code}: {response.text[:200]}"
        logger.error(f"Remote storage {operation} failed for {storage_key}: {detail}")
        log(log_storage_event(operation, self.backend_name, storage_key, False, error=detail))
        return DocVaultStorageError(
            f"Storage {operation} failed",
            backend=self.backend_name,
            storage_key=storage_key,
            status_code=response.status_code,
        )

    # -------------------------------------------------------------------
    # FileStore contract
    # -------------------------------------------------------------------

    def store(self, data: bytes, metadata: Optional[Dict[str, Any]] = None) -> str:
        storage_key = self._new_key(metadata)
        content_type = (metadata or {}).get("content_type") or "application/octet-stream"
        response = self._request(
            "POST",
            self._object_url(self._bucket, storage_key),
            storage_key,
            "store",
            content=data,
            headers={"Content-Type": content_type, "x-upsert": "false"},
        )
        if response.status_code >= 300:
            raise self._fail("store", storage_key, response)

        logger.info(f"Uploaded {storage_key} to bucket '{self._bucket}' ({len(data)} bytes)")
        log(log_storage_event("store", self.backend_name, storage_key, True))
        return storage_key

    def read(self, storage_key: str) -> bytes:
        self._check_key(storage_key)
        response = self._request(
            "GET", self._object_url("authenticated", self._bucket, storage_key), storage_key, "read"
        )
        if response.status_code in NOT_FOUND_STATUSES:
            raise StorageNotFoundError("File not found", backend=self.backend_name, storage_key=storage_key)
        if response.status_code >= 300:
            raise self._fail("read", storage_key, response)
        return response.content

    def delete(self, storage_key: str) -> bool:
        self._check_key(storage_key)
        response = self._request(
            "DELETE", self._object_url(self._bucket, storage_key), storage_key, "delete"
        )
        if response.status_code in NOT_FOUND_STATUSES:
            return False
        if response.status_code >= 300:
            raise self._fail("delete", storage_key, response)
        logger.info(f"Deleted {storage_key} from bucket '{self._bucket}'")
        return True

    def exists(self, storage_key: str) -> bool:
        try:
            self._check_key(storage_key)
        except StorageNotFoundError:
            return False
        response = self._request(
            "GET", self._object_url("info", "authenticated", self._bucket, storage_key), storage_key, "exists"
        )
        if response.status_code in NOT_FOUND_STATUSES:
            return False
        if response.status_code >= 300:
            raise self._fail("exists", storage_key, response)
        return True

    def locator(self, storage_key: str, policy: SignedUrlPolicy = SignedUrlPolicy.CANONICAL) -> str:
        """Create a signed URL whose expiry follows `policy`."""
        self._check_key(storage_key)
        expires_in = self.expiry_for(policy)
        response = self._request(
            "POST",
            self._object_url("sign", self._bucket, storage_key),
            storage_key,
            "sign",
            json={"expiresIn": expires_in},
        )
        if response.status_code >= 300:
            raise self._fail("sign", storage_key, response)
        try:
            signed_path = response.json()["signedURL"]
        except (ValueError, KeyError) as e:
            log(log_storage_event("sign", self.backend_name, storage_key, False, error="malformed sign response"))
            raise DocVaultStorageError(
                "Storage sign response malformed", backend=self.backend_name, storage_key=storage_key
            ) from e
        if signed_path.startswith("http"):
            return signed_path
        return f"{self._base_url}/storage/v1{signed_path}"

    def close(self) -> None:
        self._client.close()

    def __repr__(self) -> str:
        return f"<RemoteObjectStore url='{self._base_url}' bucket='{self._bucket}'>"
