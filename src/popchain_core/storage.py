"""Object storage for certificate images (Tusky over Walrus).

Uploads go through the tus creation-with-upload extension; the returned
file id resolves to a public Walrus URL once the blob has been certified.
Until then ``resolve_public_url`` answers ``None``, which is a normal
transient state.
"""
from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from .config import StorageSettings
from .exceptions import PopchainConfigurationError, StorageError

logger = logging.getLogger(__name__)

TUS_VERSION = "1.0.0"

# Tusky reports this until the Walrus blob id is known
PENDING_BLOB_IDS = frozenset({"", "unknown"})


class ObjectStorage(ABC):
    """Object/file storage capability."""

    @abstractmethod
    async def upload(self, data: bytes, filename: str, content_type: str = "application/octet-stream") -> str:
        """Store ``data`` and return an opaque handle."""

    @abstractmethod
    async def resolve_public_url(self, handle: str) -> Optional[str]:
        """Public URL for ``handle``, or None while it is not yet indexed."""

    @abstractmethod
    async def delete(self, handle: str) -> None:
        ...

    async def close(self) -> None:
        return None


def _tus_metadata(values: Dict[str, Optional[str]]) -> str:
    return ",".join(
        f"{key} {base64.b64encode(value.encode()).decode()}"
        for key, value in values.items()
        if value
    )


class TuskyStorage(ObjectStorage):
    """Tusky REST client."""

    def __init__(self, settings: StorageSettings, http_client: Optional[httpx.AsyncClient] = None):
        if not settings.vault_id:
            raise PopchainConfigurationError("POPCHAIN_STORAGE__VAULT_ID is required for TuskyStorage")
        self._settings = settings
        self._base = settings.api_base.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=settings.timeout_seconds)
        self._headers = {"Api-Key": settings.api_key.get_secret_value()}

    def public_url(self, blob_id: str) -> str:
        return f"{self._settings.public_gateway.rstrip('/')}/{blob_id}"

    async def upload(self, data: bytes, filename: str, content_type: str = "application/octet-stream") -> str:
        headers = {
            **self._headers,
            "Tus-Resumable": TUS_VERSION,
            "Upload-Length": str(len(data)),
            "Upload-Metadata": _tus_metadata({
                "vaultId": self._settings.vault_id,
                "parentId": self._settings.parent_id,
                "filename": filename,
                "filetype": content_type,
            }),
            "Content-Type": "application/offset+octet-stream",
        }
        try:
            resp = await self._client.post(f"{self._base}/uploads", content=data, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError(f"Upload of {filename} failed: {e}") from e

        location = resp.headers.get("Location", "")
        upload_id = location.rstrip("/").rsplit("/", 1)[-1] if location else ""
        if not upload_id:
            raise StorageError(f"Upload of {filename} returned no upload id")
        logger.info("Uploaded %s (%d bytes) as %s", filename, len(data), upload_id)
        return upload_id

    async def _file(self, handle: str) -> Optional[Dict[str, Any]]:
        try:
            resp = await self._client.get(f"{self._base}/files/{handle}", headers=self._headers)
        except httpx.HTTPError as e:
            raise StorageError(f"Lookup of {handle} failed: {e}") from e
        if resp.status_code == 404:
            return None
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StorageError(f"Lookup of {handle} failed: {e}") from e
        return resp.json()

    async def resolve_public_url(self, handle: str) -> Optional[str]:
        metadata = await self._file(handle)
        blob_id = (metadata or {}).get("blobId") or ""
        if blob_id in PENDING_BLOB_IDS:
            logger.debug("Blob for %s not indexed yet", handle)
            return None
        return self.public_url(blob_id)

    async def delete(self, handle: str) -> None:
        try:
            resp = await self._client.delete(f"{self._base}/files/{handle}", headers=self._headers)
            if resp.status_code != 404:
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError(f"Delete of {handle} failed: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()
