"""Off-chain relational store.

Single-row operations against a fixed set of tables. ``SupabaseStore`` talks
to PostgREST over httpx; ``InMemoryStore`` is the dev/test backend.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from copy import deepcopy
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import httpx

from .config import StoreSettings
from .exceptions import PopchainConfigurationError, StoreError

logger = logging.getLogger(__name__)


class RecordKind(str, Enum):
    """Tables the orchestration layer writes."""
    USER_PROFILES = "user_profiles"
    EVENTS = "events"
    WHITELISTINGS = "whitelistings"
    CERTIFICATES = "certificates"


Row = Dict[str, Any]


class OffchainStore(ABC):
    """Abstract interface for the off-chain store."""

    @abstractmethod
    async def insert(self, kind: RecordKind, fields: Mapping[str, Any]) -> Row:
        """Insert one row and return it as stored."""

    @abstractmethod
    async def update(self, kind: RecordKind, match: Mapping[str, Any], fields: Mapping[str, Any]) -> List[Row]:
        """Update rows equal to ``match``; returns the updated rows."""

    @abstractmethod
    async def select(
        self, kind: RecordKind, match: Optional[Mapping[str, Any]] = None, limit: Optional[int] = None,
    ) -> List[Row]:
        ...

    @abstractmethod
    async def delete(self, kind: RecordKind, match: Mapping[str, Any]) -> int:
        """Delete rows equal to ``match``; returns how many went away."""

    async def close(self) -> None:
        return None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryStore(OffchainStore):
    """In-memory store (swap for SupabaseStore in production)."""

    def __init__(self) -> None:
        self._tables: Dict[RecordKind, List[Row]] = {kind: [] for kind in RecordKind}
        self._lock = asyncio.Lock()

    @staticmethod
    def _matches(row: Row, match: Optional[Mapping[str, Any]]) -> bool:
        return all(row.get(key) == value for key, value in (match or {}).items())

    async def insert(self, kind: RecordKind, fields: Mapping[str, Any]) -> Row:
        async with self._lock:
            row: Row = {"id": str(uuid.uuid4()), "created_at": _now(), **fields}
            self._tables[kind].append(row)
            return deepcopy(row)

    async def update(self, kind: RecordKind, match: Mapping[str, Any], fields: Mapping[str, Any]) -> List[Row]:
        async with self._lock:
            updated = []
            for row in self._tables[kind]:
                if self._matches(row, match):
                    row.update(fields)
                    row["updated_at"] = _now()
                    updated.append(deepcopy(row))
            return updated

    async def select(
        self, kind: RecordKind, match: Optional[Mapping[str, Any]] = None, limit: Optional[int] = None,
    ) -> List[Row]:
        rows = [deepcopy(row) for row in self._tables[kind] if self._matches(row, match)]
        return rows[:limit] if limit is not None else rows

    async def delete(self, kind: RecordKind, match: Mapping[str, Any]) -> int:
        async with self._lock:
            before = len(self._tables[kind])
            self._tables[kind] = [row for row in self._tables[kind] if not self._matches(row, match)]
            return before - len(self._tables[kind])


def _eq(value: Any) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


class SupabaseStore(OffchainStore):
    """PostgREST client for the Supabase project."""

    def __init__(self, settings: StoreSettings, http_client: Optional[httpx.AsyncClient] = None):
        if not settings.url:
            raise PopchainConfigurationError("POPCHAIN_STORE__URL is required for SupabaseStore")
        self._settings = settings
        self._base_url = settings.url.rstrip("/") + "/rest/v1"
        key = settings.service_key.get_secret_value()
        self._client = http_client or httpx.AsyncClient(timeout=settings.timeout_seconds)
        self._headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Accept-Profile": settings.schema_name,
            "Content-Profile": settings.schema_name,
            "Prefer": "return=representation",
        }

    async def _request(
        self,
        method: str,
        kind: RecordKind,
        params: Optional[Dict[str, str]] = None,
        body: Optional[Mapping[str, Any]] = None,
    ) -> List[Row]:
        url = f"{self._base_url}/{kind.value}"
        try:
            resp = await self._client.request(
                method, url, params=params, json=dict(body) if body is not None else None, headers=self._headers,
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            detail = e.response.text[:200]
            raise StoreError(
                f"{method} {kind.value} failed: {detail}", table=kind.value, status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {kind.value} failed: {e}", table=kind.value) from e

        if not resp.content:
            return []
        data = resp.json()
        return data if isinstance(data, list) else [data]

    @staticmethod
    def _filters(match: Optional[Mapping[str, Any]]) -> Dict[str, str]:
        return {key: _eq(value) for key, value in (match or {}).items()}

    async def insert(self, kind: RecordKind, fields: Mapping[str, Any]) -> Row:
        rows = await self._request("POST", kind, body=fields)
        if not rows:
            raise StoreError(f"insert into {kind.value} returned no row", table=kind.value)
        return rows[0]

    async def update(self, kind: RecordKind, match: Mapping[str, Any], fields: Mapping[str, Any]) -> List[Row]:
        if not match:
            raise StoreError("update without a filter is refused", table=kind.value)
        return await self._request("PATCH", kind, params=self._filters(match), body=fields)

    async def select(
        self, kind: RecordKind, match: Optional[Mapping[str, Any]] = None, limit: Optional[int] = None,
    ) -> List[Row]:
        params = {"select": "*", **self._filters(match)}
        if limit is not None:
            params["limit"] = str(limit)
        return await self._request("GET", kind, params=params)

    async def delete(self, kind: RecordKind, match: Mapping[str, Any]) -> int:
        if not match:
            raise StoreError("delete without a filter is refused", table=kind.value)
        rows = await self._request("DELETE", kind, params=self._filters(match))
        return len(rows)

    async def close(self) -> None:
        await self._client.aclose()
