"""Sui JSON-RPC client.

Uses raw httpx instead of an SDK; every call is JSON-RPC 2.0 over POST.
Payloads are returned as plain dicts: callers normalize them through
:mod:`popchain_core.extraction` rather than trusting one fixed shape.
"""
from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .config import LedgerSettings
from .exceptions import LedgerRPCError, LedgerTransportError
from .logging_utils import ChainLogger, OperationType
from .transactions import MoveCall

logger = logging.getLogger(__name__)

SUI_COIN_TYPE = "0x2::sui::SUI"

# Full node answers this until the digest is indexed locally
TX_NOT_FOUND_MARKER = "Could not find the referenced transaction"

RESPONSE_OPTIONS = {
    "showEffects": True,
    "showObjectChanges": True,
    "showEvents": True,
}


class LedgerClient(ABC):
    """Ledger access capability consumed by the orchestration layer."""

    @abstractmethod
    async def build_move_call(self, sender: str, call: MoveCall, gas_budget: int) -> str:
        """Compile a Move call into base64 transaction bytes."""

    @abstractmethod
    async def execute_transaction(self, tx_bytes: str, signatures: Sequence[str]) -> Dict[str, Any]:
        """Submit signed transaction bytes; returns the execution payload."""

    @abstractmethod
    async def wait_for_transaction(self, digest: str) -> Dict[str, Any]:
        """Block until ``digest`` is final and return its payload."""

    @abstractmethod
    async def get_object(self, object_id: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def get_balance(self, owner: str) -> int:
        """Total SUI balance in MIST across every coin owned by ``owner``."""

    @abstractmethod
    async def get_owned_objects(self, owner: str, struct_type: str) -> List[Dict[str, Any]]:
        """Every object of ``struct_type`` owned by ``owner``."""

    @abstractmethod
    async def query_events(
        self, package_id: str, module: str, limit: int = 50, descending: bool = True,
    ) -> List[Dict[str, Any]]:
        ...

    async def close(self) -> None:
        return None


class SuiRPCClient(LedgerClient):
    """Async Sui JSON-RPC client."""

    def __init__(
        self,
        settings: Optional[LedgerSettings] = None,
        chain_logger: Optional[ChainLogger] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or LedgerSettings()
        self._chain_logger = chain_logger or ChainLogger(__name__, self.settings.network)
        self._client = http_client or httpx.AsyncClient(timeout=self.settings.request_timeout_seconds)
        self._request_id = 0

    async def _rpc(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Make a JSON-RPC call to the full node."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }
        started = time.monotonic()
        try:
            resp = await self._client.post(self.settings.rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            self._chain_logger.log_rpc_call(
                method, self.settings.rpc_url, (time.monotonic() - started) * 1000, False, str(e),
            )
            raise LedgerTransportError(
                f"{method} failed: {e}", details={"method": method},
            ) from e
        except ValueError as e:
            raise LedgerTransportError(
                f"{method} returned a non-JSON response", details={"method": method},
            ) from e

        elapsed_ms = (time.monotonic() - started) * 1000
        if isinstance(data, dict) and "error" in data:
            error = data["error"] or {}
            message = error.get("message", "Unknown RPC error")
            self._chain_logger.log_rpc_call(method, self.settings.rpc_url, elapsed_ms, False, message)
            raise LedgerRPCError(message, code=error.get("code"), data=error.get("data"), method=method)

        self._chain_logger.log_rpc_call(method, self.settings.rpc_url, elapsed_ms, True)
        return data.get("result") if isinstance(data, dict) else None

    async def build_move_call(self, sender: str, call: MoveCall, gas_budget: int) -> str:
        result = await self._rpc(
            "unsafe_moveCall",
            [
                sender,
                call.package,
                call.module,
                call.function,
                list(call.type_arguments),
                call.json_arguments(),
                None,
                str(gas_budget),
            ],
        )
        tx_bytes = (result or {}).get("txBytes")
        if not tx_bytes:
            raise LedgerRPCError("unsafe_moveCall returned no txBytes", method="unsafe_moveCall")
        return tx_bytes

    async def execute_transaction(self, tx_bytes: str, signatures: Sequence[str]) -> Dict[str, Any]:
        result = await self._rpc(
            "sui_executeTransactionBlock",
            [tx_bytes, list(signatures), RESPONSE_OPTIONS, "WaitForLocalExecution"],
        )
        logger.info("Sui tx executed: %s", (result or {}).get("digest"))
        return result or {}

    async def wait_for_transaction(self, digest: str) -> Dict[str, Any]:
        """Poll ``sui_getTransactionBlock`` until the digest is known.

        There is no timeout here; callers wanting bounded latency wrap this
        in ``asyncio.wait_for``.
        """
        async with self._chain_logger.operation_context(
            OperationType.FINALITY_WAIT, digest=digest,
        ) as ctx:
            attempts = 0
            while True:
                attempts += 1
                try:
                    result = await self._rpc("sui_getTransactionBlock", [digest, RESPONSE_OPTIONS])
                except LedgerRPCError as e:
                    if TX_NOT_FOUND_MARKER not in e.message:
                        raise
                    result = None
                if result:
                    ctx.metadata["attempts"] = attempts
                    return result
                logger.debug("Transaction %s not indexed yet (attempt %d)", digest, attempts)
                await asyncio.sleep(self.settings.finality_poll_interval_seconds)

    async def get_object(self, object_id: str) -> Dict[str, Any]:
        result = await self._rpc(
            "sui_getObject",
            [object_id, {"showContent": True, "showOwner": True, "showType": True}],
        )
        return result or {}

    async def get_coins(self, owner: str, coin_type: str = SUI_COIN_TYPE) -> List[Dict[str, Any]]:
        """All coins of ``coin_type`` owned by ``owner``, following pagination."""
        coins: List[Dict[str, Any]] = []
        cursor = None
        while True:
            page = await self._rpc("suix_getCoins", [owner, coin_type, cursor, None]) or {}
            coins.extend(page.get("data", []))
            cursor = page.get("nextCursor")
            if not page.get("hasNextPage") or not cursor:
                return coins

    async def get_balance(self, owner: str) -> int:
        coins = await self.get_coins(owner)
        return sum(int(coin.get("balance", 0)) for coin in coins)

    async def get_owned_objects(self, owner: str, struct_type: str) -> List[Dict[str, Any]]:
        query = {
            "filter": {"StructType": struct_type},
            "options": {"showContent": True, "showType": True},
        }
        objects: List[Dict[str, Any]] = []
        cursor = None
        while True:
            page = await self._rpc("suix_getOwnedObjects", [owner, query, cursor, None]) or {}
            objects.extend(page.get("data", []))
            cursor = page.get("nextCursor")
            if not page.get("hasNextPage") or not cursor:
                return objects

    async def query_events(
        self, package_id: str, module: str, limit: int = 50, descending: bool = True,
    ) -> List[Dict[str, Any]]:
        page = await self._rpc(
            "suix_queryEvents",
            [{"MoveModule": {"package": package_id, "module": module}}, None, limit, descending],
        ) or {}
        return page.get("data", [])

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
