"""Mirror finalized ledger mutations into the off-chain store.

The ledger is the source of truth. A failed store write after a finalized
mutation is logged and reported as a warning; it never turns the operation
into a failure.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .hashing import hash_email
from .logging_utils import ChainLogger, OperationType, fail
from .store import OffchainStore, RecordKind, Row
from .tiers import CertificateTier
from .transactions import UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    """Always ``ok``; ``warning`` is set when the store write failed."""
    ok: bool = True
    record: Optional[Row] = None
    warning: Optional[str] = None
    affected: int = 0


class Reconciler:
    """Single-row writes following a finalized ledger mutation."""

    def __init__(self, store: OffchainStore, chain_logger: Optional[ChainLogger] = None):
        self._store = store
        self._chain_logger = chain_logger or ChainLogger(__name__)

    async def persist(self, kind: RecordKind, fields: Mapping[str, Any]) -> ReconcileResult:
        """Insert the row mirroring a just-finalized mutation."""
        async with self._chain_logger.operation_context(
            OperationType.RECONCILE, table=kind.value, action="insert",
        ) as ctx:
            try:
                record = await self._store.insert(kind, fields)
            except Exception as e:  # noqa: BLE001 - store failures are warnings
                return self._warn(ctx, kind, "insert", e)
            return ReconcileResult(record=record, affected=1)

    async def amend(
        self, kind: RecordKind, match: Mapping[str, Any], fields: Mapping[str, Any],
    ) -> ReconcileResult:
        async with self._chain_logger.operation_context(
            OperationType.RECONCILE, table=kind.value, action="update",
        ) as ctx:
            try:
                rows = await self._store.update(kind, match, fields)
            except Exception as e:  # noqa: BLE001
                return self._warn(ctx, kind, "update", e)
            if not rows:
                message = f"No {kind.value} row matched {dict(match)} for update"
                logger.warning(message)
                return ReconcileResult(warning=message)
            return ReconcileResult(record=rows[0], affected=len(rows))

    async def remove(self, kind: RecordKind, match: Mapping[str, Any]) -> ReconcileResult:
        async with self._chain_logger.operation_context(
            OperationType.RECONCILE, table=kind.value, action="delete",
        ) as ctx:
            try:
                count = await self._store.delete(kind, match)
            except Exception as e:  # noqa: BLE001
                return self._warn(ctx, kind, "delete", e)
            return ReconcileResult(affected=count)

    @staticmethod
    def _warn(ctx, kind: RecordKind, action: str, error: Exception) -> ReconcileResult:
        message = f"On-chain change succeeded but {action} on {kind.value} failed: {error}"
        logger.warning(message, extra={"table": kind.value, "action": action})
        fail(ctx, str(error))
        return ReconcileResult(warning=message)


def profile_row(
    user_id: str,
    email: str,
    user_type: str,
    account_id: Optional[str],
    first_name: str = "",
    last_name: str = "",
    wallet_address: Optional[str] = None,
) -> Dict[str, Any]:
    role = UserRole.ORGANIZER if user_type == "organizer" else UserRole.ATTENDEE
    return {
        "id": user_id,
        "first_name": first_name,
        "last_name": last_name,
        "email": email,
        "email_hash": hash_email(email),
        "user_type": user_type,
        "wallet_address": wallet_address,
        "popchain_account_address": account_id,
        "role": int(role),
        "certificates": [],
    }


def event_row(
    event_id: str,
    name: str,
    description: str,
    organizer_id: str,
    organizer_account_address: str,
) -> Dict[str, Any]:
    return {
        "event_id": event_id,
        "name": name,
        "description": description,
        "organizer_id": organizer_id,
        "organizer_account_address": organizer_account_address,
        "active": True,
    }


def whitelist_row(event_id: str, email: str) -> Dict[str, Any]:
    """Plaintext email is kept off-chain for display only."""
    return {"event_id": event_id, "email": email, "email_hash": hash_email(email)}


def certificate_row(
    event_id: str,
    user_id: str,
    image_url: str,
    tier: CertificateTier,
    tier_index: int,
    name: Optional[str] = None,
    tier_image_url: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "event_id": event_id,
        "user_id": user_id,
        "image_url": image_url,
        "name": name,
        "is_default": False,
        "tier_name": tier.name,
        "tier_index": tier_index,
        "tier_level": tier.level,
        "tier_description": tier.description,
        "tier_image_url": tier_image_url,
    }
