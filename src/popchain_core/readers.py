"""Read-only views over PopChain objects and events.

The ledger is the source of truth for certificate ownership: a certificate
is either held by a linked wallet or listed inside the holder's
PopChainAccount, and :meth:`LedgerReader.certificates_for_account` merges
both.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .config import MIST_PER_SUI, MODULE_NAMES, ContractSettings
from .exceptions import LedgerRPCError, LedgerTransportError
from .rpc_client import LedgerClient
from .store import OffchainStore, RecordKind
from .tiers import CERTIFICATE_TIERS, CertificateTier, tier_by_name
from .transactions import UserRole

logger = logging.getLogger(__name__)

# Modules whose events make up the package activity feed
ACTIVITY_MODULES = ("admin", "wallet", "user", "event", "certificate")

# Owner of certificates kept inside a PopChainAccount rather than a wallet
UNLINKED_OWNER = "0x0"

_READ_ERRORS = (LedgerRPCError, LedgerTransportError)


@dataclass(frozen=True)
class Balance:
    mist: int

    @property
    def sui(self) -> float:
        return self.mist / MIST_PER_SUI


@dataclass(frozen=True)
class EventDetails:
    event_id: str
    name: str
    description: str
    organizer: str
    active: bool


@dataclass(frozen=True)
class ActivityEntry:
    digest: str
    event_type: str
    timestamp_ms: Optional[int]
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CertificateDetails:
    """A minted certificate as the ledger holds it."""
    certificate_id: str
    event_id: str
    url: str
    tier_name: str
    tier_image_url: str
    owner: str
    tier: Optional[CertificateTier] = None


@dataclass
class AccountRanking:
    account_id: str
    counts: Dict[str, int] = field(default_factory=lambda: {t.name: 0 for t in CERTIFICATE_TIERS})

    @property
    def total(self) -> int:
        return sum(self.counts.values())


def _content_fields(obj: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    if not obj or obj.get("error"):
        return None
    data = obj.get("data") or {}
    content = data.get("content") or {}
    fields = content.get("fields")
    return fields if isinstance(fields, Mapping) else None


def coin_value(value: Any) -> Optional[int]:
    """Balance out of a plain number/string or a nested ``Coin`` object."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value) if value.isdigit() else None
    if isinstance(value, Mapping):
        inner = value.get("fields")
        if isinstance(inner, Mapping):
            return coin_value(inner.get("balance"))
    return None


def decode_move_string(value: Any) -> str:
    """A Move ``String`` as returned by the node, in any of its forms."""
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        inner = value.get("fields", value)
        raw = inner.get("bytes") if isinstance(inner, Mapping) else None
        if isinstance(raw, list):
            return bytes(raw).decode("utf-8", errors="replace")
        if isinstance(raw, str):
            try:
                return base64.b64decode(raw, validate=True).decode("utf-8", errors="replace")
            except (binascii.Error, ValueError):
                return raw
    return ""


def decode_object_id(value: Any) -> str:
    """An ``ID``/``UID`` field: plain string, ``{id: ...}`` or ``{id: {id: ...}}``."""
    while isinstance(value, Mapping):
        value = value.get("id")
    return value if isinstance(value, str) else ""


def object_owner(obj: Mapping[str, Any]) -> str:
    """Owning address or object, ``Shared``/``Immutable``, else ``0x0``."""
    owner = (obj.get("data") or {}).get("owner")
    if isinstance(owner, str):
        return owner
    if isinstance(owner, Mapping):
        for key in ("AddressOwner", "ObjectOwner"):
            if isinstance(owner.get(key), str):
                return owner[key]
        if "Shared" in owner:
            return "Shared"
        for value in owner.values():
            if isinstance(value, str) and value.startswith("0x"):
                return value
    return UNLINKED_OWNER


def _id_list(value: Any) -> List[str]:
    if isinstance(value, Mapping):
        value = value.get("vec")
    if not isinstance(value, list):
        return []
    return [decode_object_id(item) for item in value if decode_object_id(item)]


def _is_unlinked(address: str) -> bool:
    return not address.lower().removeprefix("0x").strip("0")


def _timestamp(value: Any) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


class LedgerReader:
    """Account, event, certificate and treasury lookups."""

    def __init__(self, ledger: LedgerClient, contracts: ContractSettings):
        self._ledger = ledger
        self._contracts = contracts

    @property
    def certificate_type(self) -> str:
        return f"{self._contracts.package_id}::{MODULE_NAMES['certificate']}::Certificate"

    async def account_balance(self, account_id: str) -> Optional[Balance]:
        """Balance held inside a PopChainAccount, or None if unreadable."""
        fields = _content_fields(await self._ledger.get_object(account_id))
        if fields is None:
            return None
        mist = coin_value(fields.get("balance"))
        return Balance(mist) if mist is not None else None

    async def wallet_balance(self, address: str) -> Balance:
        return Balance(await self._ledger.get_balance(address))

    async def event(self, event_id: str) -> Optional[EventDetails]:
        fields = _content_fields(await self._ledger.get_object(event_id))
        if fields is None:
            return None
        return EventDetails(
            event_id=event_id,
            name=decode_move_string(fields.get("name")),
            description=decode_move_string(fields.get("description")),
            organizer=fields.get("organizer") or "",
            active=bool(fields.get("active", False)),
        )

    # -- certificates ------------------------------------------------------

    async def certificate(self, certificate_id: str) -> Optional[CertificateDetails]:
        """Certificate object details, or None if it does not exist."""
        obj = await self._ledger.get_object(certificate_id)
        fields = _content_fields(obj)
        if fields is None:
            return None
        tier_name = decode_move_string(fields.get("tier_name"))
        tier = tier_by_name(tier_name)
        return CertificateDetails(
            certificate_id=certificate_id,
            event_id=decode_object_id(fields.get("event_id")),
            url=decode_move_string(fields.get("url")),
            tier_name=tier_name,
            tier_image_url=decode_move_string(fields.get("tier_url")),
            owner=object_owner(obj),
            tier=tier,
        )

    async def certificates_by_owner(self, owner: str) -> List[str]:
        """Ids of certificates held directly by ``owner``."""
        objects = await self._ledger.get_owned_objects(owner, self.certificate_type)
        ids = [(obj.get("data") or {}).get("objectId") for obj in objects]
        return [object_id for object_id in ids if object_id]

    async def certificates_for_account(
        self, account_id: str, wallet_address: Optional[str] = None,
    ) -> List[str]:
        """Ids held by the linked wallet plus those listed in the account.

        Either source failing is logged and skipped. Order is wallet first,
        duplicates dropped.
        """
        ids: List[str] = []
        if wallet_address and not _is_unlinked(wallet_address):
            try:
                ids.extend(await self.certificates_by_owner(wallet_address))
            except _READ_ERRORS as e:
                logger.warning("Certificate lookup for wallet %s failed: %s", wallet_address, e.message)
        try:
            fields = _content_fields(await self._ledger.get_object(account_id))
        except _READ_ERRORS as e:
            logger.warning("Certificate lookup for account %s failed: %s", account_id, e.message)
            fields = None
        if fields is not None:
            ids.extend(_id_list(fields.get("certificates")))
        return list(dict.fromkeys(ids))

    async def _ranking(self, account_id: str, wallet_address: Optional[str]) -> AccountRanking:
        ranking = AccountRanking(account_id)
        for certificate_id in await self.certificates_for_account(account_id, wallet_address):
            details = await self.certificate(certificate_id)
            if details is None:
                continue
            for name in ranking.counts:
                if name.lower() == details.tier_name.lower():
                    ranking.counts[name] += 1
        return ranking

    async def account_rankings(self, store: OffchainStore, limit: int = 10) -> List[AccountRanking]:
        """Attendee accounts with at least one certificate, most certificates first."""
        profiles = await store.select(RecordKind.USER_PROFILES, {"role": int(UserRole.ATTENDEE)})
        accounts = [p for p in profiles if p.get("popchain_account_address")]
        results = await asyncio.gather(
            *(self._ranking(p["popchain_account_address"], p.get("wallet_address")) for p in accounts),
            return_exceptions=True,
        )
        rankings: List[AccountRanking] = []
        for profile, result in zip(accounts, results):
            if isinstance(result, _READ_ERRORS):
                logger.warning(
                    "Skipping %s in rankings: %s", profile["popchain_account_address"], result.message,
                )
                continue
            if isinstance(result, BaseException):
                raise result
            if result.total > 0:
                rankings.append(result)
        rankings.sort(key=lambda r: r.total, reverse=True)
        return rankings[:limit]

    # -- treasury ----------------------------------------------------------

    async def treasury_balance(self) -> Optional[Balance]:
        fields = _content_fields(await self._ledger.get_object(self._contracts.treasury_id))
        if fields is None:
            return None
        mist = coin_value(fields.get("balance"))
        return Balance(mist if mist is not None else 0)

    async def treasury_owner(self) -> Optional[str]:
        fields = _content_fields(await self._ledger.get_object(self._contracts.treasury_id))
        owner = fields.get("owner") if fields else None
        return owner if isinstance(owner, str) else None

    async def recent_activity(self, limit: int = 20) -> List[ActivityEntry]:
        """Recent package events, newest first, one entry per transaction.

        A module whose query fails is skipped.
        """
        by_digest: Dict[str, ActivityEntry] = {}
        for key in ACTIVITY_MODULES:
            module = MODULE_NAMES[key]
            try:
                events = await self._ledger.query_events(self._contracts.package_id, module, limit * 2)
            except LedgerRPCError as e:
                logger.warning("Event query for %s failed: %s", module, e.message)
                continue
            for event in events:
                digest = (event.get("id") or {}).get("txDigest")
                if not digest:
                    continue
                entry = ActivityEntry(
                    digest=digest,
                    event_type=event.get("type", ""),
                    timestamp_ms=_timestamp(event.get("timestampMs")),
                    data=dict(event.get("parsedJson") or {}),
                )
                current = by_digest.get(digest)
                # Treasury events describe a transaction best
                if current is None or (
                    "popchain_admin" in entry.event_type and "popchain_admin" not in current.event_type
                ):
                    by_digest[digest] = entry

        ordered = sorted(by_digest.values(), key=lambda e: e.timestamp_ms or 0, reverse=True)
        return ordered[:limit]
