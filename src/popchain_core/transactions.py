"""Operation requests and their pure builders.

Builders validate typed input and raise ``PopchainValidationError`` before any
network call is made. A built request is immutable; ``move_call`` resolves it
against the published package into the single Move call it stands for.
"""
from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, ClassVar, Optional, Tuple, Union

from .config import DEFAULT_WALLET_ADDRESS, DEPOSIT_GAS_RESERVE_MIST, ContractSettings
from .exceptions import PopchainValidationError
from .extraction import ExtractionQuery
from .hashing import hash_email_bytes

MAX_U64 = 2**64 - 1
TIER_INDICES = range(0, 4)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{1,64}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class UserRole(IntEnum):
    """On-chain account role."""
    ATTENDEE = 0
    ORGANIZER = 1
    BOTH = 2


def role_for_user_type(user_type: str) -> UserRole:
    """Map a profile user type to the role stored on-chain.

    ``BOTH`` exists on-chain but is never produced here.
    """
    if user_type == "organizer":
        return UserRole.ORGANIZER
    if user_type == "attendee":
        return UserRole.ATTENDEE
    raise PopchainValidationError(
        f"user_type must be 'organizer' or 'attendee', got {user_type!r}",
        field="user_type",
    )


class OperationKind(str, Enum):
    CREATE_ACCOUNT = "create_account"
    ADD_TO_WHITELIST = "add_to_whitelist"
    REMOVE_FROM_WHITELIST = "remove_from_whitelist"
    DEPOSIT = "deposit"
    MINT_CERTIFICATE = "mint_certificate"
    WITHDRAW_TREASURY = "withdraw_treasury"
    CLOSE_EVENT = "close_event"
    LINK_WALLET = "link_wallet"
    CREATE_EVENT = "create_event"
    TRANSFER_CERTIFICATE = "transfer_certificate"


# ---------------------------------------------------------------------------
# Move call arguments
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PureArg:
    """A pure (non-object) argument with its Move type."""
    type_tag: str
    value: Any

    def to_json_value(self) -> Any:
        """SuiJson form accepted by ``unsafe_moveCall``."""
        if self.type_tag == "vector<u8>":
            return list(self.value)
        if self.type_tag == "u64":
            return str(self.value)
        if self.type_tag == "address":
            return normalize_address(self.value)
        return self.value


@dataclass(frozen=True)
class ObjectArg:
    object_id: str

    def to_json_value(self) -> str:
        return self.object_id


@dataclass(frozen=True)
class GasSplitArg:
    """A coin split off the payer's gas coin inside the same transaction."""
    amount: int

    def to_json_value(self) -> Any:
        raise PopchainValidationError(
            "A gas-coin split cannot be expressed as a plain Move call argument; "
            "it must be signed from the payer's own wallet",
            field="amount",
        )


MoveArg = Union[PureArg, ObjectArg, GasSplitArg]


@dataclass(frozen=True)
class MoveCall:
    package: str
    module: str
    function: str
    arguments: Tuple[MoveArg, ...] = ()
    type_arguments: Tuple[str, ...] = ()

    @property
    def target(self) -> str:
        return f"{self.package}::{self.module}::{self.function}"

    @property
    def splits_gas(self) -> bool:
        return any(isinstance(arg, GasSplitArg) for arg in self.arguments)

    def json_arguments(self) -> list[Any]:
        return [arg.to_json_value() for arg in self.arguments]


def _call(contracts: ContractSettings, entry: str, *arguments: MoveArg) -> MoveCall:
    module, function = contracts.entry(entry)
    return MoveCall(contracts.package_id, module, function, tuple(arguments))


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class OperationRequest(ABC):
    """Intent to mutate ledger state."""

    kind: ClassVar[OperationKind]
    extraction: ClassVar[Optional[ExtractionQuery]] = None

    @abstractmethod
    def move_call(self, contracts: ContractSettings) -> MoveCall:
        ...


@dataclass(frozen=True)
class CreateAccount(OperationRequest):
    email_hash: bytes
    role: UserRole
    owner_address: str

    kind: ClassVar[OperationKind] = OperationKind.CREATE_ACCOUNT
    extraction: ClassVar[Optional[ExtractionQuery]] = ExtractionQuery(type_hint="PopChainAccount")

    def move_call(self, contracts: ContractSettings) -> MoveCall:
        return _call(
            contracts, "create_account",
            PureArg("vector<u8>", self.email_hash),
            PureArg("u8", int(self.role)),
            PureArg("address", self.owner_address),
        )


@dataclass(frozen=True)
class AddToWhitelist(OperationRequest):
    event_id: str
    email_hash: bytes

    kind: ClassVar[OperationKind] = OperationKind.ADD_TO_WHITELIST

    def move_call(self, contracts: ContractSettings) -> MoveCall:
        return _call(
            contracts, "add_to_whitelist",
            ObjectArg(self.event_id),
            PureArg("vector<u8>", self.email_hash),
        )


@dataclass(frozen=True)
class RemoveFromWhitelist(OperationRequest):
    event_id: str
    email_hash: bytes

    kind: ClassVar[OperationKind] = OperationKind.REMOVE_FROM_WHITELIST

    def move_call(self, contracts: ContractSettings) -> MoveCall:
        return _call(
            contracts, "remove_from_whitelist",
            ObjectArg(self.event_id),
            PureArg("vector<u8>", self.email_hash),
        )


@dataclass(frozen=True)
class Deposit(OperationRequest):
    account_id: str
    amount_mist: int

    kind: ClassVar[OperationKind] = OperationKind.DEPOSIT

    def move_call(self, contracts: ContractSettings) -> MoveCall:
        return _call(
            contracts, "deposit",
            ObjectArg(self.account_id),
            GasSplitArg(self.amount_mist),
        )


@dataclass(frozen=True)
class MintCertificate(OperationRequest):
    event_id: str
    organizer_account_id: str
    attendee_account_id: str
    certificate_url: bytes
    tier_index: int

    kind: ClassVar[OperationKind] = OperationKind.MINT_CERTIFICATE
    extraction: ClassVar[Optional[ExtractionQuery]] = ExtractionQuery(
        type_hint="Certificate",
        event_types=("CertificateMintedToAttendee", "CertificateMinted"),
        event_field="certificate_id",
    )

    def move_call(self, contracts: ContractSettings) -> MoveCall:
        # The entry function hashes the URL bytes itself
        return _call(
            contracts, "mint_certificate",
            ObjectArg(self.event_id),
            ObjectArg(self.organizer_account_id),
            ObjectArg(self.attendee_account_id),
            PureArg("vector<u8>", self.certificate_url),
            PureArg("u64", self.tier_index),
            ObjectArg(contracts.treasury_id),
        )


@dataclass(frozen=True)
class WithdrawTreasury(OperationRequest):
    amount_mist: int

    kind: ClassVar[OperationKind] = OperationKind.WITHDRAW_TREASURY

    def move_call(self, contracts: ContractSettings) -> MoveCall:
        return _call(
            contracts, "withdraw_to_owner",
            ObjectArg(contracts.treasury_id),
            PureArg("u64", self.amount_mist),
        )


@dataclass(frozen=True)
class CloseEvent(OperationRequest):
    event_id: str
    organizer_account_id: str

    kind: ClassVar[OperationKind] = OperationKind.CLOSE_EVENT

    def move_call(self, contracts: ContractSettings) -> MoveCall:
        return _call(
            contracts, "close_event",
            ObjectArg(self.event_id),
            ObjectArg(self.organizer_account_id),
        )


@dataclass(frozen=True)
class LinkWallet(OperationRequest):
    account_id: str
    wallet_address: str

    kind: ClassVar[OperationKind] = OperationKind.LINK_WALLET

    def move_call(self, contracts: ContractSettings) -> MoveCall:
        return _call(
            contracts, "link_wallet",
            ObjectArg(self.account_id),
            PureArg("address", self.wallet_address),
        )


@dataclass(frozen=True)
class CreateEvent(OperationRequest):
    account_id: str
    name: str
    description: str

    kind: ClassVar[OperationKind] = OperationKind.CREATE_EVENT
    extraction: ClassVar[Optional[ExtractionQuery]] = ExtractionQuery(type_hint="::Event")

    def move_call(self, contracts: ContractSettings) -> MoveCall:
        return _call(
            contracts, "create_event",
            ObjectArg(self.account_id),
            PureArg("string", self.name),
            PureArg("string", self.description),
            ObjectArg(contracts.treasury_id),
        )


@dataclass(frozen=True)
class TransferCertificate(OperationRequest):
    account_id: str
    certificate_id: str

    kind: ClassVar[OperationKind] = OperationKind.TRANSFER_CERTIFICATE

    def move_call(self, contracts: ContractSettings) -> MoveCall:
        return _call(
            contracts, "transfer_certificate",
            ObjectArg(self.account_id),
            ObjectArg(self.certificate_id),
        )


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def is_valid_address(value: Any) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


def is_valid_email(value: Any) -> bool:
    return isinstance(value, str) and bool(_EMAIL_RE.match(value))


def normalize_address(value: str) -> str:
    """Lowercase, zero-padded 32-byte hex form (``0x0`` -> ``0x000...0``)."""
    if not is_valid_address(value):
        raise PopchainValidationError(f"Invalid address: {value!r}", field="address")
    return "0x" + value[2:].lower().rjust(64, "0")


def _address(value: Any, field: str) -> str:
    if not is_valid_address(value):
        raise PopchainValidationError(f"Invalid {field}: {value!r}", field=field)
    return value


def _email(value: Any) -> str:
    email = value.strip() if isinstance(value, str) else value
    if not is_valid_email(email):
        raise PopchainValidationError(f"Invalid email address: {value!r}", field="email")
    return email


def _amount(value: Any, field: str = "amount_mist") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise PopchainValidationError(f"{field} must be an integer amount of MIST", field=field)
    if value <= 0 or value > MAX_U64:
        raise PopchainValidationError(f"{field} must be between 1 and {MAX_U64}", field=field)
    return value


def _text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise PopchainValidationError(f"{field} is required", field=field)
    return value.strip()


def has_deposit_headroom(
    available_mist: int,
    amount_mist: int,
    reserve_mist: int = DEPOSIT_GAS_RESERVE_MIST,
) -> bool:
    """True when ``available`` covers the deposit plus the gas reserve."""
    return available_mist >= amount_mist + reserve_mist


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def build_create_account(
    email: str,
    user_type: str,
    owner_address: Optional[str] = None,
) -> CreateAccount:
    """Accounts created without a wallet are owned by ``0x0`` until linked."""
    return CreateAccount(
        email_hash=hash_email_bytes(_email(email)),
        role=role_for_user_type(user_type),
        owner_address=_address(owner_address or DEFAULT_WALLET_ADDRESS, "owner_address"),
    )


def build_add_to_whitelist(event_id: str, email: str) -> AddToWhitelist:
    return AddToWhitelist(
        event_id=_address(event_id, "event_id"),
        email_hash=hash_email_bytes(_email(email)),
    )


def build_remove_from_whitelist(event_id: str, email: str) -> RemoveFromWhitelist:
    return RemoveFromWhitelist(
        event_id=_address(event_id, "event_id"),
        email_hash=hash_email_bytes(_email(email)),
    )


def build_deposit(account_id: str, amount_mist: int) -> Deposit:
    """Deposit split off the payer's gas coin.

    Callers check :func:`has_deposit_headroom` first; skipping it surfaces
    later as an insufficient-funds failure.
    """
    return Deposit(
        account_id=_address(account_id, "account_id"),
        amount_mist=_amount(amount_mist),
    )


def build_mint_certificate(
    event_id: str,
    organizer_account_id: str,
    attendee_account_id: str,
    certificate_url: str,
    tier_index: int,
) -> MintCertificate:
    if isinstance(tier_index, bool) or not isinstance(tier_index, int) or tier_index not in TIER_INDICES:
        raise PopchainValidationError(
            f"tier_index must be 0-3, got {tier_index!r}", field="tier_index",
        )
    return MintCertificate(
        event_id=_address(event_id, "event_id"),
        organizer_account_id=_address(organizer_account_id, "organizer_account_id"),
        attendee_account_id=_address(attendee_account_id, "attendee_account_id"),
        certificate_url=_text(certificate_url, "certificate_url").encode("utf-8"),
        tier_index=tier_index,
    )


def build_withdraw_treasury(amount_mist: int) -> WithdrawTreasury:
    return WithdrawTreasury(amount_mist=_amount(amount_mist))


def build_close_event(event_id: str, organizer_account_id: str) -> CloseEvent:
    return CloseEvent(
        event_id=_address(event_id, "event_id"),
        organizer_account_id=_address(organizer_account_id, "organizer_account_id"),
    )


def build_link_wallet(account_id: str, wallet_address: str) -> LinkWallet:
    return LinkWallet(
        account_id=_address(account_id, "account_id"),
        wallet_address=_address(wallet_address, "wallet_address"),
    )


def build_create_event(account_id: str, name: str, description: str = "") -> CreateEvent:
    return CreateEvent(
        account_id=_address(account_id, "account_id"),
        name=_text(name, "name"),
        description=description.strip() if isinstance(description, str) else "",
    )


def build_transfer_certificate(account_id: str, certificate_id: str) -> TransferCertificate:
    return TransferCertificate(
        account_id=_address(account_id, "account_id"),
        certificate_id=_address(certificate_id, "certificate_id"),
    )
