"""
Sponsor wallet management.

The sponsor is a service-owned Ed25519 keypair that pays gas for users who
have no funded wallet of their own. It is loaded once at process start from
``POPCHAIN_SPONSOR__PRIVATE_KEY`` and kept resident; key material is never
logged.

Features:
- Secret decoding (``suiprivkey1...`` bech32, or base64/hex keystore bytes)
- Address verification against ``POPCHAIN_SPONSOR__EXPECTED_ADDRESS``
- Sui intent signing of transaction bytes
- Funding pre-flight check with an actionable message
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import bech32
from nacl import signing

from .config import MIST_PER_SUI, SponsorSettings
from .exceptions import PopchainValidationError
from .logging_utils import ChainLogger, OperationType, fail, mask_address
from .rpc_client import LedgerClient
from .signers import TransactionSigner
from .transactions import MoveCall

logger = logging.getLogger(__name__)

ED25519_FLAG = 0x00
SEED_SIZE = 32
BECH32_HRP = "suiprivkey"

# Intent scope TransactionData, version V0, app id Sui
TRANSACTION_INTENT = bytes([0, 0, 0])


def _blake2b_256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def derive_sui_address(public_key: bytes) -> str:
    """Sui address of an Ed25519 public key."""
    return "0x" + _blake2b_256(bytes([ED25519_FLAG]) + public_key).hex()


class SponsorSigner(TransactionSigner):
    """Resident sponsor keypair. Signing does not mutate state."""

    is_sponsor = True

    def __init__(self, seed: bytes):
        if len(seed) != SEED_SIZE:
            raise PopchainValidationError("Ed25519 seed must be 32 bytes", field="private_key")
        self._signing_key = signing.SigningKey(seed)
        self._public_key = bytes(self._signing_key.verify_key)
        self._address = derive_sui_address(self._public_key)

    @property
    def address(self) -> str:
        return self._address

    @property
    def public_key(self) -> bytes:
        return self._public_key

    def sign_transaction(self, tx_bytes_b64: str) -> str:
        """Serialized Sui signature (``flag || sig || pubkey``, base64)."""
        tx_bytes = base64.b64decode(tx_bytes_b64)
        message_digest = _blake2b_256(TRANSACTION_INTENT + tx_bytes)
        signature = self._signing_key.sign(message_digest).signature
        return base64.b64encode(bytes([ED25519_FLAG]) + signature + self._public_key).decode()

    async def sign_and_execute(
        self,
        call: MoveCall,
        ledger: LedgerClient,
        gas_budget: int,
    ) -> Dict[str, Any]:
        if call.splits_gas:
            raise PopchainValidationError(
                f"{call.function} splits the payer's gas coin and cannot be sponsored",
                field="signer",
            )
        tx_bytes = await ledger.build_move_call(self._address, call, gas_budget)
        return await ledger.execute_transaction(tx_bytes, [self.sign_transaction(tx_bytes)])

    def __repr__(self) -> str:
        return f"SponsorSigner(address={mask_address(self._address)})"


class SponsorLoadStatus(str, Enum):
    VERIFIED = "verified"          # derived address matches the expected one
    UNVERIFIED = "unverified"      # decoded, but no expected address confirmed it
    NOT_CONFIGURED = "not_configured"
    INVALID = "invalid"            # secret present but undecodable


@dataclass(frozen=True)
class SponsorLoadResult:
    status: SponsorLoadStatus
    signer: Optional[SponsorSigner] = None
    encoding: Optional[str] = None
    message: str = ""

    @property
    def loaded(self) -> bool:
        return self.signer is not None

    @property
    def address(self) -> Optional[str]:
        return self.signer.address if self.signer else None


def _decode_raw(secret: str) -> Optional[bytes]:
    text = secret[2:] if secret.startswith("0x") else secret
    if secret.startswith("0x") or len(text) in (64, 66, 128):
        try:
            return bytes.fromhex(text)
        except ValueError:
            pass
    try:
        return base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError):
        return None


def decode_secret_candidates(secret: str) -> List[Tuple[str, bytes]]:
    """Candidate 32-byte seeds for ``secret``, canonical decode first.

    Canonical: Sui keystore bytes ``flag || seed`` as bech32 ``suiprivkey1...``
    or base64/hex, or a bare 32-byte seed. Other lengths fall back to fixed
    slices of the raw bytes, which only the expected address can confirm.
    """
    secret = secret.strip()
    if not secret:
        return []

    if secret.lower().startswith(BECH32_HRP):
        hrp, data = bech32.bech32_decode(secret.lower())
        if hrp != BECH32_HRP or data is None:
            return []
        payload = bytes(bech32.convertbits(data, 5, 8, False) or [])
        if len(payload) == SEED_SIZE + 1 and payload[0] == ED25519_FLAG:
            return [("bech32", payload[1:])]
        return []

    raw = _decode_raw(secret)
    if not raw:
        return []

    candidates: List[Tuple[str, bytes]] = []
    if len(raw) == SEED_SIZE + 1 and raw[0] == ED25519_FLAG:
        candidates.append(("keystore", raw[1:]))
    elif len(raw) == SEED_SIZE:
        candidates.append(("seed", raw))

    if len(raw) >= SEED_SIZE:
        for label, piece in (
            ("head", raw[:SEED_SIZE]),
            ("offset1", raw[1:SEED_SIZE + 1]),
            ("tail", raw[-SEED_SIZE:]),
        ):
            if len(piece) == SEED_SIZE and all(piece != seen for _, seen in candidates):
                candidates.append((label, piece))
    return candidates


@dataclass(frozen=True)
class FundingStatus:
    sufficient: bool
    balance_mist: int
    address: Optional[str]
    minimum_mist: int = 0
    error: Optional[str] = None

    @property
    def balance_sui(self) -> float:
        return self.balance_mist / MIST_PER_SUI


class SponsorWalletManager:
    """
    Owns the sponsor signer and its funding checks.

    Built once from settings and shared by every submission; ``load()`` is
    idempotent and never raises.
    """

    def __init__(
        self,
        settings: SponsorSettings,
        ledger: LedgerClient,
        chain_logger: Optional[ChainLogger] = None,
    ):
        self._settings = settings
        self._ledger = ledger
        self._chain_logger = chain_logger or ChainLogger(__name__)
        self._result: Optional[SponsorLoadResult] = None

    @property
    def signer(self) -> Optional[SponsorSigner]:
        return self.load().signer

    @property
    def gas_budget(self) -> int:
        return self._settings.gas_budget_mist

    def load(self) -> SponsorLoadResult:
        if self._result is None:
            try:
                self._result = self._load()
            except Exception as e:  # noqa: BLE001 - load reports, never raises
                logger.error("Sponsor key could not be loaded: %s", type(e).__name__)
                self._result = SponsorLoadResult(
                    SponsorLoadStatus.INVALID, message="Sponsor key could not be decoded",
                )
        return self._result

    def _load(self) -> SponsorLoadResult:
        secret = self._settings.private_key.get_secret_value()
        if not secret.strip():
            logger.warning("Sponsor wallet not configured; sponsored submissions are disabled")
            return SponsorLoadResult(SponsorLoadStatus.NOT_CONFIGURED, message="Sponsor key is not set")

        candidates = decode_secret_candidates(secret)
        if not candidates:
            logger.error("Sponsor key is set but matches no supported encoding")
            return SponsorLoadResult(SponsorLoadStatus.INVALID, message="Sponsor key is not decodable")

        expected = self._settings.expected_address
        signers = [(label, SponsorSigner(seed)) for label, seed in candidates]
        if expected:
            for label, signer in signers:
                if signer.address == expected:
                    logger.info(
                        "Sponsor wallet loaded (%s encoding): %s", label, mask_address(signer.address),
                    )
                    return SponsorLoadResult(SponsorLoadStatus.VERIFIED, signer, label)
            logger.warning(
                "No decoding of the sponsor key matches expected address %s; using %s decode",
                mask_address(expected), signers[0][0],
            )
            label, signer = signers[0]
            return SponsorLoadResult(
                SponsorLoadStatus.UNVERIFIED, signer, label,
                message=f"Derived address {signer.address} does not match expected {expected}",
            )

        label, signer = signers[0]
        logger.info("Sponsor wallet loaded (%s encoding, unverified): %s", label, mask_address(signer.address))
        return SponsorLoadResult(SponsorLoadStatus.UNVERIFIED, signer, label)

    async def check_funding(self, minimum_mist: Optional[int] = None) -> FundingStatus:
        """Sum the sponsor's coins and compare against ``minimum_mist``.

        Transport failures propagate to the caller.
        """
        minimum = self._settings.min_balance_mist if minimum_mist is None else minimum_mist
        signer = self.signer
        if signer is None:
            return FundingStatus(False, 0, None, minimum, error=self.load().message or "Sponsor key is not set")

        async with self._chain_logger.operation_context(
            OperationType.FUNDING_CHECK, address=mask_address(signer.address), minimum_mist=minimum,
        ) as ctx:
            balance = await self._ledger.get_balance(signer.address)
            status = FundingStatus(balance >= minimum, balance, signer.address, minimum)
            ctx.metadata["balance_mist"] = balance
            if not status.sufficient:
                fail(ctx, "insufficient sponsor balance")
            return status

    @staticmethod
    def funding_message(status: FundingStatus) -> str:
        """Actionable text for an insufficient or unavailable sponsor."""
        if status.address is None:
            return (
                "Sponsored transactions are unavailable: the sponsor wallet is not configured. "
                "Set POPCHAIN_SPONSOR__PRIVATE_KEY."
            )
        if status.sufficient:
            return f"Sponsor wallet {status.address} holds {status.balance_sui:.4f} SUI."
        return (
            f"Sponsor wallet has insufficient balance ({status.balance_sui:.4f} SUI, needs at least "
            f"{status.minimum_mist / MIST_PER_SUI:.4f} SUI). Please fund this address: {status.address}"
        )
