"""
PopChain service facade.

Wires the ledger client, sponsor wallet, orchestrator, reconciler and
readers from one ``PopchainSettings`` and exposes one method per user-level
operation. Each method returns a :class:`ServiceResult`: the on-chain
outcome plus, after a finalized mutation, the off-chain reconciliation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .config import DEPOSIT_GAS_RESERVE_MIST, PopchainSettings
from .error_decoder import DecodedError, ErrorCategory
from .exceptions import PopchainConfigurationError
from .hashing import hash_email
from .logging_utils import ChainLogger
from .orchestrator import ExecutionOutcome, SubmissionOrchestrator, rejected_outcome
from .readers import AccountRanking, LedgerReader
from .reconciler import (
    ReconcileResult,
    Reconciler,
    certificate_row,
    event_row,
    profile_row,
    whitelist_row,
)
from .rpc_client import LedgerClient, SuiRPCClient
from .signers import TransactionSigner
from .sponsor import FundingStatus, SponsorLoadResult, SponsorWalletManager
from .storage import ObjectStorage, TuskyStorage
from .store import InMemoryStore, OffchainStore, RecordKind, SupabaseStore
from .tiers import tier_by_index, tier_index
from .transactions import (
    build_add_to_whitelist,
    build_close_event,
    build_create_account,
    build_create_event,
    build_deposit,
    build_link_wallet,
    build_mint_certificate,
    build_remove_from_whitelist,
    build_transfer_certificate,
    build_withdraw_treasury,
    has_deposit_headroom,
)
from .whitelist import BatchTally, BulkWhitelistEngine, ProgressCallback

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    outcome: ExecutionOutcome
    reconcile: Optional[ReconcileResult] = None

    @property
    def success(self) -> bool:
        return self.outcome.success

    @property
    def record(self):
        return self.reconcile.record if self.reconcile else None

    @property
    def warning(self) -> Optional[str]:
        return self.reconcile.warning if self.reconcile else None


class PopchainService:
    """One entry point per PopChain operation."""

    def __init__(
        self,
        settings: PopchainSettings,
        ledger: LedgerClient,
        store: OffchainStore,
        storage: Optional[ObjectStorage] = None,
        chain_logger: Optional[ChainLogger] = None,
    ):
        self.settings = settings
        self.ledger = ledger
        self.store = store
        self.storage = storage
        chain_logger = chain_logger or ChainLogger("popchain_core", settings.ledger.network)
        self.sponsor = SponsorWalletManager(settings.sponsor, ledger, chain_logger)
        self.orchestrator = SubmissionOrchestrator(
            ledger,
            settings.contracts,
            sponsor=self.sponsor,
            gas_budget_mist=settings.sponsor.gas_budget_mist,
            chain_logger=chain_logger,
        )
        self.reconciler = Reconciler(store, chain_logger)
        self.reader = LedgerReader(ledger, settings.contracts)
        self._chain_logger = chain_logger

    @classmethod
    def from_settings(cls, settings: PopchainSettings) -> "PopchainService":
        """Build the production wiring; the store falls back to memory when unset."""
        chain_logger = ChainLogger("popchain_core", settings.ledger.network)
        ledger = SuiRPCClient(settings.ledger, chain_logger)
        store: OffchainStore = SupabaseStore(settings.store) if settings.store.url else InMemoryStore()
        storage = TuskyStorage(settings.storage) if settings.storage.vault_id else None
        service = cls(settings, ledger, store, storage, chain_logger)
        service.sponsor.load()
        return service

    def _signer(self, signer: Optional[TransactionSigner]) -> TransactionSigner:
        if signer is not None:
            return signer
        sponsor = self.sponsor.signer
        if sponsor is None:
            raise PopchainConfigurationError(
                "Sponsor wallet not configured. POPCHAIN_SPONSOR__PRIVATE_KEY must be set.",
            )
        return sponsor

    # -- accounts ----------------------------------------------------------

    async def register_account(
        self,
        user_id: str,
        email: str,
        user_type: str,
        first_name: str = "",
        last_name: str = "",
        wallet_address: Optional[str] = None,
        signer: Optional[TransactionSigner] = None,
    ) -> ServiceResult:
        """Create the on-chain account (sponsored by default) and its profile row."""
        email = email.strip()
        request = build_create_account(email, user_type, wallet_address)
        outcome = await self.orchestrator.submit(request, self._signer(signer))
        if not outcome.success:
            return ServiceResult(outcome)
        if outcome.object_id is None:
            logger.warning("Account created in %s but its object id could not be extracted", outcome.digest)
        reconcile = await self.reconciler.persist(
            RecordKind.USER_PROFILES,
            profile_row(user_id, email, user_type, outcome.object_id, first_name, last_name, wallet_address),
        )
        return ServiceResult(outcome, reconcile)

    async def link_wallet(
        self,
        user_id: str,
        account_id: str,
        wallet_address: str,
        signer: TransactionSigner,
    ) -> ServiceResult:
        outcome = await self.orchestrator.submit(build_link_wallet(account_id, wallet_address), signer)
        if not outcome.success:
            return ServiceResult(outcome)
        reconcile = await self.reconciler.amend(
            RecordKind.USER_PROFILES, {"id": user_id}, {"wallet_address": wallet_address},
        )
        return ServiceResult(outcome, reconcile)

    async def deposit(
        self,
        account_id: str,
        amount_mist: int,
        signer: TransactionSigner,
        available_mist: Optional[int] = None,
    ) -> ServiceResult:
        """Deposit from the payer's own wallet.

        With ``available_mist`` the headroom check runs here and a short
        balance is reported without submitting.
        """
        request = build_deposit(account_id, amount_mist)
        if available_mist is not None and not has_deposit_headroom(available_mist, amount_mist):
            needed = amount_mist + DEPOSIT_GAS_RESERVE_MIST
            return ServiceResult(rejected_outcome(request, DecodedError(
                category=ErrorCategory.INSUFFICIENT_FUNDS,
                message=(
                    "Insufficient balance. You need the deposit amount plus 0.1 SUI "
                    "reserved for gas fees."
                ),
                raw_message=f"available {available_mist} MIST < required {needed} MIST",
            )))
        return ServiceResult(await self.orchestrator.submit(request, signer))

    # -- events ------------------------------------------------------------

    async def create_event(
        self,
        organizer_id: str,
        account_id: str,
        name: str,
        description: str,
        signer: TransactionSigner,
    ) -> ServiceResult:
        request = build_create_event(account_id, name, description)
        outcome = await self.orchestrator.submit(request, signer)
        if not outcome.success:
            return ServiceResult(outcome)
        if outcome.object_id is None:
            message = f"Event created in {outcome.digest} but its object id could not be extracted"
            logger.warning(message)
            return ServiceResult(outcome, ReconcileResult(warning=message))
        reconcile = await self.reconciler.persist(
            RecordKind.EVENTS,
            event_row(outcome.object_id, request.name, request.description, organizer_id, account_id),
        )
        return ServiceResult(outcome, reconcile)

    async def close_event(
        self, event_id: str, organizer_account_id: str, signer: TransactionSigner,
    ) -> ServiceResult:
        outcome = await self.orchestrator.submit(build_close_event(event_id, organizer_account_id), signer)
        if not outcome.success:
            return ServiceResult(outcome)
        reconcile = await self.reconciler.amend(RecordKind.EVENTS, {"event_id": event_id}, {"active": False})
        return ServiceResult(outcome, reconcile)

    # -- whitelist ---------------------------------------------------------

    async def add_to_whitelist(
        self, event_id: str, email: str, signer: TransactionSigner,
    ) -> ServiceResult:
        email = email.strip()
        outcome = await self.orchestrator.submit(build_add_to_whitelist(event_id, email), signer)
        if not outcome.success:
            return ServiceResult(outcome)
        reconcile = await self.reconciler.persist(RecordKind.WHITELISTINGS, whitelist_row(event_id, email))
        return ServiceResult(outcome, reconcile)

    async def remove_from_whitelist(
        self, event_id: str, email: str, signer: TransactionSigner,
    ) -> ServiceResult:
        email = email.strip()
        outcome = await self.orchestrator.submit(build_remove_from_whitelist(event_id, email), signer)
        if not outcome.success:
            return ServiceResult(outcome)
        reconcile = await self.reconciler.remove(
            RecordKind.WHITELISTINGS, {"event_id": event_id, "email_hash": hash_email(email)},
        )
        return ServiceResult(outcome, reconcile)

    async def whitelist_bulk(
        self,
        event_id: str,
        lines: Iterable[str],
        signer: TransactionSigner,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchTally:
        engine = BulkWhitelistEngine(self.orchestrator, self.reconciler, signer, self._chain_logger)
        return await engine.run(event_id, lines, on_progress)

    # -- certificates ------------------------------------------------------

    async def mint_certificate(
        self,
        event_id: str,
        organizer_account_id: str,
        attendee_account_id: str,
        attendee_email: str,
        certificate_url: str,
        tier_index: int,
        signer: Optional[TransactionSigner] = None,
    ) -> ServiceResult:
        """Mint for an attendee (sponsored by default).

        The contract consumes the whitelist entry, so the matching
        whitelisting row is removed afterwards.
        """
        request = build_mint_certificate(
            event_id, organizer_account_id, attendee_account_id, certificate_url, tier_index,
        )
        outcome = await self.orchestrator.submit(request, self._signer(signer))
        if not outcome.success:
            return ServiceResult(outcome)
        reconcile = await self.reconciler.remove(
            RecordKind.WHITELISTINGS,
            {"event_id": event_id, "email_hash": hash_email(attendee_email.strip())},
        )
        return ServiceResult(outcome, reconcile)

    async def save_certificate_design(
        self,
        event_id: str,
        user_id: str,
        image_url: str,
        tier_name: str,
        name: Optional[str] = None,
    ) -> ReconcileResult:
        """Store an organizer's certificate artwork for one tier (off-chain only)."""
        index = tier_index(tier_name)
        tier = tier_by_index(index)
        tier_image = tier.image_url(self.settings.store.url) if self.settings.store.url else None
        return await self.reconciler.persist(
            RecordKind.CERTIFICATES,
            certificate_row(event_id, user_id, image_url, tier, index, name=name, tier_image_url=tier_image),
        )

    async def transfer_certificate(
        self, account_id: str, certificate_id: str, signer: TransactionSigner,
    ) -> ServiceResult:
        request = build_transfer_certificate(account_id, certificate_id)
        return ServiceResult(await self.orchestrator.submit(request, signer))

    async def upload_certificate_image(
        self, data: bytes, filename: str, content_type: str = "image/png",
    ) -> Tuple[str, Optional[str]]:
        """Upload artwork; the URL is None until the blob is indexed."""
        if self.storage is None:
            raise PopchainConfigurationError("Object storage is not configured (POPCHAIN_STORAGE__VAULT_ID)")
        handle = await self.storage.upload(data, filename, content_type)
        return handle, await self.storage.resolve_public_url(handle)

    async def account_rankings(self, limit: int = 10) -> List[AccountRanking]:
        """Attendee leaderboard by certificates held, counted per tier on-chain."""
        return await self.reader.account_rankings(self.store, limit)

    # -- treasury ----------------------------------------------------------

    async def withdraw_treasury(self, amount_mist: int, signer: TransactionSigner) -> ServiceResult:
        """Only the treasury owner can withdraw; the ledger enforces it."""
        return ServiceResult(await self.orchestrator.submit(build_withdraw_treasury(amount_mist), signer))

    # -- sponsor -----------------------------------------------------------

    async def sponsor_status(self) -> Tuple[SponsorLoadResult, FundingStatus]:
        return self.sponsor.load(), await self.sponsor.check_funding()

    async def close(self) -> None:
        await self.ledger.close()
        await self.store.close()
        if self.storage is not None:
            await self.storage.close()
