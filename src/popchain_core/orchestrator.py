"""
Submission and finality orchestration.

State machine per submission::

    BUILT -> SIGNING -> SUBMITTED -> AWAITING_FINALITY -> FINALIZED | FAILED

``submit`` returns an :class:`ExecutionOutcome` for every protocol-level
result, success or failure; only malformed requests (programmer errors)
raise. Nothing is retried here: whether a failure is safe to retry is the
caller's call, informed by ``outcome.error.retryable``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional, Tuple

from .config import ContractSettings
from .error_decoder import DecodedError, ErrorCategory, decode_error
from .exceptions import PopchainConfigurationError, PopchainValidationError
from .extraction import (
    CreatedObject,
    EmittedEvent,
    ExecutionView,
    extract_created_object_id,
    merge_views,
    normalize_execution,
)
from .logging_utils import ChainLogger, OperationType, fail
from .rpc_client import LedgerClient
from .signers import TransactionSigner
from .sponsor import SponsorWalletManager
from .transactions import OperationKind, OperationRequest

logger = logging.getLogger(__name__)

DEFAULT_GAS_BUDGET_MIST = 50_000_000


class SubmissionState(str, Enum):
    BUILT = "built"
    SIGNING = "signing"
    SUBMITTED = "submitted"
    AWAITING_FINALITY = "awaiting_finality"
    FINALIZED = "finalized"
    FAILED = "failed"


@dataclass(frozen=True)
class ExecutionOutcome:
    """Result of one submission. Produced once, never mutated."""
    request_kind: OperationKind
    state: SubmissionState
    digest: Optional[str] = None
    object_id: Optional[str] = None
    created_objects: Tuple[CreatedObject, ...] = ()
    events: Tuple[EmittedEvent, ...] = ()
    effects: Mapping[str, Any] = field(default_factory=dict)
    error: Optional[DecodedError] = None
    trace: Tuple[SubmissionState, ...] = ()
    payload: Optional[Mapping[str, Any]] = None

    @property
    def success(self) -> bool:
        return self.state is SubmissionState.FINALIZED and self.error is None

    @property
    def message(self) -> Optional[str]:
        """User-facing failure text."""
        return self.error.display_message if self.error else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_kind": self.request_kind.value,
            "state": self.state.value,
            "success": self.success,
            "digest": self.digest,
            "object_id": self.object_id,
            "created_objects": [o.object_id for o in self.created_objects],
            "error": self.error.to_dict() if self.error else None,
        }


def rejected_outcome(request: OperationRequest, error: DecodedError) -> ExecutionOutcome:
    """Outcome for a request stopped before signing by a caller-side check."""
    return ExecutionOutcome(
        request_kind=request.kind,
        state=SubmissionState.FAILED,
        error=error,
        trace=(SubmissionState.BUILT, SubmissionState.FAILED),
    )


class SubmissionOrchestrator:
    """Signs, submits and awaits finality for operation requests."""

    def __init__(
        self,
        ledger: LedgerClient,
        contracts: ContractSettings,
        sponsor: Optional[SponsorWalletManager] = None,
        gas_budget_mist: Optional[int] = None,
        chain_logger: Optional[ChainLogger] = None,
    ):
        self._ledger = ledger
        self._contracts = contracts
        self._sponsor = sponsor
        if gas_budget_mist is None:
            gas_budget_mist = sponsor.gas_budget if sponsor else DEFAULT_GAS_BUDGET_MIST
        self._gas_budget = gas_budget_mist
        self._chain_logger = chain_logger or ChainLogger(__name__)

    async def submit(self, request: OperationRequest, signer: TransactionSigner) -> ExecutionOutcome:
        """Run one request through signing, submission and finality.

        Raises only for requests that cannot be compiled for ``signer``.
        """
        call = request.move_call(self._contracts)
        if signer.is_sponsor:
            if self._sponsor is None:
                raise PopchainConfigurationError("Sponsored submission requires a SponsorWalletManager")
            if call.splits_gas:
                raise PopchainValidationError(
                    f"{request.kind.value} splits the payer's gas coin and cannot be sponsored",
                    field="signer",
                )

        trace: List[SubmissionState] = [SubmissionState.BUILT]
        async with self._chain_logger.operation_context(
            OperationType.TRANSACTION_SUBMIT,
            kind=request.kind.value,
            target=call.target,
            sponsored=signer.is_sponsor,
        ) as ctx:
            outcome = await self._run(request, call, signer, trace)
            ctx.metadata["digest"] = outcome.digest
            ctx.metadata["trace"] = [s.value for s in outcome.trace]
            if outcome.error is not None:
                ctx.metadata["category"] = outcome.error.category.value
                fail(ctx, outcome.error.raw_message or outcome.error.message)
            return outcome

    async def _run(self, request, call, signer, trace) -> ExecutionOutcome:
        if signer.is_sponsor:
            gate = await self._funding_gate(request, trace)
            if gate is not None:
                return gate

        trace.append(SubmissionState.SIGNING)
        try:
            submitted = await signer.sign_and_execute(call, self._ledger, self._gas_budget)
        except Exception as e:  # noqa: BLE001 - every failure is returned as data
            logger.warning("Submission of %s failed: %s", request.kind.value, e)
            return self._failed(request, trace, decode_error(e))

        trace.append(SubmissionState.SUBMITTED)
        view = normalize_execution(submitted)
        if view.failed:
            return self._failed(request, trace, decode_error(view.error or "Transaction failed"), view, submitted)
        if not view.digest:
            return self._failed(
                request, trace, decode_error("Submission returned no transaction digest"), view, submitted,
            )

        trace.append(SubmissionState.AWAITING_FINALITY)
        try:
            finalized = await self._ledger.wait_for_transaction(view.digest)
        except Exception as e:  # noqa: BLE001
            logger.warning("Finality wait for %s failed: %s", view.digest, e)
            return self._failed(request, trace, decode_error(e), view, submitted)

        final_view = merge_views(normalize_execution(finalized), view)
        if final_view.failed:
            return self._failed(
                request, trace, decode_error(final_view.error or "Transaction failed"), final_view, finalized,
            )

        object_id = None
        if request.extraction is not None:
            object_id = (
                extract_created_object_id(finalized, request.extraction)
                or extract_created_object_id(submitted, request.extraction)
            )

        trace.append(SubmissionState.FINALIZED)
        logger.info("%s finalized: %s", request.kind.value, final_view.digest)
        return ExecutionOutcome(
            request_kind=request.kind,
            state=SubmissionState.FINALIZED,
            digest=final_view.digest,
            object_id=object_id,
            created_objects=final_view.created_objects,
            events=final_view.events,
            effects=final_view.effects,
            trace=tuple(trace),
            payload=finalized,
        )

    async def _funding_gate(self, request, trace) -> Optional[ExecutionOutcome]:
        """Stop sponsored submissions the sponsor cannot pay for."""
        try:
            funding = await self._sponsor.check_funding()
        except Exception as e:  # noqa: BLE001
            return self._failed(request, trace, decode_error(e))
        if funding.sufficient:
            return None
        message = self._sponsor.funding_message(funding)
        logger.warning(message)
        return self._failed(
            request,
            trace,
            DecodedError(
                category=ErrorCategory.INSUFFICIENT_FUNDS,
                message=message,
                raw_message=funding.error or f"sponsor balance {funding.balance_mist} MIST",
            ),
        )

    @staticmethod
    def _failed(
        request: OperationRequest,
        trace: List[SubmissionState],
        error: DecodedError,
        view: Optional[ExecutionView] = None,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> ExecutionOutcome:
        trace.append(SubmissionState.FAILED)
        view = view or ExecutionView()
        return ExecutionOutcome(
            request_kind=request.kind,
            state=SubmissionState.FAILED,
            digest=view.digest,
            created_objects=view.created_objects,
            events=view.events,
            effects=view.effects,
            error=error,
            trace=tuple(trace),
            payload=payload,
        )
