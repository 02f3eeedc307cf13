"""
Bulk whitelisting.

Drives one AddToWhitelist submission per candidate line, strictly in input
order, one at a time per event. A failing candidate is counted and the
batch moves on; the batch itself never stops early.

Progress is observed either by iterating :meth:`BulkWhitelistEngine.stream`
or by passing a callback to :meth:`BulkWhitelistEngine.run`.
"""
from __future__ import annotations

import asyncio
import csv
import inspect
import logging
from dataclasses import dataclass, replace
from typing import AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from .error_decoder import DecodedError, ErrorCategory, decode_error
from .exceptions import PopchainValidationError
from .logging_utils import ChainLogger, OperationType, fail
from .orchestrator import ExecutionOutcome, SubmissionOrchestrator
from .reconciler import Reconciler, whitelist_row
from .signers import TransactionSigner
from .store import RecordKind
from .transactions import build_add_to_whitelist, is_valid_address, is_valid_email

logger = logging.getLogger(__name__)

HEADER_NAMES = frozenset({"email", "emails", "e-mail"})


@dataclass
class BatchTally:
    """Running counts for one batch. ``processed`` only ever grows."""
    total: int
    processed: int = 0
    succeeded: int = 0
    failed: int = 0

    @property
    def is_complete(self) -> bool:
        return self.processed == self.total

    def record(self, success: bool) -> None:
        if self.processed >= self.total:
            raise RuntimeError("batch tally already complete")
        self.processed += 1
        if success:
            self.succeeded += 1
        else:
            self.failed += 1

    def snapshot(self) -> "BatchTally":
        return replace(self)


@dataclass(frozen=True)
class CandidateResult:
    position: int
    candidate: str
    success: bool
    outcome: Optional[ExecutionOutcome] = None
    error: Optional[DecodedError] = None
    warning: Optional[str] = None


@dataclass(frozen=True)
class WhitelistProgress:
    event_id: str
    tally: BatchTally
    result: CandidateResult


ProgressCallback = Callable[[WhitelistProgress], Union[None, Awaitable[None]]]


def read_candidates(lines: Iterable[str]) -> List[str]:
    """First column of each delimited line, trimmed.

    Blank lines and a leading header row are dropped; anything else is a
    candidate, valid or not.
    """
    candidates: List[str] = []
    for row in csv.reader(lines):
        if not row:
            continue
        value = row[0].strip()
        if not value:
            continue
        if not candidates and value.lower() in HEADER_NAMES:
            continue
        candidates.append(value)
    return candidates


class BulkWhitelistEngine:
    """Sequential AddToWhitelist pipeline with per-item failure isolation."""

    def __init__(
        self,
        orchestrator: SubmissionOrchestrator,
        reconciler: Reconciler,
        signer: TransactionSigner,
        chain_logger: Optional[ChainLogger] = None,
    ):
        self._orchestrator = orchestrator
        self._reconciler = reconciler
        self._signer = signer
        self._chain_logger = chain_logger or ChainLogger(__name__)
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, event_id: str) -> asyncio.Lock:
        return self._locks.setdefault(event_id, asyncio.Lock())

    def stream(self, event_id: str, lines: Iterable[str]) -> AsyncIterator[WhitelistProgress]:
        """Yield progress after every candidate, in input order.

        The event lock is held only while a candidate is in flight, never
        while suspended at a ``yield``: an iterator abandoned part-way holds
        nothing, and a later batch for the same event proceeds.
        """
        return self._iterate(event_id, lines, self._lock_for(event_id))

    async def run(
        self,
        event_id: str,
        lines: Iterable[str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchTally:
        """Process the whole batch and return the final tally.

        Holds the event lock for the whole batch, so two runs against the
        same event never interleave.
        """
        tally = BatchTally(total=0)
        async with self._lock_for(event_id):
            progress_iter = self._iterate(event_id, lines, None)
            try:
                async for progress in progress_iter:
                    tally = progress.tally
                    if on_progress is not None:
                        maybe = on_progress(progress)
                        if inspect.isawaitable(maybe):
                            await maybe
            finally:
                await progress_iter.aclose()
        return tally

    async def _iterate(
        self, event_id: str, lines: Iterable[str], lock: Optional[asyncio.Lock],
    ) -> AsyncIterator[WhitelistProgress]:
        if not is_valid_address(event_id):
            raise PopchainValidationError(f"Invalid event_id: {event_id!r}", field="event_id")

        candidates = read_candidates(lines)
        tally = BatchTally(total=len(candidates))

        async with self._chain_logger.operation_context(
            OperationType.BATCH_WHITELIST, event_id=event_id, total=tally.total,
        ) as ctx:
            for position, candidate in enumerate(candidates):
                if lock is None:
                    result = await self._process(event_id, position, candidate)
                else:
                    async with lock:
                        result = await self._process(event_id, position, candidate)
                tally.record(result.success)
                yield WhitelistProgress(event_id, tally.snapshot(), result)

            ctx.metadata.update(succeeded=tally.succeeded, failed=tally.failed)
            if tally.failed:
                fail(ctx, f"{tally.failed} of {tally.total} candidates failed")

    async def _process(self, event_id: str, position: int, candidate: str) -> CandidateResult:
        if not is_valid_email(candidate):
            logger.info("Skipping malformed candidate at line %d", position + 1)
            return CandidateResult(
                position,
                candidate,
                success=False,
                error=DecodedError(
                    category=ErrorCategory.INVALID_INPUT,
                    message="Not a valid email address.",
                    raw_message=candidate,
                ),
            )

        try:
            request = build_add_to_whitelist(event_id, candidate)
            outcome = await self._orchestrator.submit(request, self._signer)
        except Exception as e:  # noqa: BLE001 - one candidate never stops the batch
            logger.warning("Candidate %d raised during submission: %s", position + 1, e)
            return CandidateResult(position, candidate, success=False, error=decode_error(e))

        if not outcome.success:
            return CandidateResult(position, candidate, success=False, outcome=outcome, error=outcome.error)

        reconciled = await self._reconciler.persist(
            RecordKind.WHITELISTINGS, whitelist_row(event_id, candidate),
        )
        return CandidateResult(position, candidate, success=True, outcome=outcome, warning=reconciled.warning)
