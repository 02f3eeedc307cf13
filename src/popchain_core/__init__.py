"""PopChain orchestration layer exports."""

from .config import PopchainSettings, load_settings
from .error_decoder import DecodedError, ErrorCategory, decode_error
from .exceptions import (
    LedgerRPCError,
    LedgerTransportError,
    PopchainConfigurationError,
    PopchainException,
    PopchainValidationError,
    StorageError,
    StoreError,
    UserRejectedError,
)
from .extraction import ExecutionView, ExtractionQuery, extract_created_object_id, normalize_execution
from .hashing import Digest, digest, hash_email
from .orchestrator import ExecutionOutcome, SubmissionOrchestrator, SubmissionState
from .reconciler import ReconcileResult, Reconciler
from .rpc_client import LedgerClient, SuiRPCClient
from .service import PopchainService, ServiceResult
from .signers import TransactionSigner, WalletSigner
from .sponsor import FundingStatus, SponsorLoadStatus, SponsorSigner, SponsorWalletManager
from .store import InMemoryStore, OffchainStore, RecordKind, SupabaseStore
from .whitelist import BatchTally, BulkWhitelistEngine, WhitelistProgress

__version__ = "0.1.0"

__all__ = [
    "PopchainSettings",
    "load_settings",
    "DecodedError",
    "ErrorCategory",
    "decode_error",
    "LedgerRPCError",
    "LedgerTransportError",
    "PopchainConfigurationError",
    "PopchainException",
    "PopchainValidationError",
    "StorageError",
    "StoreError",
    "UserRejectedError",
    "ExecutionView",
    "ExtractionQuery",
    "extract_created_object_id",
    "normalize_execution",
    "Digest",
    "digest",
    "hash_email",
    "ExecutionOutcome",
    "SubmissionOrchestrator",
    "SubmissionState",
    "ReconcileResult",
    "Reconciler",
    "LedgerClient",
    "SuiRPCClient",
    "PopchainService",
    "ServiceResult",
    "TransactionSigner",
    "WalletSigner",
    "FundingStatus",
    "SponsorLoadStatus",
    "SponsorSigner",
    "SponsorWalletManager",
    "InMemoryStore",
    "OffchainStore",
    "RecordKind",
    "SupabaseStore",
    "BatchTally",
    "BulkWhitelistEngine",
    "WhitelistProgress",
]
