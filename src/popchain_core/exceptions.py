"""Exception hierarchy for PopChain.

Exceptions are reserved for programmer errors (malformed builder input,
missing configuration) and for signalling inside the ledger, store and
storage clients. Protocol-level outcomes never leave the submission
orchestrator as exceptions: they are decoded into
:class:`popchain_core.error_decoder.DecodedError` values.

All exceptions have:
- error_code: Machine-readable error code (e.g., "VALIDATION_ERROR")
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to a serializable form
"""
from __future__ import annotations

from typing import Any, Optional


class PopchainException(Exception):
    """Base exception for all PopChain errors."""

    error_code: str = "POPCHAIN_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class PopchainValidationError(PopchainException):
    """Invalid input handed to a builder or service call."""

    error_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)


class PopchainConfigurationError(PopchainException):
    """A required setting is missing or inconsistent."""

    error_code = "CONFIGURATION_ERROR"


class LedgerRPCError(PopchainException):
    """The ledger node answered with a JSON-RPC error object."""

    error_code = "LEDGER_RPC_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        data: Any = None,
        method: Optional[str] = None,
    ) -> None:
        details: dict[str, Any] = {}
        if code is not None:
            details["rpc_code"] = code
        if method:
            details["method"] = method
        if data is not None:
            details["data"] = data
        super().__init__(message, details=details)
        self.code = code
        self.data = data
        self.method = method


class LedgerTransportError(PopchainException):
    """The ledger node could not be reached or returned a non-JSON-RPC reply."""

    error_code = "LEDGER_TRANSPORT_ERROR"


class StoreError(PopchainException):
    """Off-chain store write or read failed."""

    error_code = "STORE_ERROR"

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        details: dict[str, Any] = {}
        if table:
            details["table"] = table
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details=details)
        self.table = table
        self.status_code = status_code


class StorageError(PopchainException):
    """Object storage upload or lookup failed."""

    error_code = "STORAGE_ERROR"


class UserRejectedError(PopchainException):
    """The external wallet declined or the user cancelled signing."""

    error_code = "USER_REJECTED"
