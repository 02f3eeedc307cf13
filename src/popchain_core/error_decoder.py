"""Decode ledger failure signals into a closed set of error categories.

A failure signal can be almost anything: a JSON-RPC error object, an
``effects.status.error`` string such as
``MoveAbort(MoveLocation { ... }, 3) in command 0``, an exception raised by
the transport, or an exception raised by an external wallet. ``decode_error``
accepts all of them and always returns a :class:`DecodedError`; it never
raises.

Lookup order:
1. numeric abort code from structured fields (``code``, ``errorCode``,
   ``moveAbortCode``, ``details.code``), then from the text form
   (``MoveAbort(..., N)``, ``error code: N``, ``abort code: N``)
2. fixed code table (``ABORT_CODES``)
3. exception type (validation, transport)
4. substring heuristics on the message
5. ``UNKNOWN`` with the raw message kept verbatim
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, NamedTuple, Optional, Tuple

import httpx

from .exceptions import LedgerTransportError, PopchainValidationError, UserRejectedError

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    NOT_AUTHORIZED = "not_authorized"
    NOT_WHITELISTED = "not_whitelisted"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    ALREADY_CLAIMED = "already_claimed"
    EVENT_CLOSED = "event_closed"
    RESOURCE_NOT_FOUND = "resource_not_found"
    INVALID_INPUT = "invalid_input"
    TRANSPORT_FAILURE = "transport_failure"
    UNKNOWN = "unknown"


CATEGORY_MESSAGES: Dict[ErrorCategory, str] = {
    ErrorCategory.NOT_AUTHORIZED:
        "Unauthorized action. You do not have permission to perform this operation.",
    ErrorCategory.NOT_WHITELISTED:
        "You are not whitelisted for this event. Please contact the event organizer "
        "to be added to the whitelist.",
    ErrorCategory.INSUFFICIENT_FUNDS:
        "Insufficient funds. Please add more SUI to complete this transaction.",
    ErrorCategory.ALREADY_CLAIMED:
        "You have already claimed this certificate. Each certificate can only be claimed once.",
    ErrorCategory.EVENT_CLOSED:
        "This event is closed. Certificates can no longer be minted for this event.",
    ErrorCategory.RESOURCE_NOT_FOUND:
        "The requested object was not found on-chain.",
    ErrorCategory.INVALID_INPUT:
        "The request contained invalid input.",
    ErrorCategory.TRANSPORT_FAILURE:
        "The network request to the ledger failed. Please try again.",
    ErrorCategory.UNKNOWN:
        "An unexpected error occurred. Please try again.",
}


class AbortCode(NamedTuple):
    name: str
    category: ErrorCategory
    message: str


ABORT_CODES: Dict[int, AbortCode] = {
    1: AbortCode(
        "E_NOT_ORGANIZER", ErrorCategory.NOT_AUTHORIZED,
        "This action requires organizer permissions. Only organizers can perform this action.",
    ),
    2: AbortCode(
        "E_NOT_ATTENDEE", ErrorCategory.NOT_AUTHORIZED,
        "This action requires attendee permissions. Only attendees can perform this action.",
    ),
    3: AbortCode(
        "E_NOT_WHITELISTED", ErrorCategory.NOT_WHITELISTED,
        CATEGORY_MESSAGES[ErrorCategory.NOT_WHITELISTED],
    ),
    4: AbortCode(
        "E_INSUFFICIENT_FUNDS", ErrorCategory.INSUFFICIENT_FUNDS,
        "Insufficient funds. Please add more SUI to your PopChain account to complete "
        "this transaction.",
    ),
    5: AbortCode(
        "E_EVENT_CLOSED", ErrorCategory.EVENT_CLOSED,
        CATEGORY_MESSAGES[ErrorCategory.EVENT_CLOSED],
    ),
    6: AbortCode(
        "E_ALREADY_CLAIMED", ErrorCategory.ALREADY_CLAIMED,
        CATEGORY_MESSAGES[ErrorCategory.ALREADY_CLAIMED],
    ),
    7: AbortCode(
        "E_UNAUTHORIZED", ErrorCategory.NOT_AUTHORIZED,
        CATEGORY_MESSAGES[ErrorCategory.NOT_AUTHORIZED],
    ),
    8: AbortCode(
        "E_INVALID_ROLE", ErrorCategory.INVALID_INPUT,
        "Invalid user role. Please check your account settings.",
    ),
    9: AbortCode(
        "E_INVALID_TIER", ErrorCategory.INVALID_INPUT,
        "Invalid tier selected. Please choose a valid tier for this event.",
    ),
    10: AbortCode(
        "E_NO_TIERS", ErrorCategory.INVALID_INPUT,
        "This event has no tiers configured. Please contact the event organizer.",
    ),
    11: AbortCode(
        "E_EVENT_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
        "Event not found. The event may have been deleted or does not exist on-chain.",
    ),
    12: AbortCode(
        "E_ACCOUNT_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
        "Account not found. Your PopChain account may not exist on-chain. "
        "Please complete your registration.",
    ),
    13: AbortCode(
        "E_TREASURY_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
        "Platform treasury not found. Please contact support.",
    ),
    14: AbortCode(
        "E_INVALID_ADDRESS", ErrorCategory.INVALID_INPUT,
        "Invalid address. Please ensure your wallet is properly connected and linked "
        "to your account.",
    ),
}


@dataclass(frozen=True)
class DecodedError:
    """A failure signal mapped to exactly one category."""
    category: ErrorCategory
    message: str
    raw_message: str = ""
    abort_code: Optional[int] = None

    @property
    def display_message(self) -> str:
        """Text safe to show an end user; raw text only for UNKNOWN."""
        if self.category is ErrorCategory.UNKNOWN and self.raw_message:
            return self.raw_message
        return self.message

    @property
    def retryable(self) -> bool:
        return self.category is ErrorCategory.TRANSPORT_FAILURE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "message": self.message,
            "raw_message": self.raw_message,
            "abort_code": self.abort_code,
        }


_MOVE_ABORT = re.compile(r"MoveAbort\(.*,\s*(\d+)\)", re.DOTALL)
_CODE_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(r"error code\s*[:=]\s*(\d+)", re.IGNORECASE),
    re.compile(r"abort code\s*[:=]\s*(\d+)", re.IGNORECASE),
)
_STRUCTURED_FIELDS = ("code", "errorCode", "moveAbortCode", "abort_code")

# Checked in order; first hit wins. Transport needles come first.
_HEURISTICS: Tuple[Tuple[Tuple[str, ...], ErrorCategory], ...] = (
    (("timed out", "timeout", "connection refused", "connection reset"),
     ErrorCategory.TRANSPORT_FAILURE),
    (("not whitelisted", "not on the whitelist"), ErrorCategory.NOT_WHITELISTED),
    (("already claimed",), ErrorCategory.ALREADY_CLAIMED),
    (("event closed", "event is closed"), ErrorCategory.EVENT_CLOSED),
    (("insufficient", "no valid gas coins", "gas budget", "gas balance"),
     ErrorCategory.INSUFFICIENT_FUNDS),
    (("unauthorized", "not authorized", "sender"), ErrorCategory.NOT_AUTHORIZED),
    (("invalid address", "invalid input", "invalid params"), ErrorCategory.INVALID_INPUT),
    (("not found", "does not exist", "deleted"), ErrorCategory.RESOURCE_NOT_FOUND),
)

_TRANSPORT_TYPES = (
    LedgerTransportError,
    httpx.TransportError,
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
)


def _structured_code(signal: Any) -> Optional[int]:
    if isinstance(signal, Mapping):
        fields: Mapping = signal
    elif isinstance(signal, BaseException):
        fields = {name: getattr(signal, name, None) for name in _STRUCTURED_FIELDS}
        fields["details"] = getattr(signal, "details", None)
    else:
        return None

    for name in _STRUCTURED_FIELDS:
        value = fields.get(name)
        # JSON-RPC transport codes are negative and must not shadow abort codes
        if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
            return value

    details = fields.get("details")
    if isinstance(details, Mapping):
        value = details.get("code")
        if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
            return value
    return None


def stringify_signal(signal: Any) -> str:
    """Best-effort text form of a failure signal."""
    if signal is None:
        return ""
    if isinstance(signal, str):
        return signal
    if isinstance(signal, BaseException):
        text = str(signal) or type(signal).__name__
        data = getattr(signal, "data", None)
        if data:
            text = f"{text} {stringify_signal(data)}"
        return text
    if isinstance(signal, (Mapping, list, tuple)):
        try:
            return json.dumps(signal, default=str)
        except (TypeError, ValueError):
            return repr(signal)
    return str(signal)


def extract_abort_code(signal: Any) -> Optional[int]:
    """Locate a numeric abort code in a failure signal, or None."""
    try:
        code = _structured_code(signal)
        if code is not None:
            return code

        text = stringify_signal(signal)
        match = _MOVE_ABORT.search(text)
        if match:
            return int(match.group(1))
        for pattern in _CODE_PATTERNS:
            match = pattern.search(text)
            if match:
                return int(match.group(1))
    except Exception:  # noqa: BLE001 - decoding must be total
        logger.debug("Abort code extraction failed", exc_info=True)
    return None


def _from_code(code: int, raw: str) -> DecodedError:
    entry = ABORT_CODES.get(code)
    if entry is None:
        return DecodedError(
            category=ErrorCategory.UNKNOWN,
            message=(
                f"Transaction failed with error code {code}. Please try again or "
                "contact support if the issue persists."
            ),
            raw_message=raw,
            abort_code=code,
        )
    return DecodedError(
        category=entry.category,
        message=entry.message,
        raw_message=raw,
        abort_code=code,
    )


def _categorize(category: ErrorCategory, raw: str) -> DecodedError:
    return DecodedError(category=category, message=CATEGORY_MESSAGES[category], raw_message=raw)


def decode_error(signal: Any) -> DecodedError:
    """Map any failure signal to a :class:`DecodedError`. Never raises."""
    try:
        raw = stringify_signal(signal)
    except Exception:  # noqa: BLE001
        raw = "<undecodable failure signal>"

    try:
        code = extract_abort_code(signal)
        if code is not None:
            return _from_code(code, raw)

        if isinstance(signal, PopchainValidationError):
            return DecodedError(
                category=ErrorCategory.INVALID_INPUT,
                message=signal.message,
                raw_message=raw,
            )
        if isinstance(signal, _TRANSPORT_TYPES):
            return _categorize(ErrorCategory.TRANSPORT_FAILURE, raw)
        if isinstance(signal, UserRejectedError):
            return DecodedError(
                category=ErrorCategory.UNKNOWN,
                message="The transaction was rejected in the wallet.",
                raw_message=raw,
            )

        lowered = raw.lower()
        for needles, category in _HEURISTICS:
            if any(needle in lowered for needle in needles):
                return _categorize(category, raw)
    except Exception:  # noqa: BLE001 - decoding must be total
        logger.debug("Error decoding failed, falling back to UNKNOWN", exc_info=True)

    return DecodedError(
        category=ErrorCategory.UNKNOWN,
        message=CATEGORY_MESSAGES[ErrorCategory.UNKNOWN],
        raw_message=raw,
    )
