"""Signing paths for submitted Move calls."""
from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Union

from .exceptions import UserRejectedError
from .transactions import MoveCall

if TYPE_CHECKING:
    from .rpc_client import LedgerClient

logger = logging.getLogger(__name__)

WalletCallback = Callable[[MoveCall], Union[Awaitable[Optional[Dict[str, Any]]], Optional[Dict[str, Any]]]]


class TransactionSigner(ABC):
    """Something that can get a Move call signed and executed."""

    is_sponsor: bool = False

    @property
    @abstractmethod
    def address(self) -> Optional[str]:
        """Signer address, when known up front."""

    @abstractmethod
    async def sign_and_execute(
        self,
        call: MoveCall,
        ledger: "LedgerClient",
        gas_budget: int,
    ) -> Dict[str, Any]:
        """Sign ``call``, submit it and return the raw execution payload."""


class WalletSigner(TransactionSigner):
    """User-held signer: delegates to an external wallet.

    The callback receives the Move call and returns whatever the wallet
    hands back after executing it (any shape the extractor understands).
    Returning ``None`` or raising :class:`UserRejectedError` means the user
    declined.
    """

    def __init__(self, callback: WalletCallback, address: Optional[str] = None):
        self._callback = callback
        self._address = address

    @property
    def address(self) -> Optional[str]:
        return self._address

    async def sign_and_execute(
        self,
        call: MoveCall,
        ledger: "LedgerClient",
        gas_budget: int,
    ) -> Dict[str, Any]:
        logger.debug("Requesting wallet signature for %s", call.target)
        result = self._callback(call)
        if inspect.isawaitable(result):
            result = await result
        if result is None:
            raise UserRejectedError("Wallet returned no result; signing was cancelled")
        return result
