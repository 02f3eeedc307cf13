"""
Pytest configuration for popchain-core tests.
"""
from __future__ import annotations

import base64
import os
from typing import Any, Dict, List, Optional, Sequence

import pytest

from popchain_core.config import (
    MIST_PER_SUI,
    ContractSettings,
    LedgerSettings,
    PopchainSettings,
    SponsorSettings,
)
from popchain_core.rpc_client import LedgerClient
from popchain_core.sponsor import SponsorSigner
from popchain_core.store import InMemoryStore
from popchain_core.transactions import MoveCall

# Set test environment
os.environ.setdefault("POPCHAIN_ENVIRONMENT", "dev")

PACKAGE_ID = "0x" + "5" * 64
TREASURY_ID = "0x" + "7" * 64
EVENT_ID = "0x" + "e" * 64
ACCOUNT_ID = "0x" + "ab" * 32
SEED = bytes(range(32))


def success_payload(digest: str, created: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"digest": digest, "effects": {"status": {"status": "success"}}}
    if created is not None:
        payload["objectChanges"] = created
    return payload


def failure_payload(digest: str, error: str) -> Dict[str, Any]:
    return {"digest": digest, "effects": {"status": {"status": "failure", "error": error}}}


def created_change(object_id: str, type_name: str) -> Dict[str, Any]:
    return {"type": "created", "objectId": object_id, "objectType": f"{PACKAGE_ID}::{type_name}"}


class FakeLedger(LedgerClient):
    """In-process ledger recording every call.

    ``results`` is consumed one entry per executed transaction; an entry may
    be a payload dict or an exception to raise.
    """

    def __init__(self, balance: int = 5 * MIST_PER_SUI, results: Optional[list] = None):
        self.balance: Any = balance
        self.results = list(results or [])
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.owned: Dict[str, Any] = {}
        self.events: Dict[str, List[Dict[str, Any]]] = {}
        self.finalized: Dict[str, Dict[str, Any]] = {}
        self.built: List[tuple] = []
        self.executed: List[tuple] = []
        self.waited: List[str] = []
        self.balance_checks = 0
        self.closed = False

    async def build_move_call(self, sender: str, call: MoveCall, gas_budget: int) -> str:
        call.json_arguments()
        self.built.append((sender, call, gas_budget))
        return base64.b64encode(f"tx-{len(self.built)}".encode()).decode()

    async def execute_transaction(self, tx_bytes: str, signatures: Sequence[str]) -> Dict[str, Any]:
        self.executed.append((tx_bytes, list(signatures)))
        if self.results:
            result = self.results.pop(0)
        else:
            result = success_payload(f"D{len(self.executed)}")
        if isinstance(result, BaseException):
            raise result
        return result

    async def wait_for_transaction(self, digest: str) -> Dict[str, Any]:
        self.waited.append(digest)
        return self.finalized.get(digest, success_payload(digest))

    async def get_object(self, object_id: str) -> Dict[str, Any]:
        return self.objects.get(object_id, {"error": {"code": "notExists"}})

    async def get_balance(self, owner: str) -> int:
        self.balance_checks += 1
        if isinstance(self.balance, BaseException):
            raise self.balance
        return self.balance

    async def get_owned_objects(self, owner: str, struct_type: str) -> List[Dict[str, Any]]:
        found = self.owned.get(owner, [])
        if isinstance(found, BaseException):
            raise found
        return [obj for obj in found if obj.get("data", {}).get("type") == struct_type]

    async def query_events(self, package_id, module, limit=50, descending=True):
        found = self.events.get(module, [])
        if isinstance(found, BaseException):
            raise found
        return found

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio for async tests."""
    return "asyncio"


@pytest.fixture
def sponsor_signer():
    """Deterministic sponsor keypair."""
    return SponsorSigner(SEED)


@pytest.fixture
def sponsor_settings(sponsor_signer):
    keystore = base64.b64encode(bytes([0]) + SEED).decode()
    return SponsorSettings(private_key=keystore, expected_address=sponsor_signer.address)


@pytest.fixture
def contracts():
    return ContractSettings(package_id=PACKAGE_ID, treasury_id=TREASURY_ID)


@pytest.fixture
def settings(sponsor_settings, contracts):
    return PopchainSettings(
        _env_file=None,
        ledger=LedgerSettings(network="localnet", finality_poll_interval_seconds=0),
        contracts=contracts,
        sponsor=sponsor_settings,
    )


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def store():
    return InMemoryStore()
