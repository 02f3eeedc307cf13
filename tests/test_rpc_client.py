"""Tests for popchain_core.rpc_client."""
from __future__ import annotations

import json

import httpx
import pytest

from conftest import ACCOUNT_ID, PACKAGE_ID
from popchain_core.config import LedgerSettings
from popchain_core.exceptions import LedgerRPCError, LedgerTransportError, PopchainValidationError
from popchain_core.rpc_client import TX_NOT_FOUND_MARKER, SuiRPCClient
from popchain_core.transactions import build_create_account, build_deposit

RPC_URL = "http://sui.test"


def _client(handler) -> SuiRPCClient:
    settings = LedgerSettings(network="localnet", rpc_url=RPC_URL, finality_poll_interval_seconds=0)
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SuiRPCClient(settings, http_client=http)


def _ok(request, result):
    body = json.loads(request.content)
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


def _err(request, code, message, data=None):
    body = json.loads(request.content)
    error = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": error})


class TestSuiRPCClient:
    """Tests for the JSON-RPC client."""

    @pytest.mark.asyncio
    async def test_build_move_call(self, contracts):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return _ok(request, {"txBytes": "AAEC", "gas": []})

        client = _client(handler)
        call = build_create_account("a@example.com", "attendee").move_call(contracts)
        tx_bytes = await client.build_move_call(ACCOUNT_ID, call, 5_000)

        assert tx_bytes == "AAEC"
        body = seen[0]
        assert body["method"] == "unsafe_moveCall"
        sender, package, module, function, type_args, args, gas, budget = body["params"]
        assert (sender, package, module, function) == (ACCOUNT_ID, PACKAGE_ID, "popchain_user", "create_account")
        assert type_args == []
        assert args[1] == 0
        assert args[2] == "0x" + "0" * 64
        assert gas is None
        assert budget == "5000"
        await client.close()

    @pytest.mark.asyncio
    async def test_build_rejects_gas_split(self, contracts):
        client = _client(lambda request: _ok(request, {"txBytes": "AA"}))
        with pytest.raises(PopchainValidationError):
            await client.build_move_call(ACCOUNT_ID, build_deposit(ACCOUNT_ID, 5).move_call(contracts), 5_000)

    @pytest.mark.asyncio
    async def test_missing_tx_bytes(self, contracts):
        client = _client(lambda request: _ok(request, {}))
        call = build_create_account("a@example.com", "attendee").move_call(contracts)
        with pytest.raises(LedgerRPCError):
            await client.build_move_call(ACCOUNT_ID, call, 5_000)

    @pytest.mark.asyncio
    async def test_execute(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return _ok(request, {"digest": "D1"})

        result = await _client(handler).execute_transaction("AAEC", ["sig"])
        assert result == {"digest": "D1"}
        method, params = seen[0]["method"], seen[0]["params"]
        assert method == "sui_executeTransactionBlock"
        assert params[0] == "AAEC"
        assert params[1] == ["sig"]
        assert params[2]["showObjectChanges"] is True
        assert params[3] == "WaitForLocalExecution"

    @pytest.mark.asyncio
    async def test_wait_retries_until_indexed(self):
        attempts = []

        def handler(request):
            attempts.append(1)
            if len(attempts) < 3:
                return _err(request, -32602, f"{TX_NOT_FOUND_MARKER} [TransactionDigest(D1)]")
            return _ok(request, {"digest": "D1", "effects": {"status": {"status": "success"}}})

        result = await _client(handler).wait_for_transaction("D1")
        assert result["digest"] == "D1"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_wait_propagates_other_errors(self):
        client = _client(lambda request: _err(request, -32000, "server overloaded"))
        with pytest.raises(LedgerRPCError) as exc_info:
            await client.wait_for_transaction("D1")
        assert exc_info.value.code == -32000
        assert exc_info.value.method == "sui_getTransactionBlock"

    @pytest.mark.asyncio
    async def test_rpc_error_fields(self):
        client = _client(lambda request: _err(request, -32002, "Transaction execution failed", "MoveAbort(x, 3)"))
        with pytest.raises(LedgerRPCError) as exc_info:
            await client.execute_transaction("AA", ["sig"])
        assert exc_info.value.data == "MoveAbort(x, 3)"
        assert exc_info.value.to_dict()["details"]["rpc_code"] == -32002

    @pytest.mark.asyncio
    async def test_http_error_is_transport_error(self):
        client = _client(lambda request: httpx.Response(500, text="bad gateway"))
        with pytest.raises(LedgerTransportError):
            await client.get_object(ACCOUNT_ID)

    @pytest.mark.asyncio
    async def test_connection_error_is_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(LedgerTransportError):
            await _client(handler).get_balance(ACCOUNT_ID)

    @pytest.mark.asyncio
    async def test_non_json_reply(self):
        client = _client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(LedgerTransportError):
            await client.get_object(ACCOUNT_ID)

    @pytest.mark.asyncio
    async def test_balance_follows_pagination(self):
        cursors = []

        def handler(request):
            params = json.loads(request.content)["params"]
            cursors.append(params[2])
            if params[2] is None:
                return _ok(request, {"data": [{"balance": "100"}, {"balance": "250"}], "nextCursor": "c1", "hasNextPage": True})
            return _ok(request, {"data": [{"balance": "50"}], "nextCursor": None, "hasNextPage": False})

        assert await _client(handler).get_balance(ACCOUNT_ID) == 400
        assert cursors == [None, "c1"]

    @pytest.mark.asyncio
    async def test_query_events(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content)["params"])
            return _ok(request, {"data": [{"id": {"txDigest": "T1"}}], "hasNextPage": False})

        events = await _client(handler).query_events(PACKAGE_ID, "popchain_event", limit=10)
        assert events == [{"id": {"txDigest": "T1"}}]
        assert seen[0] == [{"MoveModule": {"package": PACKAGE_ID, "module": "popchain_event"}}, None, 10, True]

    def test_default_rpc_url(self):
        assert LedgerSettings(network="testnet").rpc_url == "https://fullnode.testnet.sui.io:443"

    @pytest.mark.asyncio
    async def test_owned_objects_follow_pagination(self):
        seen = []
        struct_type = f"{PACKAGE_ID}::popchain_certificate::Certificate"

        def handler(request):
            body = json.loads(request.content)
            seen.append(body)
            if body["params"][2] is None:
                return _ok(request, {"data": [{"data": {"objectId": "0xc1"}}], "nextCursor": "c1", "hasNextPage": True})
            return _ok(request, {"data": [{"data": {"objectId": "0xc2"}}], "nextCursor": None, "hasNextPage": False})

        objects = await _client(handler).get_owned_objects(ACCOUNT_ID, struct_type)

        assert [o["data"]["objectId"] for o in objects] == ["0xc1", "0xc2"]
        assert seen[0]["method"] == "suix_getOwnedObjects"
        owner, query = seen[0]["params"][:2]
        assert owner == ACCOUNT_ID
        assert query["filter"] == {"StructType": struct_type}
        assert query["options"]["showContent"] is True
        assert seen[1]["params"][2] == "c1"
