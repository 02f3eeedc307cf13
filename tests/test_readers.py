"""Tests for popchain_core.readers and popchain_core.tiers."""
from __future__ import annotations

import base64

import pytest

from conftest import ACCOUNT_ID, EVENT_ID, PACKAGE_ID, TREASURY_ID, FakeLedger
from popchain_core.exceptions import LedgerRPCError, LedgerTransportError, PopchainValidationError
from popchain_core.readers import (
    LedgerReader,
    coin_value,
    decode_move_string,
    decode_object_id,
    object_owner,
)
from popchain_core.store import InMemoryStore, RecordKind
from popchain_core.tiers import CERTIFICATE_TIERS, tier_by_index, tier_by_name, tier_index


def _object(fields):
    return {"data": {"objectId": "0x1", "content": {"dataType": "moveObject", "fields": fields}}}


CERT_TYPE = f"{PACKAGE_ID}::popchain_certificate::Certificate"
WALLET = "0x" + "9" * 64


def _certificate(object_id, tier_name, owner=None):
    data = {
        "objectId": object_id,
        "type": CERT_TYPE,
        "content": {"dataType": "moveObject", "fields": {
            "event_id": {"id": EVENT_ID},
            "url": {"fields": {"bytes": list(b"https://walrus.test/c")}},
            "tier_name": tier_name,
            "tier_url": "https://walrus.test/tier.png",
        }},
    }
    if owner is not None:
        data["owner"] = owner
    return {"data": data}


def _event(digest, event_type, timestamp, **parsed):
    return {"id": {"txDigest": digest, "eventSeq": "0"}, "type": event_type, "timestampMs": str(timestamp), "parsedJson": parsed}


class TestValueDecoding:

    @pytest.mark.parametrize("value, expected", [
        (5, 5),
        ("1000", 1000),
        ({"type": "0x2::balance::Balance", "fields": {"balance": "42"}}, 42),
        ({"fields": {"balance": {"fields": {"balance": 7}}}}, 7),
        ("abc", None),
        (True, None),
        (None, None),
    ])
    def test_coin_value(self, value, expected):
        assert coin_value(value) == expected

    def test_move_string_forms(self):
        assert decode_move_string("Launch") == "Launch"
        assert decode_move_string({"fields": {"bytes": list(b"Launch")}}) == "Launch"
        assert decode_move_string({"bytes": base64.b64encode(b"Launch").decode()}) == "Launch"
        assert decode_move_string(None) == ""


class TestLedgerReader:
    """Tests for object and event lookups."""

    @pytest.mark.asyncio
    async def test_account_balance(self, contracts):
        ledger = FakeLedger()
        ledger.objects[ACCOUNT_ID] = _object({"balance": "2500000000"})
        balance = await LedgerReader(ledger, contracts).account_balance(ACCOUNT_ID)
        assert balance.mist == 2_500_000_000
        assert balance.sui == 2.5

    @pytest.mark.asyncio
    async def test_missing_object(self, contracts):
        reader = LedgerReader(FakeLedger(), contracts)
        assert await reader.account_balance(ACCOUNT_ID) is None
        assert await reader.event(EVENT_ID) is None
        assert await reader.treasury_owner() is None

    @pytest.mark.asyncio
    async def test_wallet_balance(self, contracts):
        balance = await LedgerReader(FakeLedger(balance=123), contracts).wallet_balance(ACCOUNT_ID)
        assert balance.mist == 123

    @pytest.mark.asyncio
    async def test_event(self, contracts):
        ledger = FakeLedger()
        ledger.objects[EVENT_ID] = _object({
            "name": {"fields": {"bytes": list(b"Launch")}},
            "description": "Rooftop",
            "organizer": ACCOUNT_ID,
            "active": True,
        })
        details = await LedgerReader(ledger, contracts).event(EVENT_ID)
        assert details.name == "Launch"
        assert details.description == "Rooftop"
        assert details.organizer == ACCOUNT_ID
        assert details.active

    @pytest.mark.asyncio
    async def test_treasury(self, contracts):
        ledger = FakeLedger()
        ledger.objects[TREASURY_ID] = _object({"balance": {"fields": {"balance": "900"}}, "owner": ACCOUNT_ID})
        reader = LedgerReader(ledger, contracts)
        assert (await reader.treasury_balance()).mist == 900
        assert await reader.treasury_owner() == ACCOUNT_ID

    @pytest.mark.asyncio
    async def test_recent_activity(self, contracts):
        ledger = FakeLedger()
        ledger.events["popchain_wallet"] = [_event("T1", "0x5::popchain_wallet::Deposited", 100, amount="5")]
        ledger.events["popchain_event"] = [
            _event("T2", "0x5::popchain_event::CertificateMintedToAttendee", 300),
            _event("T3", "0x5::popchain_event::EventCreated", 200),
        ]
        ledger.events["popchain_admin"] = [_event("T2", "0x5::popchain_admin::FeeCollected", 300)]
        ledger.events["popchain_user"] = LedgerRPCError("query failed", code=-32000)

        activity = await LedgerReader(ledger, contracts).recent_activity(limit=10)

        assert [e.digest for e in activity] == ["T2", "T3", "T1"]
        assert activity[0].event_type.endswith("popchain_admin::FeeCollected")
        assert activity[2].data == {"amount": "5"}

    @pytest.mark.asyncio
    async def test_recent_activity_limit(self, contracts):
        ledger = FakeLedger()
        ledger.events["popchain_event"] = [_event(f"T{i}", "0x5::popchain_event::X", i) for i in range(5)]
        activity = await LedgerReader(ledger, contracts).recent_activity(limit=2)
        assert [e.digest for e in activity] == ["T4", "T3"]

    @pytest.mark.asyncio
    async def test_recent_activity_bad_timestamp(self, contracts):
        ledger = FakeLedger()
        ledger.events["popchain_event"] = [
            _event("T1", "0x5::popchain_event::X", "not-a-number"),
            _event("T2", "0x5::popchain_event::X", 50),
        ]
        activity = await LedgerReader(ledger, contracts).recent_activity()
        assert [e.digest for e in activity] == ["T2", "T1"]
        assert activity[1].timestamp_ms is None


class TestTiers:

    def test_order_matches_contract(self):
        assert [t.name for t in CERTIFICATE_TIERS] == ["PopPass", "PopBadge", "PopMedal", "PopTrophy"]
        assert tier_index("PopMedal") == 2
        assert tier_by_index(3).name == "PopTrophy"

    def test_unknown(self):
        assert tier_by_name("Gold") is None
        with pytest.raises(PopchainValidationError):
            tier_index("Gold")
        with pytest.raises(PopchainValidationError):
            tier_by_index(4)

    def test_image_url(self):
        url = tier_by_name("PopPass").image_url("https://proj.supabase.co/")
        assert url == "https://proj.supabase.co/storage/v1/object/public/tiers/pop_pass.png"


class TestObjectFields:

    @pytest.mark.parametrize("value, expected", [
        (EVENT_ID, EVENT_ID),
        ({"id": EVENT_ID}, EVENT_ID),
        ({"id": {"id": EVENT_ID}}, EVENT_ID),
        (None, ""),
    ])
    def test_object_id_forms(self, value, expected):
        assert decode_object_id(value) == expected

    @pytest.mark.parametrize("owner, expected", [
        ({"AddressOwner": WALLET}, WALLET),
        ({"ObjectOwner": ACCOUNT_ID}, ACCOUNT_ID),
        ({"Shared": {"initial_shared_version": 3}}, "Shared"),
        ("Immutable", "Immutable"),
        (None, "0x0"),
    ])
    def test_owner_forms(self, owner, expected):
        assert object_owner(_certificate("0xc1", "PopPass", owner)) == expected


class TestCertificateReads:
    """Tests for certificate lookups and rankings."""

    @pytest.mark.asyncio
    async def test_certificate(self, contracts):
        ledger = FakeLedger()
        ledger.objects["0xc1"] = _certificate("0xc1", "PopMedal", {"ObjectOwner": ACCOUNT_ID})

        cert = await LedgerReader(ledger, contracts).certificate("0xc1")

        assert cert.event_id == EVENT_ID
        assert cert.url == "https://walrus.test/c"
        assert cert.tier.name == "PopMedal"
        assert cert.tier_image_url == "https://walrus.test/tier.png"
        assert cert.owner == ACCOUNT_ID

    @pytest.mark.asyncio
    async def test_missing_certificate(self, contracts):
        assert await LedgerReader(FakeLedger(), contracts).certificate("0xc1") is None

    @pytest.mark.asyncio
    async def test_unknown_tier_kept_by_name(self, contracts):
        ledger = FakeLedger()
        ledger.objects["0xc1"] = _certificate("0xc1", "Gold")
        cert = await LedgerReader(ledger, contracts).certificate("0xc1")
        assert cert.tier is None
        assert cert.tier_name == "Gold"

    @pytest.mark.asyncio
    async def test_certificates_by_owner(self, contracts):
        ledger = FakeLedger()
        ledger.owned[WALLET] = [
            _certificate("0xc1", "PopPass"),
            {"data": {"objectId": "0xcoin", "type": "0x2::coin::Coin<0x2::sui::SUI>"}},
        ]
        assert await LedgerReader(ledger, contracts).certificates_by_owner(WALLET) == ["0xc1"]

    @pytest.mark.asyncio
    async def test_certificates_for_account_merges_sources(self, contracts):
        ledger = FakeLedger()
        ledger.owned[WALLET] = [_certificate("0xc1", "PopPass"), _certificate("0xc2", "PopBadge")]
        ledger.objects[ACCOUNT_ID] = _object({"certificates": ["0xc2", "0xc3"]})

        ids = await LedgerReader(ledger, contracts).certificates_for_account(ACCOUNT_ID, WALLET)

        assert ids == ["0xc1", "0xc2", "0xc3"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("wallet", [None, "0x0", "0x" + "0" * 64])
    async def test_unlinked_wallet_not_queried(self, contracts, wallet):
        queried = []

        class RecordingLedger(FakeLedger):
            async def get_owned_objects(self, owner, struct_type):
                queried.append(owner)
                return []

        ledger = RecordingLedger()
        ledger.objects[ACCOUNT_ID] = _object({"certificates": {"vec": ["0xc3"]}})
        ids = await LedgerReader(ledger, contracts).certificates_for_account(ACCOUNT_ID, wallet)
        assert ids == ["0xc3"]
        assert queried == []

    @pytest.mark.asyncio
    async def test_wallet_failure_keeps_account_certificates(self, contracts):
        ledger = FakeLedger()
        ledger.owned[WALLET] = LedgerTransportError("node unreachable")
        ledger.objects[ACCOUNT_ID] = _object({"certificates": ["0xc3"]})
        ids = await LedgerReader(ledger, contracts).certificates_for_account(ACCOUNT_ID, WALLET)
        assert ids == ["0xc3"]

    @pytest.mark.asyncio
    async def test_account_rankings(self, contracts):
        ledger = FakeLedger()
        store = InMemoryStore()
        second = "0x" + "cd" * 32
        for object_id, tier in [("0xc1", "PopPass"), ("0xc2", "PopTrophy"), ("0xc3", "PopPass"), ("0xc4", "PopBadge")]:
            ledger.objects[object_id] = _certificate(object_id, tier)
        ledger.objects[ACCOUNT_ID] = _object({"certificates": ["0xc4"]})
        ledger.objects[second] = _object({"certificates": []})
        ledger.owned[WALLET] = [_certificate("0xc1", "PopPass"), _certificate("0xc2", "PopTrophy"), _certificate("0xc3", "PopPass")]

        await store.insert(RecordKind.USER_PROFILES, {"role": 0, "popchain_account_address": ACCOUNT_ID, "wallet_address": None})
        await store.insert(RecordKind.USER_PROFILES, {"role": 0, "popchain_account_address": second, "wallet_address": WALLET})
        await store.insert(RecordKind.USER_PROFILES, {"role": 0, "popchain_account_address": None, "wallet_address": None})
        await store.insert(RecordKind.USER_PROFILES, {"role": 1, "popchain_account_address": "0x" + "ef" * 32, "wallet_address": WALLET})

        rankings = await LedgerReader(ledger, contracts).account_rankings(store)

        assert [r.account_id for r in rankings] == [second, ACCOUNT_ID]
        assert rankings[0].counts == {"PopPass": 2, "PopBadge": 0, "PopMedal": 0, "PopTrophy": 1}
        assert rankings[0].total == 3
        assert rankings[1].total == 1

    @pytest.mark.asyncio
    async def test_rankings_limit_and_empty_accounts(self, contracts):
        ledger = FakeLedger()
        store = InMemoryStore()
        for i in range(3):
            account = "0x" + f"{i + 1:02x}" * 32
            ledger.objects[f"0xc{i}"] = _certificate(f"0xc{i}", "PopPass")
            ledger.objects[account] = _object({"certificates": [f"0xc{j}" for j in range(i + 1)]})
            await store.insert(RecordKind.USER_PROFILES, {"role": 0, "popchain_account_address": account})
        await store.insert(RecordKind.USER_PROFILES, {"role": 0, "popchain_account_address": ACCOUNT_ID})

        rankings = await LedgerReader(ledger, contracts).account_rankings(store, limit=2)

        assert [r.total for r in rankings] == [3, 2]

    @pytest.mark.asyncio
    async def test_rankings_skip_unreadable_certificate(self, contracts):
        class FlakyLedger(FakeLedger):
            async def get_object(self, object_id):
                if object_id == "0xbad":
                    raise LedgerRPCError("object read failed", code=-32000)
                return await super().get_object(object_id)

        ledger = FlakyLedger()
        store = InMemoryStore()
        ledger.objects["0xc1"] = _certificate("0xc1", "PopBadge")
        ledger.objects[ACCOUNT_ID] = _object({"certificates": ["0xc1"]})
        second = "0x" + "cd" * 32
        ledger.objects[second] = _object({"certificates": ["0xbad"]})
        await store.insert(RecordKind.USER_PROFILES, {"role": 0, "popchain_account_address": ACCOUNT_ID})
        await store.insert(RecordKind.USER_PROFILES, {"role": 0, "popchain_account_address": second})

        rankings = await LedgerReader(ledger, contracts).account_rankings(store)

        assert [r.account_id for r in rankings] == [ACCOUNT_ID]
