"""Integration tests for the Redis reservation ledger."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from aoc.core.exceptions.base import (
    DuplicateSignatureError,
    InfrastructureError,
    TierSoldOutError,
    UserTierLimitError,
)
from aoc.core.service.reservation.models import NFTTier, ReservationKind
from aoc.infra.repository.reservation_ledger import ReservationLedger

RECIPIENT = "BmzAXDfy6rvSgj4BiZ7R8eEr83S2VpCMKVYwZ3EdgTnp"
PAYER = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


def _commit(ledger, signature, user_id="user-1", tier=NFTTier.CHAD, supply_cap=100, user_cap=1):
    return ledger.commit(
        signature=signature,
        user_id=user_id,
        tier=tier,
        payer_address=PAYER,
        paid_sol=2.69,
        paid_usd=269.0,
        supply_cap=supply_cap,
        user_cap=user_cap,
        recipient=RECIPIENT,
        sol_price=100.0,
    )


@pytest.mark.asyncio
class TestReservationLedger:
    """Atomic commit, caps and indexes."""

    async def test_commit_stores_record_and_indexes(self, ledger, make_signature):
        signature = make_signature(1)

        record = await _commit(ledger, signature)

        assert record.signature == signature
        assert record.kind == ReservationKind.PURCHASE
        assert record.verified is True
        assert await ledger.is_signature_used(signature)
        assert await ledger.count_by_tier(NFTTier.CHAD) == 1
        assert await ledger.count_by_user_and_tier("user-1", NFTTier.CHAD) == 1

        stored = await ledger.get(signature)
        assert stored == record

    async def test_commit_rejects_reused_signature(self, ledger, make_signature):
        signature = make_signature(2)
        await _commit(ledger, signature, user_id="user-1", user_cap=10)

        with pytest.raises(DuplicateSignatureError) as exc_info:
            await _commit(ledger, signature, user_id="user-2", user_cap=10)

        assert exc_info.value.existing.user_id == "user-1"
        assert await ledger.count_by_tier(NFTTier.CHAD) == 1
        assert await ledger.count_by_user_and_tier("user-2", NFTTier.CHAD) == 0

    async def test_concurrent_commits_of_one_signature_admit_exactly_one(self, ledger, make_signature):
        signature = make_signature(3)

        results = await asyncio.gather(
            *[_commit(ledger, signature, user_id=f"user-{i}", user_cap=10) for i in range(5)],
            return_exceptions=True,
        )

        committed = [r for r in results if not isinstance(r, Exception)]
        duplicates = [r for r in results if isinstance(r, DuplicateSignatureError)]
        assert len(committed) == 1
        assert len(duplicates) == 4
        assert await ledger.count_by_tier(NFTTier.CHAD) == 1
        assert len(await ledger.list_all()) == 1

    async def test_last_slot_goes_to_exactly_one_user(self, ledger, make_signature):
        await _commit(ledger, make_signature(4), user_id="early", supply_cap=2)

        results = await asyncio.gather(
            _commit(ledger, make_signature(5), user_id="user-a", supply_cap=2),
            _commit(ledger, make_signature(6), user_id="user-b", supply_cap=2),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, TierSoldOutError)) == 1
        assert await ledger.count_by_tier(NFTTier.CHAD) == 2

    async def test_sold_out_leaves_no_trace(self, ledger, make_signature):
        await _commit(ledger, make_signature(7), user_id="user-1", supply_cap=1)

        with pytest.raises(TierSoldOutError):
            await _commit(ledger, make_signature(8), user_id="user-2", supply_cap=1)

        assert not await ledger.is_signature_used(make_signature(8))
        assert await ledger.list_by_user("user-2") == []

    async def test_user_cap_is_per_tier(self, ledger, make_signature):
        await _commit(ledger, make_signature(9), tier=NFTTier.CHAD, user_cap=1)

        with pytest.raises(UserTierLimitError) as exc_info:
            await _commit(ledger, make_signature(10), tier=NFTTier.CHAD, user_cap=1)
        assert exc_info.value.details == {"tier": "CHAD", "limit": 1}

        record = await _commit(ledger, make_signature(11), tier=NFTTier.SIGMA, user_cap=3)
        assert record.tier == NFTTier.SIGMA

    async def test_lists_keep_creation_order(self, ledger, make_signature):
        signatures = [make_signature(i) for i in range(12, 15)]
        for signature in signatures:
            await _commit(ledger, signature, tier=NFTTier.NORMIE, supply_cap=10000, user_cap=10)
        await _commit(ledger, make_signature(15), user_id="other", tier=NFTTier.NORMIE, supply_cap=10000, user_cap=10)

        mine = await ledger.list_by_user("user-1")
        everything = await ledger.list_all()

        assert [r.signature for r in mine] == signatures
        assert [r.signature for r in everything] == signatures + [make_signature(15)]

    async def test_supply_reads_all_tiers(self, ledger, make_signature):
        await _commit(ledger, make_signature(16), tier=NFTTier.SIGMA, supply_cap=1000, user_cap=3)

        sold = await ledger.supply(list(NFTTier))

        assert sold == {NFTTier.NORMIE: 0, NFTTier.SIGMA: 1, NFTTier.CHAD: 0}


@pytest.mark.asyncio
class TestInviteGrants:
    """Milestone grants are free, idempotent and bypass the per-user cap."""

    async def test_grant_is_idempotent_per_milestone(self, ledger):
        first, created = await ledger.grant("inviter", NFTTier.NORMIE, 25, supply_cap=10000)
        again, created_again = await ledger.grant("inviter", NFTTier.NORMIE, 25, supply_cap=10000)

        assert created is True
        assert created_again is False
        assert again.signature == first.signature == "grant-inviter-25"
        assert first.kind == ReservationKind.INVITE_GRANT
        assert first.verified is False
        assert await ledger.count_by_tier(NFTTier.NORMIE) == 1

    async def test_grant_ignores_user_cap(self, ledger, make_signature):
        await _commit(ledger, make_signature(20), user_id="inviter", tier=NFTTier.NORMIE,
                      supply_cap=10000, user_cap=1)

        _, created = await ledger.grant("inviter", NFTTier.NORMIE, 25, supply_cap=10000)

        assert created is True
        assert await ledger.count_by_user_and_tier("inviter", NFTTier.NORMIE) == 2

    async def test_grant_respects_supply(self, ledger, make_signature):
        await _commit(ledger, make_signature(21), user_id="buyer", tier=NFTTier.NORMIE,
                      supply_cap=1, user_cap=1)

        with pytest.raises(TierSoldOutError):
            await ledger.grant("inviter", NFTTier.NORMIE, 25, supply_cap=1)


@pytest.mark.asyncio
class TestStoredDocuments:
    """Reading records written by earlier versions."""

    async def test_legacy_document_is_coerced(self, ledger, redis_client, make_signature):
        signature = make_signature(30)
        legacy = {
            "userId": "legacy-user",
            "nftType": "sigma",
            "txHash": signature,
            "walletAddress": PAYER,
            "solAmount": "0.25",
            "amount": 25,
            "confirmed": True,
            "timestamp": 1735689600000,
        }
        await redis_client.set(f"test:reservation:{signature}", json.dumps(legacy))
        await redis_client.rpush("test:all", signature)

        records = await ledger.list_all()

        assert len(records) == 1
        record = records[0]
        assert record.user_id == "legacy-user"
        assert record.tier == NFTTier.SIGMA
        assert record.paid_sol == 0.25
        assert record.paid_usd == 25
        assert record.verified is True
        assert record.created_at.year == 2025

    async def test_unreadable_document_is_skipped(self, ledger, redis_client, make_signature):
        good = make_signature(31)
        await _commit(ledger, good, tier=NFTTier.NORMIE, supply_cap=10000, user_cap=10)
        broken = make_signature(32)
        await redis_client.set(f"test:reservation:{broken}", json.dumps({"tier": "UNKNOWN"}))
        await redis_client.rpush("test:all", broken)

        records = await ledger.list_all()

        assert [r.signature for r in records] == [good]


@pytest.mark.asyncio
async def test_redis_failure_becomes_infrastructure_error(make_signature):
    redis_client = MagicMock()
    redis_client.exists = AsyncMock(side_effect=RedisConnectionError("connection refused"))
    ledger = ReservationLedger(redis_client, key_prefix="test:")

    with pytest.raises(InfrastructureError) as exc_info:
        await ledger.is_signature_used(make_signature(40))

    assert exc_info.value.status_code == 503
    assert exc_info.value.context["operation"] == "is_signature_used"
