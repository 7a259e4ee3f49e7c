"""
Tests for the entitlement gate and credit stores.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import select

from storyboard_api.core.errors import InsufficientCredits
from storyboard_api.models import CreditAccount, CreditTransaction
from storyboard_api.services.entitlement_service import (
    EntitlementGate,
    InMemoryCreditStore,
    RedisCreditStore,
)


class TestEntitlementGate:
    """Tests for EntitlementGate with the in-memory store"""

    @pytest.mark.asyncio
    async def test_free_quota_is_used_before_credits(self):
        store = InMemoryCreditStore({"user-1": (10, 0)})
        gate = EntitlementGate(store, free_quota=2)

        first = await gate.authorize("user-1", 4)
        second = await gate.authorize("user-1", 4)
        third = await gate.authorize("user-1", 4)

        assert (first.kind, first.debited) == ("free", 0)
        assert (second.kind, second.debited) == ("free", 0)
        assert (third.kind, third.debited) == ("paid", 4)
        assert await store.get_balance("user-1") == 6
        assert await store.get_free_stories_used("user-1") == 2

    @pytest.mark.asyncio
    async def test_insufficient_credits_leaves_account_unchanged(self):
        store = InMemoryCreditStore({"user-1": (2, 2)})
        gate = EntitlementGate(store, free_quota=2)

        with pytest.raises(InsufficientCredits) as exc_info:
            await gate.authorize("user-1", 4)

        assert exc_info.value.balance == 2
        assert exc_info.value.cost == 4
        assert await store.get_balance("user-1") == 2
        assert await store.get_free_stories_used("user-1") == 2
        assert store.transactions == []

    @pytest.mark.asyncio
    async def test_concurrent_requests_cannot_double_spend(self):
        store = InMemoryCreditStore({"user-1": (4, 2)})
        gate = EntitlementGate(store, free_quota=2)

        results = await asyncio.gather(
            gate.authorize("user-1", 4),
            gate.authorize("user-1", 4),
            return_exceptions=True,
        )

        granted = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, InsufficientCredits)]
        assert len(granted) == 1
        assert len(rejected) == 1
        assert await store.get_balance("user-1") == 0

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_free_quota(self):
        store = InMemoryCreditStore({"user-1": (0, 1)})
        gate = EntitlementGate(store, free_quota=2)

        results = await asyncio.gather(
            gate.authorize("user-1", 4),
            gate.authorize("user-1", 4),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, InsufficientCredits)) == 1
        assert await store.get_free_stories_used("user-1") == 2

    @pytest.mark.asyncio
    async def test_unknown_owner_starts_empty(self):
        gate = EntitlementGate(InMemoryCreditStore(), free_quota=0)

        with pytest.raises(InsufficientCredits):
            await gate.authorize("stranger", 4)

    @pytest.mark.asyncio
    async def test_non_positive_cost_is_rejected(self):
        gate = EntitlementGate(InMemoryCreditStore({"user-1": (10, 0)}), free_quota=2)

        with pytest.raises(ValueError):
            await gate.authorize("user-1", 0)

    @pytest.mark.asyncio
    async def test_status_reports_remaining_free_stories(self):
        gate = EntitlementGate(InMemoryCreditStore({"user-1": (7, 1)}), free_quota=2)

        status = await gate.status("user-1", cost=4)

        assert status.balance == 7
        assert status.free_stories_used == 1
        assert status.free_stories_remaining == 1
        assert status.storyboard_cost == 4

    @pytest.mark.asyncio
    async def test_grant_credits(self):
        store = InMemoryCreditStore({"user-1": (1, 2)})

        assert await store.grant_credits("user-1", 5, "charge") == 6


class TestRedisCreditStore:
    """Tests for RedisCreditStore (Redis mocked, DB on in-memory SQLite)"""

    @pytest.fixture
    def redis(self):
        mock = AsyncMock()
        mock.get.return_value = None
        return mock

    @pytest_asyncio.fixture
    async def store(self, redis, session_factory):
        async with session_factory() as session:
            session.add(CreditAccount(owner_id="user-1", balance=10, free_stories_used=2, total_used=0))
            await session.commit()
        return RedisCreditStore(redis, session_factory, ttl=60)

    @pytest.mark.asyncio
    async def test_cache_miss_warms_cache_and_retries(self, store, redis, session_factory):
        redis.eval.side_effect = [[-1, 0, 0], [1, 6, 2]]

        decision = await store.authorize_and_debit("user-1", 4, 2, reference_id="sb-1")

        assert decision.kind == "paid"
        assert decision.balance_after == 6
        assert redis.eval.await_count == 2
        redis.set.assert_any_await("credits:user-1:balance", 10, ex=60, nx=True)
        redis.set.assert_any_await("credits:user-1:free_used", 2, ex=60, nx=True)

        async with session_factory() as session:
            account = await session.get(CreditAccount, "user-1")
            transactions = (await session.execute(select(CreditTransaction))).scalars().all()
        assert account.balance == 6
        assert account.total_used == 4
        assert len(transactions) == 1
        assert transactions[0].amount == -4
        assert transactions[0].reference_id == "sb-1"

    @pytest.mark.asyncio
    async def test_script_receives_keys_and_arguments(self, store, redis):
        redis.eval.return_value = [2, 10, 1]

        decision = await store.authorize_and_debit("user-1", 4, 2)

        assert decision.kind == "free"
        assert decision.debited == 0
        args = redis.eval.await_args.args
        assert args[0] == RedisCreditStore.AUTHORIZE_SCRIPT
        assert args[1] == 3
        assert args[2:5] == ("credits:user-1:balance", "credits:user-1:free_used", "credits:user-1:log")
        assert args[5:8] == (4, 2, 60)

    @pytest.mark.asyncio
    async def test_insufficient_balance_raises_without_ledger_write(self, store, redis, session_factory):
        redis.eval.return_value = [0, 3, 2]

        with pytest.raises(InsufficientCredits) as exc_info:
            await store.authorize_and_debit("user-1", 4, 2)

        assert exc_info.value.balance == 3
        async with session_factory() as session:
            transactions = (await session.execute(select(CreditTransaction))).scalars().all()
        assert transactions == []

    @pytest.mark.asyncio
    async def test_get_balance_prefers_cache(self, store, redis):
        redis.get.return_value = b"8"

        assert await store.get_balance("user-1") == 8
        redis.set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ledger_applies_debits_relative_to_stored_balance(self, store, redis, session_factory):
        # 두 번째 요청(잔액 2)의 결과가 첫 번째(잔액 6)보다 먼저 원장에 도착
        redis.eval.side_effect = [[1, 2, 2], [1, 6, 2]]

        await store.authorize_and_debit("user-1", 4, 2, reference_id="sb-b")
        await store.authorize_and_debit("user-1", 4, 2, reference_id="sb-a")

        async with session_factory() as session:
            account = await session.get(CreditAccount, "user-1")
        assert account.balance == 2
        assert account.total_used == 8

    @pytest.mark.asyncio
    async def test_free_use_increments_stored_counter(self, redis, session_factory):
        async with session_factory() as session:
            session.add(CreditAccount(owner_id="user-2", balance=0, free_stories_used=0, total_used=0))
            await session.commit()
        store = RedisCreditStore(redis, session_factory, ttl=60)
        redis.eval.side_effect = [[2, 0, 2], [2, 0, 1]]

        await store.authorize_and_debit("user-2", 4, 2)
        await store.authorize_and_debit("user-2", 4, 2)

        async with session_factory() as session:
            account = await session.get(CreditAccount, "user-2")
        assert account.free_stories_used == 2
        assert account.balance == 0

    @pytest.mark.asyncio
    async def test_ledger_creates_missing_account(self, store, redis, session_factory):
        redis.eval.return_value = [2, 0, 1]

        await store.authorize_and_debit("newcomer", 4, 2)

        async with session_factory() as session:
            account = await session.get(CreditAccount, "newcomer")
        assert account.free_stories_used == 1
        assert account.balance == 0

    @pytest.mark.asyncio
    async def test_grant_credits_adds_to_cached_balance(self, store, redis, session_factory):
        # 캐시에는 아직 원장에 반영되지 않은 차감이 있을 수 있음 (10 → 6)
        redis.eval.return_value = 11

        new_balance = await store.grant_credits("user-1", 5, "manual top-up")

        assert new_balance == 11
        args = redis.eval.await_args.args
        assert args[0] == RedisCreditStore.GRANT_SCRIPT
        assert args[1:4] == (1, "credits:user-1:balance", 5)
        redis.delete.assert_not_awaited()
        async with session_factory() as session:
            account = await session.get(CreditAccount, "user-1")
        assert account.balance == 15

    @pytest.mark.asyncio
    async def test_grant_credits_without_cache_returns_stored_balance(self, store, redis):
        redis.eval.return_value = -1

        assert await store.grant_credits("user-1", 5, "manual top-up") == 15
        redis.set.assert_not_awaited()
