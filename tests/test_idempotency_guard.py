"""
Tests for ucp_gateway.checkout.idempotency.

Tests cover:
- Claim acquisition and duplicates
- Result replay after success
- Failure marking and claim release
- Concurrent claims
"""
from __future__ import annotations

import asyncio

import pytest

from ucp_gateway.checkout.idempotency import (
    IdempotencyGuard,
    IdempotencyRecord,
    IdempotencyStatus,
    idempotency_key,
)

CHECKOUT_ID = "chk_" + "1" * 32


@pytest.fixture
def guard(store) -> IdempotencyGuard:
    return IdempotencyGuard(store, window_seconds=600)


class TestIdempotencyGuard:
    """Tests for IdempotencyGuard."""

    @pytest.mark.asyncio
    async def test_first_claim_acquires(self, guard, store):
        claim = await guard.acquire(CHECKOUT_ID, "key-1")

        assert claim.acquired
        assert not claim.is_duplicate
        assert claim.record.status == IdempotencyStatus.PENDING
        assert await store.get(idempotency_key(CHECKOUT_ID, "key-1")) is not None
        assert idempotency_key(CHECKOUT_ID, "key-1") == f"idempotency:checkout:{CHECKOUT_ID}:key-1"

    @pytest.mark.asyncio
    async def test_second_claim_is_duplicate(self, guard):
        await guard.acquire(CHECKOUT_ID, "key-1")
        claim = await guard.acquire(CHECKOUT_ID, "key-1")

        assert claim.is_duplicate
        assert claim.record.status == IdempotencyStatus.PENDING
        assert claim.cached_result is None

    @pytest.mark.asyncio
    async def test_keys_are_scoped_per_checkout(self, guard):
        await guard.acquire(CHECKOUT_ID, "key-1")
        other = await guard.acquire("chk_" + "2" * 32, "key-1")
        assert other.acquired

    @pytest.mark.asyncio
    async def test_success_result_is_replayed(self, guard):
        await guard.acquire(CHECKOUT_ID, "key-1")
        await guard.record_success(CHECKOUT_ID, "key-1", {"orderId": "ord_1"})

        claim = await guard.acquire(CHECKOUT_ID, "key-1")
        assert claim.is_duplicate
        assert claim.record.status == IdempotencyStatus.COMPLETED
        assert claim.cached_result == {"orderId": "ord_1"}

    @pytest.mark.asyncio
    async def test_failure_keeps_key_claimed(self, guard):
        await guard.acquire(CHECKOUT_ID, "key-1")
        await guard.record_failure(CHECKOUT_ID, "key-1")

        claim = await guard.acquire(CHECKOUT_ID, "key-1")
        assert claim.is_duplicate
        assert claim.record.status == IdempotencyStatus.FAILED
        assert claim.cached_result is None

    @pytest.mark.asyncio
    async def test_release_allows_retry(self, guard):
        await guard.acquire(CHECKOUT_ID, "key-1")
        assert await guard.release(CHECKOUT_ID, "key-1") is True

        claim = await guard.acquire(CHECKOUT_ID, "key-1")
        assert claim.acquired

    @pytest.mark.asyncio
    async def test_record_keeps_window(self, guard, store):
        await guard.acquire(CHECKOUT_ID, "key-1")
        await guard.record_success(CHECKOUT_ID, "key-1", {"ok": True})
        assert 0 < await store.remaining_ttl(idempotency_key(CHECKOUT_ID, "key-1")) <= 600

    @pytest.mark.asyncio
    async def test_concurrent_claims_single_winner(self, guard):
        claims = await asyncio.gather(*[guard.acquire(CHECKOUT_ID, "key-1") for _ in range(10)])
        assert sum(1 for c in claims if c.acquired) == 1

    def test_record_round_trip(self):
        record = IdempotencyRecord(CHECKOUT_ID, "key-1", IdempotencyStatus.COMPLETED, {"a": 1})
        restored = IdempotencyRecord.from_dict(record.to_dict())
        assert restored.status == IdempotencyStatus.COMPLETED
        assert restored.result == {"a": 1}
