"""
Tests for ucp_gateway.discovery.

Tests cover:
- Profile caching and invalidation
- Rebuilding the profile when the store is unreachable
- Capability and handler negotiation
"""
from __future__ import annotations

import pytest

from ucp_gateway.discovery import AgentProfile, ProfileService, negotiate
from ucp_gateway.exceptions import StoreUnavailableError
from ucp_gateway.store import InMemoryKeyValueStore

CHECKOUT = "dev.ucp.shopping.checkout"
IDENTITY = "dev.ucp.shopping.identity"
HANDLER = "com.wix.payments"


class UnreachableStore(InMemoryKeyValueStore):
    async def get(self, key):
        raise StoreUnavailableError("get")

    async def set_with_ttl(self, key, value, ttl_seconds):
        raise StoreUnavailableError("set")


@pytest.fixture
def profiles(container) -> ProfileService:
    return container.discovery


class TestProfileCache:
    """Tests for ProfileService caching."""

    @pytest.mark.asyncio
    async def test_profile_is_cached(self, profiles, store):
        profile = await profiles.get_profile()

        assert await store.get("profile:site_test") == profile
        assert await store.remaining_ttl("profile:site_test") > 0

    @pytest.mark.asyncio
    async def test_cached_copy_is_served(self, profiles, store):
        await profiles.get_profile()
        stale = dict(await store.get("profile:site_test"), business={"id": "site_test", "name": "Old Name"})
        await store.set_with_ttl("profile:site_test", stale, 60)

        assert (await profiles.get_profile())["business"]["name"] == "Old Name"

        assert await profiles.invalidate_cache() is True
        assert (await profiles.get_profile())["business"]["name"] == "Test Store"

    @pytest.mark.asyncio
    async def test_unreachable_store_rebuilds(self, settings, container):
        service = ProfileService(UnreachableStore(), settings, container.payment_handler)

        profile = await service.get_profile()
        assert profile["business"]["id"] == "site_test"


class TestNegotiate:
    """Tests for capability negotiation."""

    @pytest.mark.asyncio
    async def test_full_match(self, profiles):
        result = await profiles.negotiate(AgentProfile(capabilities=[CHECKOUT, IDENTITY], handlers=[HANDLER]))

        assert [c["name"] for c in result.capabilities] == [CHECKOUT, IDENTITY]
        assert [h["name"] for h in result.handlers] == [HANDLER]
        assert result.warnings == []
        assert result.viable_for_checkout

    @pytest.mark.asyncio
    async def test_partial_match(self, profiles):
        result = await profiles.negotiate(
            AgentProfile(capabilities=[CHECKOUT, "dev.ucp.shopping.orders"], handlers=[HANDLER, "com.google.pay"])
        )
        assert [c["name"] for c in result.capabilities] == [CHECKOUT]
        assert len(result.handlers) == 1

    @pytest.mark.asyncio
    async def test_no_common_handler(self, profiles):
        result = await profiles.negotiate(AgentProfile(capabilities=[CHECKOUT], handlers=["com.other.pay"]))

        assert result.handlers == []
        assert result.warnings == ["No compatible payment handlers found"]
        assert not result.viable_for_checkout
        assert result.to_dict()["warnings"] == result.warnings

    def test_empty_agent_profile(self):
        profile = {"capabilities": [{"name": CHECKOUT}], "payment": {"handlers": [{"name": HANDLER}]}}
        result = negotiate(profile, AgentProfile())

        assert result.to_dict() == {
            "negotiated": {"capabilities": [], "handlers": [], "extensions": []},
            "viableForCheckout": False,
            "warnings": ["No common capabilities found", "No compatible payment handlers found"],
        }
