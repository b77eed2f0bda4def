"""Pytest configuration and fixtures for UCP gateway tests."""
from __future__ import annotations

import os
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

# Set test environment before importing the app
os.environ["UCP_ENVIRONMENT"] = "test"
os.environ["UCP_JWT_SECRET"] = "test_jwt_secret_for_testing_purposes_only_32chars"

from ucp_gateway.api.dependencies import GatewayContainer, build_container
from ucp_gateway.api.main import create_app
from ucp_gateway.checkout.adapter import DemoMerchantBackend
from ucp_gateway.checkout.models import Address, Buyer, CatalogReference
from ucp_gateway.config import GatewaySettings
from ucp_gateway.identity.clients import hash_client_secret
from ucp_gateway.identity.models import OAuthClient
from ucp_gateway.store import InMemoryKeyValueStore

from ucp_helpers import (
    CONFIDENTIAL_CLIENT_ID,
    CONFIDENTIAL_CLIENT_SECRET,
    MERCHANT_ID,
    PUBLIC_CLIENT_ID,
    REDIRECT_URI,
)


@pytest.fixture
def settings() -> GatewaySettings:
    return GatewaySettings(
        environment="test",
        base_url="http://test",
        merchant_id=MERCHANT_ID,
        site_id="site_test",
        business_name="Test Store",
        jwt_secret="test_jwt_secret_for_testing_purposes_only_32chars",
        tax_rate=Decimal("0"),
        _env_file=None,
    )


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def merchant() -> DemoMerchantBackend:
    return DemoMerchantBackend()


@pytest.fixture
def oauth_clients() -> list[OAuthClient]:
    return [
        OAuthClient(
            client_id=CONFIDENTIAL_CLIENT_ID,
            name="Agent Platform",
            redirect_uris=[REDIRECT_URI],
            allowed_scopes=["openid", "profile", "email", "loyalty:read", "addresses:read"],
            client_secret_hash=hash_client_secret(CONFIDENTIAL_CLIENT_SECRET),
        ),
        OAuthClient(
            client_id=PUBLIC_CLIENT_ID,
            name="Public Agent",
            redirect_uris=[REDIRECT_URI],
            allowed_scopes=["openid", "email"],
            is_public=True,
        ),
    ]


@pytest.fixture
def container(settings, store, merchant, oauth_clients) -> GatewayContainer:
    return build_container(settings, store=store, merchant=merchant, oauth_clients=oauth_clients)


@pytest.fixture
def app(settings, container):
    """Create a test application instance."""
    return create_app(settings, container)


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def shipping_address() -> Address:
    return Address(line1="1 Market St", city="San Francisco", state="CA", postal_code="94105", country="US")


@pytest.fixture
def buyer() -> Buyer:
    return Buyer(email="agent.buyer@example.com", first_name="Ada", last_name="Lovelace")


@pytest.fixture
def tshirt() -> CatalogReference:
    return CatalogReference(catalog_item_id="prod_tshirt", app_id="app_stores", quantity=2)


@pytest.fixture
def ebook() -> CatalogReference:
    return CatalogReference(catalog_item_id="prod_ebook", app_id="app_stores", quantity=1)
