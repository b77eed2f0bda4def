"""
Service wiring for the HTTP layer.

Every service is constructed once by ``build_container`` at application
start and handed to routers through ``get_container``, which ``create_app``
overrides. There are no lazily created module-level instances.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from ..checkout.adapter import DemoMerchantBackend, MerchantBackend
from ..checkout.idempotency import IdempotencyGuard
from ..checkout.service import CheckoutService
from ..checkout.sessions import CheckoutSessionStore
from ..config import GatewaySettings
from ..discovery import ProfileService
from ..identity.clients import ClientRegistry, ClientRepository, InMemoryClientRepository
from ..identity.members import DemoMemberDirectory, MemberDirectory
from ..identity.models import OAuthClient
from ..identity.service import OAuthService
from ..identity.signer import JWTSigner
from ..identity.token_manager import TokenManager
from ..payments.config import PaymentHandlerConfig
from ..payments.detokenizer import PaymentDetokenizer
from ..payments.handler import PaymentHandler
from ..payments.tokenizer import CardVault, PaymentTokenizer, SandboxCardVault
from ..store import KeyValueStore, build_store

logger = logging.getLogger(__name__)


@dataclass
class GatewayContainer:
    settings: GatewaySettings
    store: KeyValueStore
    checkout: CheckoutService
    payment_handler: PaymentHandler
    oauth: OAuthService
    tokens: TokenManager
    clients: ClientRegistry
    members: MemberDirectory
    discovery: ProfileService


def get_container() -> GatewayContainer:
    raise NotImplementedError("Dependency override required")


def build_container(
    settings: GatewaySettings,
    store: Optional[KeyValueStore] = None,
    merchant: Optional[MerchantBackend] = None,
    vault: Optional[CardVault] = None,
    client_repository: Optional[ClientRepository] = None,
    members: Optional[MemberDirectory] = None,
    oauth_clients: Iterable[OAuthClient] = (),
) -> GatewayContainer:
    """Construct every gateway service for one process."""
    store = store or build_store(settings)
    vault = vault or SandboxCardVault()

    handler_config = PaymentHandlerConfig.from_settings(settings)
    payment_handler = PaymentHandler(
        config=handler_config,
        tokenizer=PaymentTokenizer(store, handler_config, vault, ttl_seconds=settings.payment_token_ttl_seconds),
        detokenizer=PaymentDetokenizer(store, handler_config, vault),
        handler_id=settings.resolved_handler_id,
    )

    checkout = CheckoutService(
        sessions=CheckoutSessionStore(
            store,
            ttl_seconds=settings.checkout_ttl_seconds,
            completed_retention_seconds=settings.completed_retention_seconds,
            cancelled_retention_seconds=settings.cancelled_retention_seconds,
        ),
        idempotency=IdempotencyGuard(store, window_seconds=settings.idempotency_window_seconds),
        payment_handler=payment_handler,
        merchant=merchant or DemoMerchantBackend(),
        business_id=settings.merchant_id,
        tax_rate=settings.tax_rate,
        base_url=settings.base_url,
        ucp_version=settings.ucp_version,
    )

    tokens = TokenManager(
        store,
        JWTSigner(settings.jwt_secret),
        issuer=settings.issuer,
        auth_code_ttl_seconds=settings.auth_code_ttl_seconds,
        access_token_ttl_seconds=settings.access_token_ttl_seconds,
        refresh_token_ttl_seconds=settings.refresh_token_ttl_seconds,
    )
    clients = ClientRegistry(
        store,
        client_repository or InMemoryClientRepository(oauth_clients),
        cache_ttl_seconds=settings.client_cache_ttl_seconds,
        allow_dev_fallback=not settings.is_production(),
    )
    oauth = OAuthService(store, clients, tokens, consent_ttl_seconds=settings.consent_ttl_seconds)

    logger.info(
        f"Gateway services ready environment={settings.environment} "
        f"store={type(store).__name__} handler={payment_handler.handler_id}"
    )
    return GatewayContainer(
        settings=settings,
        store=store,
        checkout=checkout,
        payment_handler=payment_handler,
        oauth=oauth,
        tokens=tokens,
        clients=clients,
        members=members or DemoMemberDirectory(),
        discovery=ProfileService(
            store, settings, payment_handler, cache_ttl_seconds=settings.profile_cache_ttl_seconds
        ),
    )
