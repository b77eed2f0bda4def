"""
Business profile published at ``/.well-known/ucp`` and capability negotiation.

The built profile is cached in the ephemeral store per site; a store outage
only costs a rebuild. Negotiation intersects what an agent declares with
what the profile publishes, matching capabilities, payment handlers and
extensions by name.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .config import GatewaySettings
from .constants import StoreKeys, UCPProtocol
from .exceptions import StoreUnavailableError
from .payments.handler import PaymentHandler
from .store import KeyValueStore

logger = logging.getLogger(__name__)


def capabilities(version: str) -> List[Dict[str, str]]:
    return [
        {
            "name": UCPProtocol.CHECKOUT_CAPABILITY,
            "version": version,
            "spec": UCPProtocol.CHECKOUT_SPEC_URL,
        },
        {
            "name": UCPProtocol.IDENTITY_CAPABILITY,
            "version": version,
            "spec": UCPProtocol.IDENTITY_SPEC_URL,
        },
    ]


def build_profile(settings: GatewaySettings, payment_handler: PaymentHandler) -> Dict[str, Any]:
    """UCP version, REST transport, capabilities and payment handlers."""
    return {
        "ucp": {
            "version": settings.ucp_version,
            "services": {
                UCPProtocol.SHOPPING_SERVICE: {
                    "version": settings.ucp_version,
                    "spec": UCPProtocol.SPEC_URL,
                    "rest": {
                        "endpoint": settings.base_url,
                        "schema": UCPProtocol.REST_SCHEMA_URL,
                    },
                },
            },
        },
        "business": {
            "id": settings.site_id,
            "name": settings.business_name,
        },
        "capabilities": capabilities(settings.ucp_version),
        "payment": {
            "handlers": [payment_handler.declaration()],
        },
    }


@dataclass(slots=True)
class AgentProfile:
    """What a calling agent declares it can use."""

    capabilities: List[str] = field(default_factory=list)
    handlers: List[str] = field(default_factory=list)
    extensions: List[str] = field(default_factory=list)


@dataclass(slots=True)
class NegotiationResult:
    capabilities: List[Dict[str, Any]]
    handlers: List[Dict[str, Any]]
    extensions: List[Dict[str, Any]]
    warnings: List[str]

    @property
    def viable_for_checkout(self) -> bool:
        """Checkout needs the checkout capability and at least one handler."""
        return bool(self.handlers) and any(
            c["name"] == UCPProtocol.CHECKOUT_CAPABILITY for c in self.capabilities
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "negotiated": {
                "capabilities": self.capabilities,
                "handlers": self.handlers,
                "extensions": self.extensions,
            },
            "viableForCheckout": self.viable_for_checkout,
        }
        if self.warnings:
            result["warnings"] = self.warnings
        return result


def negotiate(profile: Dict[str, Any], agent: AgentProfile) -> NegotiationResult:
    """Intersect the business profile with an agent profile."""
    warnings: List[str] = []

    matched_capabilities = [c for c in profile["capabilities"] if c["name"] in agent.capabilities]
    if not matched_capabilities:
        warnings.append("No common capabilities found")

    matched_handlers = [h for h in profile["payment"]["handlers"] if h["name"] in agent.handlers]
    if not matched_handlers:
        warnings.append("No compatible payment handlers found")

    matched_extensions = [e for e in profile.get("extensions", []) if e["name"] in agent.extensions]

    if warnings:
        logger.warning(
            f"Negotiation found gaps agentCapabilities={agent.capabilities} "
            f"agentHandlers={agent.handlers}: {'; '.join(warnings)}"
        )
    logger.info(
        f"Negotiation completed capabilities={len(matched_capabilities)} "
        f"handlers={len(matched_handlers)} extensions={len(matched_extensions)}"
    )
    return NegotiationResult(
        capabilities=matched_capabilities,
        handlers=matched_handlers,
        extensions=matched_extensions,
        warnings=warnings,
    )


class ProfileService:
    """Builds, caches and negotiates the business profile."""

    def __init__(
        self,
        store: KeyValueStore,
        settings: GatewaySettings,
        payment_handler: PaymentHandler,
        cache_ttl_seconds: int = 300,
    ) -> None:
        self.store = store
        self.settings = settings
        self.payment_handler = payment_handler
        self.cache_ttl_seconds = cache_ttl_seconds

    @property
    def cache_key(self) -> str:
        return f"{StoreKeys.PROFILE}{self.settings.site_id}"

    async def get_profile(self) -> Dict[str, Any]:
        try:
            cached = await self.store.get(self.cache_key)
        except StoreUnavailableError as e:
            logger.warning(f"Profile cache read failed, rebuilding: {e.message}")
            cached = None
        if cached:
            return cached

        profile = build_profile(self.settings, self.payment_handler)
        try:
            await self.store.set_with_ttl(self.cache_key, profile, self.cache_ttl_seconds)
        except StoreUnavailableError as e:
            logger.warning(f"Profile cache write failed: {e.message}")
        return profile

    async def invalidate_cache(self) -> bool:
        existed = await self.store.delete(self.cache_key)
        logger.info(f"Profile cache invalidated for site {self.settings.site_id}")
        return existed

    async def negotiate(self, agent: AgentProfile) -> NegotiationResult:
        return negotiate(await self.get_profile(), agent)
