"""
OAuth client registry.

Clients live in a persistent repository (DB-backed in deployments) with a
short-TTL cache in the ephemeral store in front of it.

An unknown client may resolve to a permissive development client, but
only when the registry was built with ``allow_dev_fallback`` (never in
production) and only when the repository definitively answered "not
found". A failing repository lookup is an outage, not an unknown client,
and is surfaced as SERVICE_UNAVAILABLE.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

from ..constants import StoreKeys
from ..exceptions import UCPErrorCode, UCPException
from ..store import KeyValueStore
from .models import OAuthClient, VALID_SCOPES

logger = logging.getLogger(__name__)

DEV_REDIRECT_URIS = [
    "http://localhost:3000/callback",
    "http://localhost:8080/callback",
    "https://oauth.pstmn.io/v1/callback",
]


def hash_client_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode()).hexdigest()


class ClientRepository(ABC):
    """Persistent OAuth client storage."""

    @abstractmethod
    async def get(self, client_id: str) -> Optional[OAuthClient]:
        """Return the client, None if it does not exist; raise on lookup failure."""

    @abstractmethod
    async def save(self, client: OAuthClient) -> None:
        """Insert or replace a client."""


class InMemoryClientRepository(ClientRepository):
    """Client repository for development and testing."""

    def __init__(self, clients: Iterable[OAuthClient] = ()) -> None:
        self._clients: Dict[str, OAuthClient] = {c.client_id: c for c in clients}

    async def get(self, client_id: str) -> Optional[OAuthClient]:
        return self._clients.get(client_id)

    async def save(self, client: OAuthClient) -> None:
        self._clients[client.client_id] = client


def dev_client(client_id: str) -> OAuthClient:
    return OAuthClient(
        client_id=client_id,
        name="Development Client",
        redirect_uris=list(DEV_REDIRECT_URIS),
        allowed_scopes=list(VALID_SCOPES),
        is_public=True,
    )


class ClientRegistry:
    """Cached client lookup."""

    def __init__(
        self,
        store: KeyValueStore,
        repository: ClientRepository,
        cache_ttl_seconds: int = 300,
        allow_dev_fallback: bool = False,
    ) -> None:
        self.store = store
        self.repository = repository
        self.cache_ttl_seconds = cache_ttl_seconds
        self.allow_dev_fallback = allow_dev_fallback

    async def get(self, client_id: str) -> Optional[OAuthClient]:
        if not client_id:
            return None

        cached = await self.store.get(f"{StoreKeys.OAUTH_CLIENT}{client_id}")
        if cached:
            return OAuthClient.from_dict(cached)

        try:
            client = await self.repository.get(client_id)
        except UCPException:
            raise
        except Exception as e:
            logger.error(f"OAuth client lookup failed for {client_id}: {e}")
            raise UCPException(
                UCPErrorCode.SERVICE_UNAVAILABLE,
                "Client registry is temporarily unavailable",
            ) from e

        if client is None:
            if self.allow_dev_fallback:
                logger.warning(
                    f"OAuth client {client_id} not registered; using DEVELOPMENT fallback client. "
                    "This must never happen in production."
                )
                return dev_client(client_id)
            return None

        await self.store.set_with_ttl(
            f"{StoreKeys.OAUTH_CLIENT}{client_id}", client.to_dict(), self.cache_ttl_seconds
        )
        return client

    async def register(self, client: OAuthClient) -> None:
        await self.repository.save(client)
        await self.store.delete(f"{StoreKeys.OAUTH_CLIENT}{client.client_id}")

    @staticmethod
    def verify_secret(client: OAuthClient, client_secret: Optional[str]) -> bool:
        if client.is_public or not client.client_secret_hash:
            return True
        if not client_secret:
            return False
        return hmac.compare_digest(hash_client_secret(client_secret), client.client_secret_hash)
