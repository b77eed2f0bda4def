"""
OAuth token manager.

Issues and redeems the three credentials of the identity-linking flow:

- Authorization codes: single use. The stored code is removed atomically on
  the first redemption attempt, whatever its outcome, so a code with a
  wrong verifier cannot be retried.
- Access tokens: signed JWTs plus a ``jti`` entry ``{valid: bool}`` whose
  TTL matches the token. Revocation flips the entry to ``valid=false`` for
  the token's remaining lifetime.
- Refresh tokens: opaque ``rt_`` strings, stored by SHA-256 hash, consumed
  atomically on lookup (rotation). A second use looks exactly like an
  unknown token.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
import uuid
from datetime import timedelta
from typing import List, Optional

from ..checkout.models import utc_now
from ..constants import IdPrefix, StoreKeys
from ..store import KeyValueStore
from .models import (
    AccessTokenClaims,
    AuthorizationCode,
    OAuthError,
    OAuthErrorCode,
    RefreshTokenRecord,
    TokenResponse,
)
from .signer import TokenSigner

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def s256_challenge(code_verifier: str) -> str:
    """RFC 7636 S256: BASE64URL(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_pkce(code_verifier: str, code_challenge: str, method: Optional[str] = "S256") -> bool:
    if method not in (None, "S256"):
        return False
    return hmac.compare_digest(s256_challenge(code_verifier), code_challenge)


def _invalid_grant(description: str) -> OAuthError:
    return OAuthError(OAuthErrorCode.INVALID_GRANT, description)


class TokenManager:
    """Authorization codes, access tokens and refresh tokens."""

    def __init__(
        self,
        store: KeyValueStore,
        signer: TokenSigner,
        issuer: str,
        auth_code_ttl_seconds: int = 10 * 60,
        access_token_ttl_seconds: int = 15 * 60,
        refresh_token_ttl_seconds: int = 30 * 24 * 60 * 60,
    ) -> None:
        self.store = store
        self.signer = signer
        self.issuer = issuer
        self.auth_code_ttl_seconds = auth_code_ttl_seconds
        self.access_token_ttl_seconds = access_token_ttl_seconds
        self.refresh_token_ttl_seconds = refresh_token_ttl_seconds

    # ------------------------------------------------------------------
    # Authorization codes
    # ------------------------------------------------------------------

    async def create_authorization_code(
        self,
        client_id: str,
        member_id: str,
        redirect_uri: str,
        scope: List[str],
        code_challenge: Optional[str] = None,
        code_challenge_method: Optional[str] = None,
    ) -> str:
        code = uuid.uuid4().hex + uuid.uuid4().hex
        record = AuthorizationCode(
            code=code,
            client_id=client_id,
            member_id=member_id,
            redirect_uri=redirect_uri,
            scope=list(scope),
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method if code_challenge else None,
            expires_at=utc_now() + timedelta(seconds=self.auth_code_ttl_seconds),
        )
        await self.store.set_with_ttl(
            f"{StoreKeys.OAUTH_CODE}{code}", record.to_dict(), self.auth_code_ttl_seconds
        )
        logger.debug(f"Issued authorization code for client {client_id}")
        return code

    async def consume_authorization_code(
        self,
        code: str,
        client_id: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
    ) -> AuthorizationCode:
        """Redeem a code exactly once.

        Raises:
            OAuthError: invalid_grant for every failure.
        """
        data = await self.store.get_and_delete(f"{StoreKeys.OAUTH_CODE}{code}")
        if data is None:
            logger.warning(f"Authorization code redemption miss for client {client_id}")
            raise _invalid_grant("Invalid or expired authorization code")

        record = AuthorizationCode.from_dict(data)

        if record.used:
            logger.warning(f"Authorization code replay for client {client_id}")
            raise _invalid_grant("Authorization code has already been used")

        if utc_now() > record.expires_at:
            raise _invalid_grant("Authorization code has expired")

        if record.client_id != client_id:
            logger.warning(f"Authorization code client mismatch: {client_id} != {record.client_id}")
            raise _invalid_grant("Client ID mismatch")

        if record.redirect_uri != redirect_uri:
            raise _invalid_grant("Redirect URI mismatch")

        if record.code_challenge:
            if not code_verifier:
                raise _invalid_grant("Code verifier is required")
            if not verify_pkce(code_verifier, record.code_challenge, record.code_challenge_method):
                logger.warning(f"PKCE verification failed for client {client_id}")
                raise _invalid_grant("Code verifier does not match challenge")

        return record

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    async def generate_access_token(
        self,
        member_id: str,
        client_id: str,
        platform_id: str,
        scope: List[str],
    ) -> str:
        now = int(time.time())
        claims = AccessTokenClaims(
            sub=member_id,
            iss=self.issuer,
            aud=client_id,
            iat=now,
            exp=now + self.access_token_ttl_seconds,
            scope=" ".join(scope),
            platform_id=platform_id,
            jti=uuid.uuid4().hex,
        )
        token = self.signer.sign(claims.to_dict())
        await self.store.set_with_ttl(
            f"{StoreKeys.OAUTH_JTI}{claims.jti}", {"valid": True}, self.access_token_ttl_seconds
        )
        return token

    async def validate_access_token(self, token: str) -> Optional[AccessTokenClaims]:
        """Signature, expiry, issuer and a ``valid=true`` jti entry are all required."""
        payload = self.signer.verify(token, self.issuer)
        if payload is None:
            return None
        claims = AccessTokenClaims.from_dict(payload)

        entry = await self.store.get(f"{StoreKeys.OAUTH_JTI}{claims.jti}")
        if not entry or entry.get("valid") is not True:
            logger.debug(f"Access token {claims.jti} revoked or unknown")
            return None
        return claims

    async def revoke_access_token(self, token: str) -> bool:
        payload = self.signer.verify(token, self.issuer)
        if payload is None:
            return False
        claims = AccessTokenClaims.from_dict(payload)
        remaining = claims.exp - int(time.time())
        if remaining <= 0:
            return False
        await self.store.set_with_ttl(f"{StoreKeys.OAUTH_JTI}{claims.jti}", {"valid": False}, remaining)
        logger.info(f"Revoked access token {claims.jti}")
        return True

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    async def generate_refresh_token(
        self,
        member_id: str,
        client_id: str,
        platform_id: str,
        scope: List[str],
    ) -> str:
        token = f"{IdPrefix.REFRESH_TOKEN}{uuid.uuid4().hex}{uuid.uuid4().hex}"
        record = RefreshTokenRecord(
            member_id=member_id,
            client_id=client_id,
            platform_id=platform_id,
            scope=list(scope),
            expires_at=utc_now() + timedelta(seconds=self.refresh_token_ttl_seconds),
        )
        await self.store.set_with_ttl(
            f"{StoreKeys.OAUTH_REFRESH}{hash_token(token)}",
            record.to_dict(),
            self.refresh_token_ttl_seconds,
        )
        return token

    async def consume_refresh_token(self, token: str) -> Optional[RefreshTokenRecord]:
        """Atomically take the record out of the store (rotation).

        None means unknown, already redeemed, or expired; callers treat a
        redeemed token presented again as a possible theft.
        """
        data = await self.store.get_and_delete(f"{StoreKeys.OAUTH_REFRESH}{hash_token(token)}")
        if data is None:
            logger.warning("Refresh token not found (unknown, expired or already rotated)")
            return None
        record = RefreshTokenRecord.from_dict(data)
        if record.used or utc_now() > record.expires_at:
            return None
        return record

    async def revoke_refresh_token(self, token: str) -> bool:
        return await self.store.delete(f"{StoreKeys.OAUTH_REFRESH}{hash_token(token)}")

    async def generate_token_response(
        self,
        member_id: str,
        client_id: str,
        platform_id: str,
        scope: List[str],
        include_refresh_token: bool = True,
    ) -> TokenResponse:
        access_token = await self.generate_access_token(member_id, client_id, platform_id, scope)
        refresh_token = None
        if include_refresh_token:
            refresh_token = await self.generate_refresh_token(member_id, client_id, platform_id, scope)
        return TokenResponse(
            access_token=access_token,
            expires_in=self.access_token_ttl_seconds,
            scope=" ".join(scope),
            refresh_token=refresh_token,
        )
