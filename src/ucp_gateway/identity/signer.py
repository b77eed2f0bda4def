"""Access token signing.

The claims schema (AccessTokenClaims) is the stable contract; the signing
primitive sits behind TokenSigner so it can move to asymmetric keys without
touching the token manager.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import jwt

logger = logging.getLogger(__name__)


class TokenSigner(Protocol):
    algorithm: str

    def sign(self, claims: Dict[str, Any]) -> str:
        ...

    def verify(self, token: str, issuer: str) -> Optional[Dict[str, Any]]:
        """Return verified claims, or None if signature/expiry/issuer fail."""
        ...


class JWTSigner:
    """HS256 JWT signer backed by PyJWT."""

    algorithm = "HS256"

    def __init__(self, secret: str, leeway_seconds: int = 0) -> None:
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret
        self._leeway = leeway_seconds

    def sign(self, claims: Dict[str, Any]) -> str:
        return jwt.encode(claims, self._secret, algorithm=self.algorithm)

    def verify(self, token: str, issuer: str) -> Optional[Dict[str, Any]]:
        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                issuer=issuer,
                leeway=self._leeway,
                options={
                    "require": ["exp", "iat", "iss", "sub", "jti"],
                    # aud is the client id; callers check it where it matters
                    "verify_aud": False,
                },
            )
        except jwt.ExpiredSignatureError:
            logger.debug("Access token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.debug(f"Access token rejected: {type(e).__name__}")
            return None
