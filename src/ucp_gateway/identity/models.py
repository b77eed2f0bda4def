"""OAuth 2.0 identity-linking models and error type."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..checkout.models import from_iso, to_iso, utc_now


class OAuthScope(str, Enum):
    OPENID = "openid"
    PROFILE = "profile"
    EMAIL = "email"
    ORDERS_READ = "orders:read"
    LOYALTY_READ = "loyalty:read"
    LOYALTY_WRITE = "loyalty:write"
    ADDRESSES_READ = "addresses:read"
    PAYMENT_METHODS_READ = "payment_methods:read"


VALID_SCOPES: List[str] = [s.value for s in OAuthScope]


class OAuthErrorCode(str, Enum):
    """RFC 6749 section 5.2 error codes (plus invalid_token from RFC 6750)."""

    INVALID_REQUEST = "invalid_request"
    UNAUTHORIZED_CLIENT = "unauthorized_client"
    ACCESS_DENIED = "access_denied"
    UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
    INVALID_SCOPE = "invalid_scope"
    SERVER_ERROR = "server_error"
    INVALID_GRANT = "invalid_grant"
    INVALID_CLIENT = "invalid_client"
    INVALID_TOKEN = "invalid_token"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"


class OAuthError(Exception):
    """Error returned to OAuth clients as ``{error, error_description}``.

    ``redirect_uri`` is set only once the redirect URI has been verified
    against the client registration; only then may the error be delivered
    by redirect.
    """

    def __init__(
        self,
        error: OAuthErrorCode,
        description: str,
        status_code: int = 400,
        redirect_uri: Optional[str] = None,
    ) -> None:
        super().__init__(description)
        self.error = OAuthErrorCode(error)
        self.description = description
        self.status_code = status_code
        self.redirect_uri = redirect_uri

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.error.value, "error_description": self.description}


def parse_scope(scope: str | List[str] | None) -> List[str]:
    if not scope:
        return []
    if isinstance(scope, str):
        return [s for s in scope.split(" ") if s]
    return list(scope)


@dataclass(slots=True)
class OAuthClient:
    client_id: str
    name: str
    redirect_uris: List[str]
    allowed_scopes: List[str]
    client_secret_hash: Optional[str] = None
    is_public: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clientId": self.client_id,
            "name": self.name,
            "redirectUris": list(self.redirect_uris),
            "allowedScopes": list(self.allowed_scopes),
            "clientSecretHash": self.client_secret_hash,
            "isPublic": self.is_public,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OAuthClient":
        return cls(
            client_id=data["clientId"],
            name=data["name"],
            redirect_uris=list(data.get("redirectUris", [])),
            allowed_scopes=list(data.get("allowedScopes", [])),
            client_secret_hash=data.get("clientSecretHash"),
            is_public=bool(data.get("isPublic", False)),
        )


@dataclass(slots=True)
class AuthorizationCode:
    code: str
    client_id: str
    member_id: str
    redirect_uri: str
    scope: List[str]
    expires_at: datetime
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    used: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "clientId": self.client_id,
            "memberId": self.member_id,
            "redirectUri": self.redirect_uri,
            "scope": list(self.scope),
            "codeChallenge": self.code_challenge,
            "codeChallengeMethod": self.code_challenge_method,
            "expiresAt": to_iso(self.expires_at),
            "used": self.used,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthorizationCode":
        return cls(
            code=data["code"],
            client_id=data["clientId"],
            member_id=data["memberId"],
            redirect_uri=data["redirectUri"],
            scope=list(data.get("scope") or []),
            code_challenge=data.get("codeChallenge"),
            code_challenge_method=data.get("codeChallengeMethod"),
            expires_at=from_iso(data["expiresAt"]),
            used=bool(data.get("used", False)),
        )


@dataclass(slots=True)
class RefreshTokenRecord:
    member_id: str
    client_id: str
    platform_id: str
    scope: List[str]
    expires_at: datetime
    used: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memberId": self.member_id,
            "clientId": self.client_id,
            "platformId": self.platform_id,
            "scope": list(self.scope),
            "expiresAt": to_iso(self.expires_at),
            "used": self.used,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RefreshTokenRecord":
        return cls(
            member_id=data["memberId"],
            client_id=data["clientId"],
            platform_id=data["platformId"],
            scope=list(data.get("scope") or []),
            expires_at=from_iso(data["expiresAt"]),
            used=bool(data.get("used", False)),
        )


@dataclass(slots=True)
class AccessTokenClaims:
    sub: str
    iss: str
    aud: str
    iat: int
    exp: int
    scope: str
    platform_id: str
    jti: str

    @property
    def scopes(self) -> List[str]:
        return parse_scope(self.scope)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sub": self.sub,
            "iss": self.iss,
            "aud": self.aud,
            "iat": self.iat,
            "exp": self.exp,
            "scope": self.scope,
            "platform_id": self.platform_id,
            "jti": self.jti,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessTokenClaims":
        aud = data["aud"]
        if isinstance(aud, list):
            aud = aud[0] if aud else ""
        return cls(
            sub=data["sub"],
            iss=data["iss"],
            aud=aud,
            iat=int(data["iat"]),
            exp=int(data["exp"]),
            scope=data.get("scope", ""),
            platform_id=data.get("platform_id", ""),
            jti=data["jti"],
        )


@dataclass(slots=True)
class ConsentRecord:
    member_id: str
    platform_id: str
    scope: List[str]
    granted_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memberId": self.member_id,
            "platformId": self.platform_id,
            "scope": list(self.scope),
            "grantedAt": to_iso(self.granted_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConsentRecord":
        return cls(
            member_id=data["memberId"],
            platform_id=data["platformId"],
            scope=list(data.get("scope") or []),
            granted_at=from_iso(data["grantedAt"]),
        )


@dataclass(slots=True)
class TokenResponse:
    access_token: str
    expires_in: int
    scope: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "scope": self.scope,
        }
        if self.refresh_token:
            result["refresh_token"] = self.refresh_token
        return result
