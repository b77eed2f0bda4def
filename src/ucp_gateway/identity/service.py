"""
OAuth 2.0 authorization service for identity linking.

Authorization request validation order:
    1. response_type must be ``code``        -> unsupported_response_type
    2. client_id must resolve                -> unauthorized_client
    3. redirect_uri must be registered       -> invalid_request
    4. scopes must be in the catalog         -> invalid_scope
    5. scopes must be allowed for the client -> invalid_scope
    6. public clients need S256 PKCE         -> invalid_request
    7. state must be at least 8 characters   -> invalid_request

Errors from step 4 onward carry the verified redirect URI so the HTTP
layer may redirect them back to the client.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple
from urllib.parse import urlencode

from ..constants import StoreKeys
from ..store import KeyValueStore
from .clients import ClientRegistry
from .models import (
    AccessTokenClaims,
    ConsentRecord,
    OAuthClient,
    OAuthError,
    OAuthErrorCode,
    TokenResponse,
    VALID_SCOPES,
    parse_scope,
)
from .token_manager import TokenManager

logger = logging.getLogger(__name__)

MIN_STATE_LENGTH = 8


@dataclass(slots=True)
class AuthorizeRequest:
    response_type: str
    client_id: str
    redirect_uri: str
    scope: str
    state: str
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None


@dataclass(slots=True)
class TokenRequest:
    grant_type: str
    client_id: str
    code: Optional[str] = None
    refresh_token: Optional[str] = None
    redirect_uri: Optional[str] = None
    code_verifier: Optional[str] = None
    client_secret: Optional[str] = None


@dataclass(slots=True)
class AuthorizationResult:
    code: str
    state: str
    redirect_uri: str

    @property
    def redirect_url(self) -> str:
        return append_query(self.redirect_uri, {"code": self.code, "state": self.state})


def append_query(uri: str, params: dict) -> str:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    separator = "&" if "?" in uri else "?"
    return f"{uri}{separator}{query}"


def consent_key(member_id: str, client_id: str) -> str:
    return f"{StoreKeys.OAUTH_CONSENT}{member_id}:{client_id}"


class OAuthService:
    """Orchestrates authorize, token, revoke and consent operations."""

    def __init__(
        self,
        store: KeyValueStore,
        clients: ClientRegistry,
        tokens: TokenManager,
        consent_ttl_seconds: int = 30 * 24 * 60 * 60,
    ) -> None:
        self.store = store
        self.clients = clients
        self.tokens = tokens
        self.consent_ttl_seconds = consent_ttl_seconds

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    async def validate_authorize_request(self, request: AuthorizeRequest) -> Tuple[OAuthClient, List[str]]:
        if request.response_type != "code":
            raise OAuthError(
                OAuthErrorCode.UNSUPPORTED_RESPONSE_TYPE,
                "Only response_type=code is supported",
            )

        client = await self.clients.get(request.client_id)
        if client is None:
            raise OAuthError(OAuthErrorCode.UNAUTHORIZED_CLIENT, "Unknown client_id")

        if request.redirect_uri not in client.redirect_uris:
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "redirect_uri is not registered for this client")

        redirect = request.redirect_uri
        scopes = parse_scope(request.scope)
        if not scopes:
            raise OAuthError(OAuthErrorCode.INVALID_SCOPE, "scope is required", redirect_uri=redirect)

        unknown = [s for s in scopes if s not in VALID_SCOPES]
        if unknown:
            raise OAuthError(
                OAuthErrorCode.INVALID_SCOPE,
                f"Invalid scopes: {', '.join(unknown)}",
                redirect_uri=redirect,
            )

        not_allowed = [s for s in scopes if s not in client.allowed_scopes]
        if not_allowed:
            raise OAuthError(
                OAuthErrorCode.INVALID_SCOPE,
                f"Scopes not allowed for this client: {', '.join(not_allowed)}",
                redirect_uri=redirect,
            )

        if client.is_public:
            if not request.code_challenge:
                raise OAuthError(
                    OAuthErrorCode.INVALID_REQUEST,
                    "code_challenge is required for public clients",
                    redirect_uri=redirect,
                )
            if request.code_challenge_method != "S256":
                raise OAuthError(
                    OAuthErrorCode.INVALID_REQUEST,
                    "code_challenge_method must be S256",
                    redirect_uri=redirect,
                )
        elif request.code_challenge and request.code_challenge_method not in (None, "S256"):
            raise OAuthError(
                OAuthErrorCode.INVALID_REQUEST,
                "code_challenge_method must be S256",
                redirect_uri=redirect,
            )

        if not request.state or len(request.state) < MIN_STATE_LENGTH:
            raise OAuthError(
                OAuthErrorCode.INVALID_REQUEST,
                f"state must be at least {MIN_STATE_LENGTH} characters",
                redirect_uri=redirect,
            )

        return client, scopes

    async def authorize(self, request: AuthorizeRequest, member_id: str) -> AuthorizationResult:
        """Validate, issue a code for member_id and record consent."""
        client, scopes = await self.validate_authorize_request(request)

        code = await self.tokens.create_authorization_code(
            client_id=client.client_id,
            member_id=member_id,
            redirect_uri=request.redirect_uri,
            scope=scopes,
            code_challenge=request.code_challenge,
            code_challenge_method=request.code_challenge_method or ("S256" if request.code_challenge else None),
        )
        await self.record_consent(member_id, client.client_id, scopes)

        logger.info(f"Authorization code issued client={client.client_id} member={member_id}")
        return AuthorizationResult(code=code, state=request.state, redirect_uri=request.redirect_uri)

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    async def token(self, request: TokenRequest) -> TokenResponse:
        if request.grant_type == "authorization_code":
            return await self.exchange_code(request)
        if request.grant_type == "refresh_token":
            return await self.refresh_tokens(request)
        raise OAuthError(
            OAuthErrorCode.UNSUPPORTED_GRANT_TYPE,
            f"Unsupported grant_type: {request.grant_type}",
        )

    async def _authenticate_client(self, request: TokenRequest) -> OAuthClient:
        client = await self.clients.get(request.client_id)
        if client is None or not self.clients.verify_secret(client, request.client_secret):
            raise OAuthError(OAuthErrorCode.INVALID_CLIENT, "Client authentication failed", status_code=401)
        return client

    async def exchange_code(self, request: TokenRequest) -> TokenResponse:
        if request.grant_type != "authorization_code":
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "Expected authorization_code grant type")
        if not request.code:
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "Authorization code is required")
        if not request.redirect_uri:
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "Redirect URI is required")

        await self._authenticate_client(request)

        auth_code = await self.tokens.consume_authorization_code(
            request.code,
            request.client_id,
            request.redirect_uri,
            request.code_verifier,
        )

        response = await self.tokens.generate_token_response(
            member_id=auth_code.member_id,
            client_id=request.client_id,
            platform_id=request.client_id,
            scope=auth_code.scope,
        )
        logger.info(f"Tokens issued via authorization code client={request.client_id} member={auth_code.member_id}")
        return response

    async def refresh_tokens(self, request: TokenRequest) -> TokenResponse:
        if request.grant_type != "refresh_token":
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "Expected refresh_token grant type")
        if not request.refresh_token:
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "Refresh token is required")

        # Consumed before any other check: a refresh token is single-use
        # whether or not this call succeeds.
        record = await self.tokens.consume_refresh_token(request.refresh_token)
        if record is None:
            logger.warning(
                f"Refresh token rejected for client {request.client_id}; "
                "possible replay of a rotated token"
            )
            raise OAuthError(OAuthErrorCode.INVALID_GRANT, "Invalid or expired refresh token")

        if record.client_id != request.client_id:
            logger.warning(f"Refresh token client mismatch: {request.client_id} != {record.client_id}")
            raise OAuthError(OAuthErrorCode.INVALID_CLIENT, "Client ID mismatch")

        await self._authenticate_client(request)

        response = await self.tokens.generate_token_response(
            member_id=record.member_id,
            client_id=record.client_id,
            platform_id=record.platform_id,
            scope=record.scope,
        )
        logger.info(f"Tokens refreshed client={request.client_id} member={record.member_id}")
        return response

    # ------------------------------------------------------------------
    # Validation and revocation
    # ------------------------------------------------------------------

    async def validate_token(self, access_token: str) -> Optional[AccessTokenClaims]:
        return await self.tokens.validate_access_token(access_token)

    async def revoke_token(self, token: str, token_type_hint: Optional[str] = None) -> None:
        """RFC 7009: unknown or invalid tokens are not an error."""
        if token_type_hint == "refresh_token" or token.startswith("rt_"):
            await self.tokens.revoke_refresh_token(token)
        else:
            await self.tokens.revoke_access_token(token)
        logger.info("Token revoked")

    # ------------------------------------------------------------------
    # Consent
    # ------------------------------------------------------------------

    async def record_consent(self, member_id: str, client_id: str, scopes: List[str]) -> ConsentRecord:
        """Upsert consent for (member, client); scopes accumulate."""
        existing = await self.store.get(consent_key(member_id, client_id))
        merged = list(scopes)
        if existing:
            merged = list(dict.fromkeys([*existing.get("scope", []), *scopes]))
        record = ConsentRecord(member_id=member_id, platform_id=client_id, scope=merged)
        await self.store.set_with_ttl(consent_key(member_id, client_id), record.to_dict(), self.consent_ttl_seconds)
        return record

    async def has_consent(self, member_id: str, client_id: str, scopes: List[str]) -> bool:
        data = await self.store.get(consent_key(member_id, client_id))
        if not data:
            return False
        granted = set(data.get("scope", []))
        return all(s in granted for s in scopes)

    async def revoke_consent(self, member_id: str, client_id: str) -> bool:
        return await self.store.delete(consent_key(member_id, client_id))
