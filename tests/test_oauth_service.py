"""
Tests for ucp_gateway.identity.service and ucp_gateway.identity.clients.

Tests cover:
- Authorization request validation order
- Code exchange with PKCE and client authentication
- Refresh token rotation and replay
- Revocation and consent
- Client registry caching and development fallback
"""
from __future__ import annotations

import pytest

from ucp_gateway.exceptions import UCPErrorCode, UCPException
from ucp_gateway.identity.clients import (
    ClientRegistry,
    ClientRepository,
    InMemoryClientRepository,
    hash_client_secret,
)
from ucp_gateway.identity.models import OAuthClient, OAuthError, OAuthErrorCode
from ucp_gateway.identity.service import AuthorizeRequest, TokenRequest, append_query

from ucp_helpers import (
    CODE_VERIFIER,
    CONFIDENTIAL_CLIENT_ID,
    CONFIDENTIAL_CLIENT_SECRET,
    PUBLIC_CLIENT_ID,
    REDIRECT_URI,
    STATE,
    code_challenge,
)

MEMBER_ID = "member_42"


@pytest.fixture
def oauth(container):
    return container.oauth


def authorize_request(**overrides) -> AuthorizeRequest:
    fields = dict(
        response_type="code",
        client_id=CONFIDENTIAL_CLIENT_ID,
        redirect_uri=REDIRECT_URI,
        scope="openid email",
        state=STATE,
    )
    fields.update(overrides)
    return AuthorizeRequest(**fields)


def public_request(**overrides) -> AuthorizeRequest:
    fields = dict(
        client_id=PUBLIC_CLIENT_ID,
        code_challenge=code_challenge(),
        code_challenge_method="S256",
    )
    fields.update(overrides)
    return authorize_request(**fields)


class TestAuthorizeValidation:
    """Tests for the authorization request validation order."""

    @pytest.mark.asyncio
    async def test_valid_request(self, oauth):
        client, scopes = await oauth.validate_authorize_request(authorize_request())
        assert client.client_id == CONFIDENTIAL_CLIENT_ID
        assert scopes == ["openid", "email"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides,error,redirectable", [
        ({"response_type": "token"}, OAuthErrorCode.UNSUPPORTED_RESPONSE_TYPE, False),
        ({"redirect_uri": "https://evil.example.com/cb"}, OAuthErrorCode.INVALID_REQUEST, False),
        ({"scope": ""}, OAuthErrorCode.INVALID_SCOPE, True),
        ({"scope": "openid admin"}, OAuthErrorCode.INVALID_SCOPE, True),
        ({"scope": "openid orders:read"}, OAuthErrorCode.INVALID_SCOPE, True),
        ({"state": "short"}, OAuthErrorCode.INVALID_REQUEST, True),
        ({"code_challenge": "abc", "code_challenge_method": "plain"}, OAuthErrorCode.INVALID_REQUEST, True),
    ])
    async def test_rejections(self, oauth, overrides, error, redirectable):
        with pytest.raises(OAuthError) as exc_info:
            await oauth.validate_authorize_request(authorize_request(**overrides))
        assert exc_info.value.error == error
        assert (exc_info.value.redirect_uri == REDIRECT_URI) is redirectable

    @pytest.mark.asyncio
    async def test_unknown_scope_is_named(self, oauth):
        with pytest.raises(OAuthError) as exc_info:
            await oauth.validate_authorize_request(authorize_request(scope="openid admin"))
        assert exc_info.value.description == "Invalid scopes: admin"

    @pytest.mark.asyncio
    async def test_unknown_client_without_fallback(self, store, container):
        container.clients.allow_dev_fallback = False
        with pytest.raises(OAuthError) as exc_info:
            await container.oauth.validate_authorize_request(authorize_request(client_id="nobody"))
        assert exc_info.value.error == OAuthErrorCode.UNAUTHORIZED_CLIENT
        assert exc_info.value.redirect_uri is None

    @pytest.mark.asyncio
    async def test_public_client_requires_pkce(self, oauth):
        with pytest.raises(OAuthError) as exc_info:
            await oauth.validate_authorize_request(public_request(code_challenge=None, code_challenge_method=None))
        assert exc_info.value.error == OAuthErrorCode.INVALID_REQUEST
        assert "code_challenge" in exc_info.value.description

    @pytest.mark.asyncio
    async def test_public_client_requires_s256(self, oauth):
        with pytest.raises(OAuthError):
            await oauth.validate_authorize_request(public_request(code_challenge_method="plain"))

    @pytest.mark.asyncio
    async def test_scope_check_precedes_pkce_check(self, oauth):
        with pytest.raises(OAuthError) as exc_info:
            await oauth.validate_authorize_request(
                public_request(scope="profile", code_challenge=None, code_challenge_method=None)
            )
        assert exc_info.value.error == OAuthErrorCode.INVALID_SCOPE


class TestAuthorizationCodeFlow:
    """Tests for authorize + code exchange."""

    @pytest.mark.asyncio
    async def test_authorize_and_exchange_confidential(self, oauth):
        result = await oauth.authorize(authorize_request(), MEMBER_ID)
        assert result.redirect_url.startswith(f"{REDIRECT_URI}?code=")
        assert f"state={STATE}" in result.redirect_url

        response = await oauth.token(TokenRequest(
            grant_type="authorization_code",
            client_id=CONFIDENTIAL_CLIENT_ID,
            client_secret=CONFIDENTIAL_CLIENT_SECRET,
            code=result.code,
            redirect_uri=REDIRECT_URI,
        ))
        assert response.scope == "openid email"
        claims = await oauth.validate_token(response.access_token)
        assert claims.sub == MEMBER_ID
        assert claims.platform_id == CONFIDENTIAL_CLIENT_ID

    @pytest.mark.asyncio
    async def test_authorize_and_exchange_public_with_pkce(self, oauth):
        result = await oauth.authorize(public_request(), MEMBER_ID)
        response = await oauth.token(TokenRequest(
            grant_type="authorization_code",
            client_id=PUBLIC_CLIENT_ID,
            code=result.code,
            redirect_uri=REDIRECT_URI,
            code_verifier=CODE_VERIFIER,
        ))
        assert response.refresh_token.startswith("rt_")

    @pytest.mark.asyncio
    async def test_wrong_client_secret(self, oauth):
        result = await oauth.authorize(authorize_request(), MEMBER_ID)
        with pytest.raises(OAuthError) as exc_info:
            await oauth.token(TokenRequest(
                grant_type="authorization_code",
                client_id=CONFIDENTIAL_CLIENT_ID,
                client_secret="wrong",
                code=result.code,
                redirect_uri=REDIRECT_URI,
            ))
        assert exc_info.value.error == OAuthErrorCode.INVALID_CLIENT
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_code_replay(self, oauth):
        result = await oauth.authorize(public_request(), MEMBER_ID)
        request = TokenRequest(
            grant_type="authorization_code",
            client_id=PUBLIC_CLIENT_ID,
            code=result.code,
            redirect_uri=REDIRECT_URI,
            code_verifier=CODE_VERIFIER,
        )
        await oauth.token(request)
        with pytest.raises(OAuthError) as exc_info:
            await oauth.token(request)
        assert exc_info.value.error == OAuthErrorCode.INVALID_GRANT

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", ["code", "redirect_uri"])
    async def test_exchange_requires_fields(self, oauth, missing):
        fields = dict(
            grant_type="authorization_code",
            client_id=PUBLIC_CLIENT_ID,
            code="abc",
            redirect_uri=REDIRECT_URI,
        )
        fields[missing] = None
        with pytest.raises(OAuthError) as exc_info:
            await oauth.token(TokenRequest(**fields))
        assert exc_info.value.error == OAuthErrorCode.INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_unsupported_grant_type(self, oauth):
        with pytest.raises(OAuthError) as exc_info:
            await oauth.token(TokenRequest(grant_type="password", client_id=PUBLIC_CLIENT_ID))
        assert exc_info.value.error == OAuthErrorCode.UNSUPPORTED_GRANT_TYPE


class TestRefreshFlow:
    """Tests for refresh token rotation."""

    async def _tokens(self, oauth):
        result = await oauth.authorize(public_request(), MEMBER_ID)
        return await oauth.token(TokenRequest(
            grant_type="authorization_code",
            client_id=PUBLIC_CLIENT_ID,
            code=result.code,
            redirect_uri=REDIRECT_URI,
            code_verifier=CODE_VERIFIER,
        ))

    @pytest.mark.asyncio
    async def test_rotation(self, oauth):
        first = await self._tokens(oauth)
        second = await oauth.token(TokenRequest(
            grant_type="refresh_token", client_id=PUBLIC_CLIENT_ID, refresh_token=first.refresh_token
        ))
        assert second.refresh_token != first.refresh_token
        assert second.scope == first.scope

        with pytest.raises(OAuthError) as exc_info:
            await oauth.token(TokenRequest(
                grant_type="refresh_token", client_id=PUBLIC_CLIENT_ID, refresh_token=first.refresh_token
            ))
        assert exc_info.value.error == OAuthErrorCode.INVALID_GRANT

    @pytest.mark.asyncio
    async def test_client_mismatch_consumes_token(self, oauth):
        first = await self._tokens(oauth)
        with pytest.raises(OAuthError) as exc_info:
            await oauth.token(TokenRequest(
                grant_type="refresh_token", client_id=CONFIDENTIAL_CLIENT_ID, refresh_token=first.refresh_token
            ))
        assert exc_info.value.error == OAuthErrorCode.INVALID_CLIENT

        with pytest.raises(OAuthError) as exc_info:
            await oauth.token(TokenRequest(
                grant_type="refresh_token", client_id=PUBLIC_CLIENT_ID, refresh_token=first.refresh_token
            ))
        assert exc_info.value.error == OAuthErrorCode.INVALID_GRANT

    @pytest.mark.asyncio
    async def test_missing_refresh_token(self, oauth):
        with pytest.raises(OAuthError) as exc_info:
            await oauth.token(TokenRequest(grant_type="refresh_token", client_id=PUBLIC_CLIENT_ID))
        assert exc_info.value.error == OAuthErrorCode.INVALID_REQUEST


class TestRevocationAndConsent:
    @pytest.mark.asyncio
    async def test_revoke_access_token(self, oauth):
        result = await oauth.authorize(authorize_request(), MEMBER_ID)
        response = await oauth.token(TokenRequest(
            grant_type="authorization_code",
            client_id=CONFIDENTIAL_CLIENT_ID,
            client_secret=CONFIDENTIAL_CLIENT_SECRET,
            code=result.code,
            redirect_uri=REDIRECT_URI,
        ))
        await oauth.revoke_token(response.access_token)
        assert await oauth.validate_token(response.access_token) is None

        await oauth.revoke_token(response.refresh_token)
        assert await oauth.tokens.consume_refresh_token(response.refresh_token) is None

    @pytest.mark.asyncio
    async def test_revoke_unknown_token_is_silent(self, oauth):
        await oauth.revoke_token("not-a-token")
        await oauth.revoke_token("rt_unknown", "refresh_token")

    @pytest.mark.asyncio
    async def test_authorize_records_consent(self, oauth):
        await oauth.authorize(authorize_request(scope="openid"), MEMBER_ID)
        await oauth.authorize(authorize_request(scope="email"), MEMBER_ID)

        assert await oauth.has_consent(MEMBER_ID, CONFIDENTIAL_CLIENT_ID, ["openid", "email"])
        assert not await oauth.has_consent(MEMBER_ID, CONFIDENTIAL_CLIENT_ID, ["profile"])
        assert not await oauth.has_consent("someone_else", CONFIDENTIAL_CLIENT_ID, ["openid"])

    @pytest.mark.asyncio
    async def test_revoke_consent(self, oauth):
        await oauth.record_consent(MEMBER_ID, CONFIDENTIAL_CLIENT_ID, ["openid"])
        assert await oauth.revoke_consent(MEMBER_ID, CONFIDENTIAL_CLIENT_ID)
        assert not await oauth.has_consent(MEMBER_ID, CONFIDENTIAL_CLIENT_ID, ["openid"])

    def test_append_query(self):
        assert append_query("https://a.example/cb", {"code": "x", "state": None}) == "https://a.example/cb?code=x"
        assert append_query("https://a.example/cb?v=1", {"code": "x"}) == "https://a.example/cb?v=1&code=x"


class FailingRepository(ClientRepository):
    def __init__(self) -> None:
        self.calls = 0

    async def get(self, client_id):
        self.calls += 1
        raise ConnectionError("database unreachable")

    async def save(self, client):
        raise ConnectionError("database unreachable")


class CountingRepository(InMemoryClientRepository):
    def __init__(self, clients=()) -> None:
        super().__init__(clients)
        self.calls = 0

    async def get(self, client_id):
        self.calls += 1
        return await super().get(client_id)


class TestClientRegistry:
    """Tests for ClientRegistry."""

    @pytest.mark.asyncio
    async def test_lookup_is_cached(self, store):
        client = OAuthClient("c1", "C1", [REDIRECT_URI], ["openid"])
        repository = CountingRepository([client])
        registry = ClientRegistry(store, repository, cache_ttl_seconds=300)

        assert (await registry.get("c1")).name == "C1"
        assert (await registry.get("c1")).name == "C1"
        assert repository.calls == 1
        assert 0 < await store.remaining_ttl("oauth:client:c1") <= 300

    @pytest.mark.asyncio
    async def test_register_invalidates_cache(self, store):
        repository = CountingRepository([OAuthClient("c1", "Old", [REDIRECT_URI], ["openid"])])
        registry = ClientRegistry(store, repository)
        await registry.get("c1")

        await registry.register(OAuthClient("c1", "New", [REDIRECT_URI], ["openid"]))
        assert (await registry.get("c1")).name == "New"

    @pytest.mark.asyncio
    async def test_dev_fallback_only_when_allowed(self, store):
        strict = ClientRegistry(store, InMemoryClientRepository(), allow_dev_fallback=False)
        assert await strict.get("unknown") is None

        lenient = ClientRegistry(store, InMemoryClientRepository(), allow_dev_fallback=True)
        fallback = await lenient.get("unknown")
        assert fallback.is_public
        assert "http://localhost:3000/callback" in fallback.redirect_uris

    @pytest.mark.asyncio
    async def test_repository_failure_is_not_fallback(self, store):
        registry = ClientRegistry(store, FailingRepository(), allow_dev_fallback=True)
        with pytest.raises(UCPException) as exc_info:
            await registry.get("c1")
        assert exc_info.value.code == UCPErrorCode.SERVICE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_empty_client_id(self, store):
        registry = ClientRegistry(store, InMemoryClientRepository(), allow_dev_fallback=True)
        assert await registry.get("") is None

    def test_verify_secret(self):
        confidential = OAuthClient("c1", "C1", [], [], client_secret_hash=hash_client_secret("pw"))
        public = OAuthClient("c2", "C2", [], [], is_public=True)

        assert ClientRegistry.verify_secret(confidential, "pw")
        assert not ClientRegistry.verify_secret(confidential, "nope")
        assert not ClientRegistry.verify_secret(confidential, None)
        assert ClientRegistry.verify_secret(public, None)
