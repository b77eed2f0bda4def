"""OAuth 2.0 / OpenID Connect endpoints for identity linking."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, ValidationError

from ...identity.models import OAuthError, OAuthErrorCode, VALID_SCOPES
from ...identity.members import map_member_to_userinfo
from ...identity.service import AuthorizeRequest, TokenRequest, append_query
from ..dependencies import GatewayContainer, get_container
from ..exceptions import oauth_error_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/identity", tags=["identity"])

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}

CLAIMS_SUPPORTED = [
    "sub",
    "email",
    "email_verified",
    "name",
    "given_name",
    "family_name",
    "picture",
    "ucp_member_id",
    "ucp_loyalty_tier",
    "ucp_loyalty_points",
    "ucp_saved_addresses",
]


class TokenRequestBody(BaseModel):
    grant_type: str
    client_id: str
    code: Optional[str] = None
    refresh_token: Optional[str] = None
    redirect_uri: Optional[str] = None
    code_verifier: Optional[str] = None
    client_secret: Optional[str] = None


class RevokeRequestBody(BaseModel):
    token: str
    token_type_hint: Optional[str] = None


async def _read_params(request: Request) -> Dict[str, Any]:
    """Accept both form-encoded (RFC 6749) and JSON bodies."""
    raw = await request.body()
    if not raw:
        return {}
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/x-www-form-urlencoded"):
        return dict(parse_qsl(raw.decode("utf-8"), keep_blank_values=True))
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


@router.get("/authorize")
async def authorize(
    response_type: str = Query(...),
    client_id: str = Query(...),
    redirect_uri: str = Query(...),
    scope: str = Query(...),
    state: str = Query(...),
    code_challenge: Optional[str] = Query(None),
    code_challenge_method: Optional[str] = Query(None),
    container: GatewayContainer = Depends(get_container),
):
    """Authorization endpoint.

    Login and consent screens live upstream; the member is resolved from
    the member directory and the request is approved once it validates.
    """
    auth_request = AuthorizeRequest(
        response_type=response_type,
        client_id=client_id,
        redirect_uri=redirect_uri,
        scope=scope,
        state=state,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
    )
    try:
        member_id = await container.members.resolve_member_id(client_id)
        result = await container.oauth.authorize(auth_request, member_id)
    except OAuthError as e:
        if e.redirect_uri:
            logger.info(f"Authorization rejected for client {client_id}: {e.error.value}")
            return RedirectResponse(
                append_query(e.redirect_uri, {
                    "error": e.error.value,
                    "error_description": e.description,
                    "state": state,
                }),
                status_code=302,
            )
        raise

    logger.info(f"Authorization completed for client {client_id}, redirecting")
    return RedirectResponse(result.redirect_url, status_code=302)


@router.post("/token")
async def token(request: Request, container: GatewayContainer = Depends(get_container)):
    params = await _read_params(request)
    try:
        body = TokenRequestBody.model_validate(params)
    except ValidationError:
        raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "Invalid token request")

    response = await container.oauth.token(
        TokenRequest(
            grant_type=body.grant_type,
            client_id=body.client_id,
            code=body.code,
            refresh_token=body.refresh_token,
            redirect_uri=body.redirect_uri,
            code_verifier=body.code_verifier,
            client_secret=body.client_secret,
        )
    )
    return JSONResponse(content=response.to_dict(), headers=NO_STORE_HEADERS)


@router.get("/userinfo")
async def userinfo(request: Request, container: GatewayContainer = Depends(get_container)):
    access_token = _bearer_token(request)
    if not access_token:
        response = oauth_error_response(
            OAuthError(OAuthErrorCode.INVALID_TOKEN, "Missing or invalid access token", status_code=401)
        )
        response.headers["WWW-Authenticate"] = "Bearer"
        return response

    claims = await container.oauth.validate_token(access_token)
    if claims is None:
        raise OAuthError(OAuthErrorCode.INVALID_TOKEN, "Invalid or expired access token", status_code=401)

    member = await container.members.get_member(claims.sub)
    if member is None:
        raise OAuthError(OAuthErrorCode.INVALID_TOKEN, "Member no longer exists", status_code=401)

    logger.debug(f"UserInfo retrieved for member {claims.sub}")
    return map_member_to_userinfo(member, claims.scopes)


@router.post("/revoke")
async def revoke(request: Request, container: GatewayContainer = Depends(get_container)):
    """RFC 7009: always 200, whatever the token."""
    params = await _read_params(request)
    try:
        body = RevokeRequestBody.model_validate(params)
    except ValidationError:
        return {}

    try:
        await container.oauth.revoke_token(body.token, body.token_type_hint)
    except Exception as e:
        logger.warning(f"Token revocation error: {type(e).__name__}")
    return {}


@router.get("/.well-known/openid-configuration")
async def openid_configuration(container: GatewayContainer = Depends(get_container)):
    base_url = container.settings.base_url
    config = {
        "issuer": container.settings.issuer,
        "authorization_endpoint": f"{base_url}/identity/authorize",
        "token_endpoint": f"{base_url}/identity/token",
        "userinfo_endpoint": f"{base_url}/identity/userinfo",
        "revocation_endpoint": f"{base_url}/identity/revoke",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "subject_types_supported": ["public"],
        "id_token_signing_alg_values_supported": ["HS256"],
        "scopes_supported": list(VALID_SCOPES),
        "token_endpoint_auth_methods_supported": ["client_secret_post", "none"],
        "code_challenge_methods_supported": ["S256"],
        "claims_supported": list(CLAIMS_SUPPORTED),
    }
    return JSONResponse(content=config, headers={"Cache-Control": "public, max-age=86400"})
