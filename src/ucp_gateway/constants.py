"""Protocol constants and store key layout for the UCP gateway."""
from __future__ import annotations

from typing import Final


class UCPProtocol:
    """Universal Commerce Protocol identifiers."""

    VERSION: Final[str] = "2026-01-11"
    SPEC_URL: Final[str] = "https://ucp.dev/specification/overview"
    SHOPPING_SERVICE: Final[str] = "dev.ucp.shopping"
    CHECKOUT_CAPABILITY: Final[str] = "dev.ucp.shopping.checkout"
    CHECKOUT_SPEC_URL: Final[str] = "https://ucp.dev/specification/checkout"
    IDENTITY_CAPABILITY: Final[str] = "dev.ucp.shopping.identity"
    IDENTITY_SPEC_URL: Final[str] = "https://ucp.dev/specification/identity"
    REST_SCHEMA_URL: Final[str] = "https://ucp.dev/services/shopping/rest.openapi.json"


class HandlerIdentity:
    """Payment handler identity published in checkout responses."""

    NAME: Final[str] = "com.wix.payments"
    VERSION: Final[str] = "2026-01-11"
    SPEC_URL: Final[str] = "https://dev.wix.com/ucp/payments/spec"


class IdPrefix:
    """Prefixes for generated identifiers."""

    CHECKOUT: Final[str] = "chk_"
    PAYMENT_TOKEN: Final[str] = "tok_"
    PROVIDER_CARD_TOKEN: Final[str] = "wix_tok_"
    NETWORK_TOKEN: Final[str] = "ntok_"
    REFRESH_TOKEN: Final[str] = "rt_"
    ORDER: Final[str] = "ord_"
    TRANSACTION: Final[str] = "txn_"


class StoreKeys:
    """Key layout inside the ephemeral keyed store."""

    CHECKOUT: Final[str] = "checkout:"
    IDEMPOTENCY: Final[str] = "idempotency:checkout:"
    PAYMENT_TOKEN: Final[str] = "token:"
    OAUTH_CODE: Final[str] = "oauth:code:"
    OAUTH_REFRESH: Final[str] = "oauth:refresh:"
    OAUTH_JTI: Final[str] = "oauth:jti:"
    OAUTH_CLIENT: Final[str] = "oauth:client:"
    OAUTH_CONSENT: Final[str] = "oauth:consent:"
    PROFILE: Final[str] = "profile:"


class LoggingConfig:
    """Logging-related constants."""

    SENSITIVE_FIELDS: Final[frozenset[str]] = frozenset({
        "password",
        "secret",
        "token",
        "access_token",
        "accessToken",
        "refresh_token",
        "refreshToken",
        "client_secret",
        "clientSecret",
        "code_verifier",
        "codeVerifier",
        "authorization",
        "credential",
        "pan",
        "card_number",
        "cardNumber",
        "cvv",
        "cvc",
        "cryptogram",
        "jwt_secret",
    })

    MASK_PATTERN: Final[str] = "***REDACTED***"

    MAX_LOG_MESSAGE_LENGTH: Final[int] = 10000
