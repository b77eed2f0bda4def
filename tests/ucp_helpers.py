"""Shared constants and payload builders for gateway tests."""
from __future__ import annotations

import base64
import hashlib

MERCHANT_ID = "merchant_test123"
CONFIDENTIAL_CLIENT_ID = "agent_platform"
CONFIDENTIAL_CLIENT_SECRET = "s3cret-platform-secret"
PUBLIC_CLIENT_ID = "agent_public"
REDIRECT_URI = "https://agent.example.com/callback"
STATE = "state-abcdef123"

CODE_VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"


def code_challenge(verifier: str = CODE_VERIFIER) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def line_item_payload(catalog_item_id: str = "prod_tshirt", quantity: int = 1) -> dict:
    return {
        "catalogReference": {"catalogItemId": catalog_item_id, "appId": "app_stores"},
        "quantity": quantity,
    }


def card_credential(pan: str = "4111111111111111") -> dict:
    return {
        "type": "card",
        "pan": pan,
        "expiryMonth": "12",
        "expiryYear": "2030",
        "cvv": "123",
        "cardholderName": "Ada Lovelace",
    }


def binding_payload(checkout_id: str, business_id: str = MERCHANT_ID) -> dict:
    return {
        "checkoutId": checkout_id,
        "businessIdentity": {"type": "wix_merchant_id", "value": business_id},
    }
