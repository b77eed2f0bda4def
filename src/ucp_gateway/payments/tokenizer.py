"""
Payment credential tokenizer.

Turns a raw credential into a short-lived, single-use token bound to one
checkout at one merchant. The raw PAN/CVV goes to the card vault and is
never written to the ephemeral store; only the vault reference and masked
instrument metadata are kept.
"""
from __future__ import annotations

import logging
import re
import uuid
from datetime import timedelta
from typing import Optional, Protocol

from ..checkout.models import utc_now
from ..constants import IdPrefix, StoreKeys
from ..exceptions import UCPErrorCode, UCPException, field_error
from ..logging import mask_value
from ..store import KeyValueStore
from .config import (
    CardBrandInfo,
    PaymentHandlerConfig,
    PaymentMethod,
    TokenizationType,
    detect_card_brand,
    luhn_valid,
)
from .models import (
    PaymentInstrument,
    SourceCredential,
    StoredPaymentToken,
    TokenBinding,
    TokenizeResult,
)

logger = logging.getLogger(__name__)

CREDENTIAL_METHODS = {
    "card": PaymentMethod.CREDIT_CARD,
    "googlePay": PaymentMethod.GOOGLE_PAY,
    "applePay": PaymentMethod.APPLE_PAY,
}

_MONTH = re.compile(r"^(0[1-9]|1[0-2])$")
_YEAR = re.compile(r"^(\d{2}|\d{4})$")
_CVV = re.compile(r"^\d{3,4}$")
_PAN = re.compile(r"^\d{13,19}$")


def token_store_key(token_id: str) -> str:
    return f"{StoreKeys.PAYMENT_TOKEN}{token_id}"


class CardVault(Protocol):
    """Provider-side credential vault (external collaborator)."""

    async def store_credential(self, credential: SourceCredential) -> str:
        """Vault the raw credential and return an opaque provider reference."""
        ...

    async def reveal_pan(self, provider_token: str) -> str:
        """Return the PAN behind a provider reference (DIRECT mode only)."""
        ...


class SandboxCardVault:
    """Vault stand-in for dev and sandbox merchants."""

    TEST_PAN = "4111111111111111"

    async def store_credential(self, credential: SourceCredential) -> str:
        return f"{IdPrefix.PROVIDER_CARD_TOKEN}{uuid.uuid4().hex}"

    async def reveal_pan(self, provider_token: str) -> str:
        return self.TEST_PAN


class PaymentTokenizer:
    """Issues single-use payment tokens."""

    def __init__(
        self,
        store: KeyValueStore,
        config: PaymentHandlerConfig,
        vault: CardVault,
        ttl_seconds: int = 15 * 60,
    ) -> None:
        self.store = store
        self.config = config
        self.vault = vault
        self.ttl_seconds = ttl_seconds

    async def tokenize(self, credential: SourceCredential, binding: TokenBinding) -> TokenizeResult:
        logger.info(f"Tokenizing {credential.type} credential for checkout {binding.checkout_id}")

        self._validate(credential)
        brand = self._check_brand(credential) if credential.type == "card" else None

        token_id = f"{IdPrefix.PAYMENT_TOKEN}{uuid.uuid4().hex}"
        now = utc_now()
        expires_at = now + timedelta(seconds=self.ttl_seconds)
        instrument = self._instrument(credential, brand)
        provider_token = await self.vault.store_credential(credential)

        record = StoredPaymentToken(
            id=token_id,
            provider_token=provider_token,
            checkout_id=binding.checkout_id,
            business_id=binding.business_identity.value,
            instrument=instrument,
            created_at=now,
            expires_at=expires_at,
            credential_type=(
                "network_token"
                if self.config.tokenization_type == TokenizationType.PAYMENT_GATEWAY
                else "pan"
            ),
        )
        await self.store.set_with_ttl(
            token_store_key(token_id), record.to_dict(), self.ttl_seconds
        )

        logger.info(
            f"Tokenized credential {mask_value(token_id)} checkout={binding.checkout_id} brand={instrument.brand}"
        )
        return TokenizeResult(token=token_id, expires_at=expires_at, instrument=instrument)

    def _validate(self, credential: SourceCredential) -> None:
        method = CREDENTIAL_METHODS.get(credential.type)
        if method is None or not self.config.supports_method(method):
            raise UCPException(
                UCPErrorCode.INVALID_FIELD,
                f"Payment method {credential.type} is not supported",
                details=[field_error("sourceCredential.type", "UNSUPPORTED_PAYMENT_METHOD",
                                     f"Payment method {credential.type} is not supported")],
            )

        if credential.type == "card":
            if not (credential.pan and credential.expiry_month and credential.expiry_year and credential.cvv):
                raise UCPException(
                    UCPErrorCode.MISSING_FIELD,
                    "Card credentials require pan, expiryMonth, expiryYear, and cvv",
                    details=[field_error("sourceCredential", "INVALID_CREDENTIALS",
                                         "Card credentials require pan, expiryMonth, expiryYear, and cvv")],
                )
            self._validate_card_fields(credential)
        elif credential.type == "googlePay" and not credential.google_pay_token:
            raise UCPException(
                UCPErrorCode.MISSING_FIELD,
                "Google Pay requires googlePayToken",
                details=[field_error("sourceCredential.googlePayToken", "MISSING_FIELD",
                                     "Google Pay requires googlePayToken")],
            )
        elif credential.type == "applePay" and not credential.apple_pay_token:
            raise UCPException(
                UCPErrorCode.MISSING_FIELD,
                "Apple Pay requires applePayToken",
                details=[field_error("sourceCredential.applePayToken", "MISSING_FIELD",
                                     "Apple Pay requires applePayToken")],
            )

    def _validate_card_fields(self, credential: SourceCredential) -> None:
        pan = re.sub(r"[\s-]", "", credential.pan or "")
        errors = []
        if not _PAN.match(pan) or not luhn_valid(pan):
            errors.append(field_error("sourceCredential.pan", "INVALID_CARD_NUMBER", "Card number is invalid"))
        if not _MONTH.match(credential.expiry_month or ""):
            errors.append(field_error("sourceCredential.expiryMonth", "INVALID_FORMAT", "Expiry month must be 01-12"))
        if not _YEAR.match(credential.expiry_year or ""):
            errors.append(field_error("sourceCredential.expiryYear", "INVALID_FORMAT", "Expiry year must be YY or YYYY"))
        if not _CVV.match(credential.cvv or ""):
            errors.append(field_error("sourceCredential.cvv", "INVALID_FORMAT", "CVV must be 3 or 4 digits"))
        if errors:
            raise UCPException(UCPErrorCode.INVALID_FIELD, "Invalid card credentials", details=errors)
        credential.pan = pan

    def _check_brand(self, credential: SourceCredential) -> CardBrandInfo:
        brand = detect_card_brand(credential.pan or "")
        if brand is None:
            raise UCPException(
                UCPErrorCode.INVALID_FIELD,
                "Card network could not be determined",
                details=[field_error("sourceCredential.pan", "UNSUPPORTED_CARD_NETWORK",
                                     "Card network could not be determined")],
            )
        if not self.config.supports_network(brand.brand):
            raise UCPException(
                UCPErrorCode.INVALID_FIELD,
                f"Card network {brand.brand_name} is not supported",
                details=[field_error("sourceCredential.pan", "UNSUPPORTED_CARD_NETWORK",
                                     f"Card network {brand.brand_name} is not supported")],
            )
        return brand

    def _instrument(self, credential: SourceCredential, brand: Optional[CardBrandInfo]) -> PaymentInstrument:
        if credential.type == "card":
            return PaymentInstrument(
                type="card",
                brand=brand.brand.value if brand else None,
                last_digits=(credential.pan or "")[-4:],
                expiry_month=credential.expiry_month,
                expiry_year=credential.expiry_year,
            )
        return PaymentInstrument(type="wallet")
