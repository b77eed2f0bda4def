"""
Payment token redemption.

A token moves from unredeemed to redeemed exactly once. The flip of the
``used`` flag is a compare-and-set in the store, so two concurrent
redemptions cannot both pass even though both read ``used=false``.

Validation order (each with its own error):
    1. lookup miss                -> NOT_FOUND
    2. already used               -> GONE
    3. past expires_at            -> GONE
    4. checkoutId mismatch        -> FORBIDDEN
    5. businessIdentity mismatch  -> FORBIDDEN
    6. lost the mark-used race    -> CONFLICT
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..constants import IdPrefix
from ..exceptions import ErrorDetail, UCPErrorCode, UCPException
from ..logging import mask_value
from ..store import KeyValueStore
from .config import PaymentHandlerConfig, TokenizationType
from .models import DetokenizeResult, StoredPaymentToken, TokenBinding
from .tokenizer import CardVault, token_store_key

logger = logging.getLogger(__name__)

# Static sandbox cryptogram; live mode receives one per transaction from the network.
SANDBOX_CRYPTOGRAM = "AJkBByECCAAAAAAAAAAAACAgIIAAAA=="
DEFAULT_ECI = "05"


def _token_error(code: UCPErrorCode, message: str, detail_code: str) -> UCPException:
    return UCPException(code, message, details=[ErrorDetail("token", detail_code, message)])


class PaymentDetokenizer:
    """Redeems payment tokens exactly once."""

    def __init__(self, store: KeyValueStore, config: PaymentHandlerConfig, vault: CardVault) -> None:
        self.store = store
        self.config = config
        self.vault = vault

    async def detokenize(
        self,
        token: str,
        binding: TokenBinding,
        delegated_to: Optional[str] = None,
    ) -> DetokenizeResult:
        key = token_store_key(token)
        data = await self.store.get(key)
        if data is None:
            logger.warning(f"Detokenize miss for token on checkout {binding.checkout_id}")
            raise _token_error(UCPErrorCode.NOT_FOUND, "Payment token not found or expired", "TOKEN_NOT_FOUND")

        stored = StoredPaymentToken.from_dict(data)

        if stored.used:
            logger.warning(f"Replay attempt for payment token {mask_value(stored.id)}")
            raise _token_error(UCPErrorCode.GONE, "Payment token has already been used", "TOKEN_INVALID")

        if stored.is_expired():
            raise _token_error(UCPErrorCode.GONE, "Payment token has expired", "TOKEN_EXPIRED")

        if stored.checkout_id != binding.checkout_id:
            logger.warning(f"Binding mismatch (checkoutId) for token {mask_value(stored.id)}")
            raise _token_error(
                UCPErrorCode.FORBIDDEN,
                "Token binding mismatch: checkoutId does not match",
                "BINDING_MISMATCH",
            )

        if stored.business_id != binding.business_identity.value:
            logger.warning(f"Binding mismatch (businessIdentity) for token {mask_value(stored.id)}")
            raise _token_error(
                UCPErrorCode.FORBIDDEN,
                "Token binding mismatch: businessIdentity does not match",
                "BINDING_MISMATCH",
            )

        marked = await self.store.compare_and_set(key, "used", False, True)
        if not marked:
            logger.warning(f"Lost redemption race for payment token {mask_value(stored.id)}")
            raise _token_error(UCPErrorCode.CONFLICT, "Payment token is no longer available", "TOKEN_INVALID")

        credential = await self._build_credential(stored)
        logger.info(
            f"Detokenized {mask_value(stored.id)} checkout={binding.checkout_id} type={credential['type']}"
            + (f" delegatedTo={delegated_to}" if delegated_to else "")
        )
        return DetokenizeResult(credential=credential, invalidated=True)

    async def _build_credential(self, stored: StoredPaymentToken) -> Dict[str, Any]:
        expiry = {
            "expiryMonth": stored.instrument.expiry_month,
            "expiryYear": stored.instrument.expiry_year,
        }
        if self.config.tokenization_type == TokenizationType.PAYMENT_GATEWAY:
            return {
                "type": "network_token",
                "networkToken": f"{IdPrefix.NETWORK_TOKEN}{stored.provider_token[-12:]}",
                "cryptogram": SANDBOX_CRYPTOGRAM,
                "eci": DEFAULT_ECI,
                **expiry,
            }
        return {
            "type": "pan",
            "pan": await self.vault.reveal_pan(stored.provider_token),
            **expiry,
        }

    async def invalidate(self, checkout_id: str, token: str) -> bool:
        """Delete a token regardless of its used/expiry state.

        Tokens are scoped to their checkout: one bound to another checkout
        is treated as absent and left in place. Returns whether a record
        was deleted.
        """
        key = token_store_key(token)
        data = await self.store.get(key)
        if data is None or data.get("binding", {}).get("checkoutId") != checkout_id:
            return False
        existed = await self.store.delete(key)
        if existed:
            logger.info(f"Invalidated payment token {mask_value(token)} for checkout {checkout_id}")
        return existed
