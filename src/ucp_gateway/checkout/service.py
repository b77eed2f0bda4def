"""
Checkout service.

Translates agent checkout operations into session store, pricing, payment
handler and merchant backend calls, and renders UCP checkout responses.

Completion flow:
    1. Claim (checkout_id, idempotency_key). A duplicate replays the stored
       result of a successful original, otherwise it is a CONFLICT.
    2. Validate session state and readiness. Failures here release the
       claim so the agent may retry with the same key.
    3. Redeem the payment token (single use, checkout-bound).
    4. Create the order at the merchant backend.
    5. Record the transaction, move the session to ``completed`` and store
       the result against the claim.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..exceptions import (
    StoreUnavailableError,
    UCPErrorCode,
    UCPException,
    field_error,
    missing_field_error,
    not_found_error,
)
from ..payments.handler import PaymentHandler
from ..payments.models import BusinessIdentity, TokenBinding
from .adapter import DEFAULT_SHIPPING_OPTIONS, MerchantBackend
from .idempotency import IdempotencyGuard
from .mapper import MessageCode, build_ucp_header, generate_links, generate_messages
from .models import (
    Address,
    Buyer,
    CatalogReference,
    CheckoutSession,
    FulfillmentOption,
    SessionPatch,
)
from .pricing import Discount, Total, get_grand_total, recalculate_totals, validate_discount_code
from .sessions import CheckoutSessionStore, CreateSessionParams
from .state_machine import CheckoutStatus, has_physical_items, missing_fields

logger = logging.getLogger(__name__)


def confirmation_number(order_id: str) -> str:
    return f"ORD-{order_id[-8:].upper()}"


def _invalid_discount() -> UCPException:
    return UCPException(
        UCPErrorCode.INVALID_FIELD,
        "Invalid discount code",
        details=[field_error("discountCode", MessageCode.INVALID_DISCOUNT.value, "The discount code is invalid or expired")],
    )


class CheckoutService:
    """UCP checkout capability."""

    def __init__(
        self,
        sessions: CheckoutSessionStore,
        idempotency: IdempotencyGuard,
        payment_handler: PaymentHandler,
        merchant: MerchantBackend,
        business_id: str,
        tax_rate: Decimal = Decimal("0"),
        base_url: str = "http://localhost:3000",
        ucp_version: str = "2026-01-11",
    ) -> None:
        self.sessions = sessions
        self.idempotency = idempotency
        self.payment_handler = payment_handler
        self.merchant = merchant
        self.business_id = business_id
        self.tax_rate = tax_rate
        self.base_url = base_url
        self.ucp_version = ucp_version

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_checkout(
        self,
        currency: str,
        items: List[CatalogReference],
        buyer: Optional[Buyer] = None,
        shipping_address: Optional[Address] = None,
        billing_address: Optional[Address] = None,
        discount_code: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        if not items:
            raise UCPException(
                UCPErrorCode.INVALID_REQUEST,
                "At least one line item is required",
                details=[missing_field_error("lineItems")],
            )

        if not self.payment_handler.config.supports_currency(currency):
            raise UCPException(
                UCPErrorCode.INVALID_FIELD,
                f"Currency {currency} is not supported",
                details=[field_error("currency", "UNSUPPORTED_CURRENCY", f"{currency} is not accepted by this merchant")],
            )

        line_items = await self.merchant.resolve_line_items(items)

        if discount_code and validate_discount_code(discount_code) is None:
            raise _invalid_discount()

        session = await self.sessions.create(
            CreateSessionParams(
                currency=currency,
                line_items=line_items,
                buyer=buyer,
                shipping_address=shipping_address,
                billing_address=billing_address,
                discount_code=discount_code,
                metadata=metadata or {},
            )
        )
        logger.info(f"Checkout {session.id} created currency={session.currency} items={len(line_items)}")
        return await self.build_response(session)

    async def get_checkout(self, checkout_id: str) -> Dict[str, Any]:
        session = await self._require(checkout_id)
        if session.status == CheckoutStatus.EXPIRED:
            raise UCPException(UCPErrorCode.GONE, "Checkout session has expired")
        return await self.build_response(session)

    async def update_checkout(self, checkout_id: str, patch: SessionPatch) -> Dict[str, Any]:
        session = await self._require(checkout_id)

        if patch.discount_code:
            if validate_discount_code(patch.discount_code, session.subtotal) is None:
                raise _invalid_discount()

        if patch.selected_fulfillment_id:
            options = await self._fulfillment_options(session)
            if not any(o.id == patch.selected_fulfillment_id for o in options):
                raise UCPException(
                    UCPErrorCode.INVALID_FIELD,
                    "Unknown fulfillment option",
                    details=[field_error(
                        "fulfillment.selectedId",
                        "INVALID_FULFILLMENT",
                        f"Fulfillment option '{patch.selected_fulfillment_id}' is not available",
                    )],
                )

        updated = await self.sessions.update(checkout_id, patch)
        logger.info(f"Checkout {checkout_id} updated status={updated.status.value}")
        return await self.build_response(updated)

    async def complete_checkout(
        self,
        checkout_id: str,
        token: str,
        idempotency_key: str,
        handler_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        claim = await self.idempotency.acquire(checkout_id, idempotency_key)
        if not claim.acquired:
            cached = claim.cached_result
            if cached is not None:
                logger.info(f"Replaying completion result for checkout {checkout_id}")
                return cached
            logger.warning(f"Duplicate completion request for {checkout_id} with unresolved original")
            raise UCPException(UCPErrorCode.CONFLICT, "Duplicate request with different outcome")

        try:
            session = await self._validate_completable(checkout_id, handler_id)
        except UCPException:
            await self.idempotency.release(checkout_id, idempotency_key)
            raise

        binding = TokenBinding(checkout_id=checkout_id, business_identity=BusinessIdentity(value=self.business_id))
        try:
            redeemed = await self.payment_handler.detokenize(token, binding)
        except StoreUnavailableError:
            # token state unknown; let the agent retry under the same key
            await self.idempotency.release(checkout_id, idempotency_key)
            raise
        except UCPException as e:
            logger.error(f"Payment detokenization failed for checkout {checkout_id}: {e.code.value}")
            await self.idempotency.record_failure(checkout_id, idempotency_key)
            raise UCPException(
                UCPErrorCode.UNPROCESSABLE,
                "Payment processing failed",
                details=[field_error(
                    "paymentData.credential",
                    MessageCode.PAYMENT_FAILED.value,
                    "Unable to process payment credential",
                )],
            ) from e

        try:
            order = await self.merchant.create_order(session, redeemed.credential)
        except UCPException:
            await self.idempotency.record_failure(checkout_id, idempotency_key)
            raise
        except Exception as e:
            logger.error(f"Order creation failed for checkout {checkout_id}: {type(e).__name__}", exc_info=True)
            await self.idempotency.record_failure(checkout_id, idempotency_key)
            raise UCPException(UCPErrorCode.NETWORK_ERROR, "Order creation failed") from e

        try:
            await self.sessions.set_payment_transaction(checkout_id, order.transaction_id)
            completed = await self.sessions.complete(checkout_id, order.order_id)
        except Exception:
            logger.error(
                f"Order {order.order_id} was created but checkout {checkout_id} could not be completed",
                exc_info=True,
            )
            await self.idempotency.record_failure(checkout_id, idempotency_key)
            raise

        totals = await self._totals(completed)
        result = {
            "id": checkout_id,
            "status": CheckoutStatus.COMPLETED.value,
            "orderId": order.order_id,
            "confirmationNumber": confirmation_number(order.order_id),
            "totals": [t.to_dict() for t in totals],
            "payment": {
                "status": "captured",
                "transactionId": order.transaction_id,
            },
        }
        await self.idempotency.record_success(checkout_id, idempotency_key, result)

        logger.info(
            f"Checkout {checkout_id} completed order={order.order_id} "
            f"total={get_grand_total(totals)} {completed.currency}"
        )
        return result

    async def cancel_checkout(self, checkout_id: str) -> CheckoutSession:
        await self._require(checkout_id)
        return await self.sessions.cancel(checkout_id)

    async def get_fulfillment_options(self, checkout_id: str) -> List[FulfillmentOption]:
        session = await self._require(checkout_id)
        return await self._fulfillment_options(session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require(self, checkout_id: str) -> CheckoutSession:
        session = await self.sessions.get(checkout_id)
        if session is None:
            raise not_found_error("Checkout session", checkout_id)
        return session

    async def _validate_completable(self, checkout_id: str, handler_id: Optional[str]) -> CheckoutSession:
        session = await self._require(checkout_id)

        if session.status == CheckoutStatus.EXPIRED:
            raise UCPException(UCPErrorCode.GONE, "Checkout session has expired")
        if session.status == CheckoutStatus.COMPLETED:
            raise UCPException(UCPErrorCode.CONFLICT, "Checkout has already been completed")
        if session.status == CheckoutStatus.CANCELLED:
            raise UCPException(UCPErrorCode.GONE, "Checkout has been cancelled")

        missing = missing_fields(session)
        if missing:
            raise UCPException(
                UCPErrorCode.INVALID_REQUEST,
                "Checkout is missing required information",
                details=[missing_field_error(f) for f in missing],
            )

        if session.status == CheckoutStatus.REQUIRES_ACTION:
            raise UCPException(UCPErrorCode.CONFLICT, "Checkout requires additional buyer action")

        if handler_id and handler_id != self.payment_handler.handler_id:
            raise UCPException(
                UCPErrorCode.INVALID_FIELD,
                "Unknown payment handler",
                details=[field_error("paymentData.handlerId", "INVALID_HANDLER", f"Handler '{handler_id}' is not offered")],
            )
        return session

    async def _fulfillment_options(self, session: CheckoutSession) -> List[FulfillmentOption]:
        if not has_physical_items(session):
            return []
        try:
            return await self.merchant.get_shipping_rates(session.id, session.shipping_address)
        except UCPException:
            raise
        except Exception as e:
            logger.warning(f"Shipping rate lookup failed for {session.id}, using default options: {e}")
            return list(DEFAULT_SHIPPING_OPTIONS)

    async def _totals(self, session: CheckoutSession) -> List[Total]:
        fulfillment = None
        if session.selected_fulfillment_id:
            options = await self._fulfillment_options(session)
            fulfillment = next((o for o in options if o.id == session.selected_fulfillment_id), None)
        discount: Optional[Discount] = None
        if session.discount_code:
            discount = validate_discount_code(session.discount_code, session.subtotal)
        return recalculate_totals(session.line_items, fulfillment, discount, self.tax_rate)

    async def build_response(self, session: CheckoutSession) -> Dict[str, Any]:
        """Full UCP checkout representation of a session."""
        physical = has_physical_items(session)
        totals = await self._totals(session)
        stored = session.to_dict()

        response: Dict[str, Any] = {
            "ucp": build_ucp_header(self.ucp_version),
            "id": session.id,
            "status": session.status.value,
            "currency": session.currency,
            "lineItems": [item.to_dict() for item in session.line_items],
            "totals": [t.to_dict() for t in totals],
            "payment": {
                "handlers": [self.payment_handler.declaration()],
            },
            "messages": generate_messages(
                session.buyer,
                physical,
                session.selected_fulfillment_id,
                session.shipping_address,
                discount_applied=bool(session.discount_code),
            ),
            "links": generate_links(session.id, self.base_url),
            "expiresAt": stored["expiresAt"],
            "createdAt": stored["createdAt"],
            "updatedAt": stored["updatedAt"],
        }
        if session.buyer:
            response["buyer"] = session.buyer.to_dict()
        if session.discount_code:
            response["discountCode"] = session.discount_code
        if session.payment_transaction_id:
            response["payment"]["status"] = "authorized"
            response["payment"]["transactionId"] = session.payment_transaction_id
        if session.order_id:
            response["orderId"] = session.order_id
        if physical:
            fulfillment: Dict[str, Any] = {
                "options": [o.to_dict() for o in await self._fulfillment_options(session)],
            }
            if session.selected_fulfillment_id:
                fulfillment["selectedId"] = session.selected_fulfillment_id
            if session.shipping_address:
                fulfillment["address"] = session.shipping_address.to_dict()
            response["fulfillment"] = fulfillment
        return response
