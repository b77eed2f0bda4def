"""UCP checkout capability endpoints."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import Field

from ...checkout.models import CatalogReference, SessionPatch
from ...checkout.sessions import is_valid_checkout_id
from ...exceptions import UCPErrorCode, UCPException, field_error
from ..dependencies import GatewayContainer, get_container
from ..schemas import AddressBody, BuyerBody, WireModel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout-sessions", tags=["checkout"])


# Request Models

class CatalogOptionsBody(WireModel):
    variant_id: Optional[str] = Field(None, alias="variantId")


class CatalogReferenceBody(WireModel):
    catalog_item_id: str = Field(..., alias="catalogItemId", min_length=1)
    app_id: str = Field(..., alias="appId", min_length=1)
    options: Optional[CatalogOptionsBody] = None


class LineItemBody(WireModel):
    catalog_reference: CatalogReferenceBody = Field(..., alias="catalogReference")
    quantity: int = Field(..., ge=1, le=999)


class CreateCheckoutRequest(WireModel):
    currency: str = Field(..., min_length=3, max_length=3, description="ISO 4217 code")
    buyer: Optional[BuyerBody] = None
    line_items: List[LineItemBody] = Field(..., alias="lineItems", min_length=1)
    shipping_address: Optional[AddressBody] = Field(None, alias="shippingAddress")
    billing_address: Optional[AddressBody] = Field(None, alias="billingAddress")
    discount_code: Optional[str] = Field(None, alias="discountCode", max_length=50)
    metadata: Optional[Dict[str, str]] = None


class UpdateCheckoutRequest(WireModel):
    """Only fields present in the body are applied; an explicit null clears the field."""

    buyer: Optional[BuyerBody] = None
    shipping_address: Optional[AddressBody] = Field(None, alias="shippingAddress")
    billing_address: Optional[AddressBody] = Field(None, alias="billingAddress")
    selected_fulfillment: Optional[str] = Field(None, alias="selectedFulfillment")
    discount_code: Optional[str] = Field(None, alias="discountCode", max_length=50)
    metadata: Optional[Dict[str, str]] = None

    def to_patch(self) -> SessionPatch:
        provided = self.model_fields_set
        patch = SessionPatch()
        if "buyer" in provided:
            patch.buyer = self.buyer.to_domain() if self.buyer is not None else None
        if "shipping_address" in provided:
            patch.shipping_address = self.shipping_address.to_domain() if self.shipping_address else None
        if "billing_address" in provided:
            patch.billing_address = self.billing_address.to_domain() if self.billing_address else None
        if "selected_fulfillment" in provided:
            patch.selected_fulfillment_id = self.selected_fulfillment
        if "discount_code" in provided:
            patch.discount_code = self.discount_code or None
        if "metadata" in provided and self.metadata is not None:
            patch.metadata = self.metadata
        return patch


class PaymentCredentialBody(WireModel):
    type: Literal["token"] = "token"
    token: str = Field(..., min_length=1)


class PaymentDataBody(WireModel):
    id: str = Field(..., min_length=1)
    handler_id: str = Field(..., alias="handlerId", min_length=1)
    credential: PaymentCredentialBody
    billing_address: Optional[AddressBody] = Field(None, alias="billingAddress")


class CompleteCheckoutRequest(WireModel):
    payment_data: PaymentDataBody = Field(..., alias="paymentData")
    idempotency_key: str = Field(..., alias="idempotencyKey", min_length=1, max_length=255)


def _require_valid_id(checkout_id: str) -> None:
    if not is_valid_checkout_id(checkout_id):
        raise UCPException(
            UCPErrorCode.INVALID_REQUEST,
            "Malformed checkout ID",
            details=[field_error("checkoutId", "INVALID_FORMAT", "Checkout ID must match chk_<32 hex chars>")],
        )


# Routes

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_checkout(
    request: CreateCheckoutRequest,
    container: GatewayContainer = Depends(get_container),
) -> Dict[str, Any]:
    """Create a checkout session from catalog references."""
    references = [
        CatalogReference(
            catalog_item_id=item.catalog_reference.catalog_item_id,
            app_id=item.catalog_reference.app_id,
            quantity=item.quantity,
            variant_id=item.catalog_reference.options.variant_id if item.catalog_reference.options else None,
        )
        for item in request.line_items
    ]
    return await container.checkout.create_checkout(
        currency=request.currency.upper(),
        items=references,
        buyer=request.buyer.to_domain() if request.buyer else None,
        shipping_address=request.shipping_address.to_domain() if request.shipping_address else None,
        billing_address=request.billing_address.to_domain() if request.billing_address else None,
        discount_code=request.discount_code,
        metadata=request.metadata,
    )


@router.get("/{checkout_id}")
async def get_checkout(
    checkout_id: str,
    container: GatewayContainer = Depends(get_container),
) -> Dict[str, Any]:
    _require_valid_id(checkout_id)
    return await container.checkout.get_checkout(checkout_id)


@router.patch("/{checkout_id}")
async def update_checkout(
    checkout_id: str,
    request: UpdateCheckoutRequest,
    container: GatewayContainer = Depends(get_container),
) -> Dict[str, Any]:
    _require_valid_id(checkout_id)
    return await container.checkout.update_checkout(checkout_id, request.to_patch())


@router.post("/{checkout_id}/complete")
async def complete_checkout(
    checkout_id: str,
    request: CompleteCheckoutRequest,
    container: GatewayContainer = Depends(get_container),
) -> Dict[str, Any]:
    """Redeem the payment token and place the order (idempotent per key)."""
    _require_valid_id(checkout_id)
    logger.info(f"Completing checkout {checkout_id} handler={request.payment_data.handler_id}")
    return await container.checkout.complete_checkout(
        checkout_id,
        token=request.payment_data.credential.token,
        idempotency_key=request.idempotency_key,
        handler_id=request.payment_data.handler_id,
    )


@router.delete("/{checkout_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_checkout(
    checkout_id: str,
    container: GatewayContainer = Depends(get_container),
) -> Response:
    _require_valid_id(checkout_id)
    await container.checkout.cancel_checkout(checkout_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{checkout_id}/fulfillment-options")
async def get_fulfillment_options(
    checkout_id: str,
    container: GatewayContainer = Depends(get_container),
) -> Dict[str, Any]:
    _require_valid_id(checkout_id)
    options = await container.checkout.get_fulfillment_options(checkout_id)
    return {"options": [o.to_dict() for o in options]}
