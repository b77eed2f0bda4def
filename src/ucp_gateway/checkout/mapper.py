"""Response decorations for checkout sessions: UCP header, messages, links."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from ..constants import UCPProtocol
from .models import Address, Buyer


class MessageCode(str, Enum):
    MISSING_EMAIL = "MISSING_EMAIL"
    MISSING_SHIPPING = "MISSING_SHIPPING"
    MISSING_ADDRESS = "MISSING_ADDRESS"
    INVALID_DISCOUNT = "INVALID_DISCOUNT"
    DISCOUNT_APPLIED = "DISCOUNT_APPLIED"
    PAYMENT_FAILED = "PAYMENT_FAILED"


def build_ucp_header(version: str = UCPProtocol.VERSION) -> Dict[str, Any]:
    return {
        "version": version,
        "services": {
            UCPProtocol.SHOPPING_SERVICE: {
                "version": version,
                "spec": UCPProtocol.CHECKOUT_SPEC_URL,
            },
        },
    }


def generate_messages(
    buyer: Optional[Buyer],
    has_physical_items: bool,
    selected_fulfillment_id: Optional[str],
    shipping_address: Optional[Address],
    discount_applied: bool = False,
) -> List[Dict[str, Any]]:
    """Warnings for information still missing, plus informational notes."""
    messages: List[Dict[str, Any]] = []

    if not buyer or not buyer.email:
        messages.append({
            "type": "warning",
            "code": MessageCode.MISSING_EMAIL.value,
            "message": "Email address is required to complete checkout",
            "field": "buyer.email",
        })

    if has_physical_items and not selected_fulfillment_id:
        messages.append({
            "type": "warning",
            "code": MessageCode.MISSING_SHIPPING.value,
            "message": "Please select a shipping method",
            "field": "fulfillment.selectedId",
        })

    if has_physical_items and not shipping_address:
        messages.append({
            "type": "warning",
            "code": MessageCode.MISSING_ADDRESS.value,
            "message": "Shipping address is required",
            "field": "shippingAddress",
        })

    if discount_applied:
        messages.append({
            "type": "info",
            "code": MessageCode.DISCOUNT_APPLIED.value,
            "message": "Discount code applied successfully",
        })

    return messages


def generate_links(checkout_id: str, base_url: str) -> List[Dict[str, str]]:
    href = f"{base_url}/checkout-sessions/{checkout_id}"
    return [
        {"rel": "self", "href": href, "method": "GET"},
        {"rel": "update", "href": href, "method": "PATCH"},
        {"rel": "complete", "href": f"{href}/complete", "method": "POST"},
        {"rel": "cancel", "href": href, "method": "DELETE"},
    ]
