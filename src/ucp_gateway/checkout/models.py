"""Checkout domain models.

Wire and storage representation is camelCase JSON, matching the UCP
checkout schema. Monetary amounts are integers in minor units.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .state_machine import CheckoutStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def from_iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


@dataclass(slots=True)
class Address:
    line1: str
    city: str
    postal_code: str
    country: str
    line2: Optional[str] = None
    state: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "line1": self.line1,
            "line2": self.line2,
            "city": self.city,
            "state": self.state,
            "postalCode": self.postal_code,
            "country": self.country,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Address":
        return cls(
            line1=data["line1"],
            line2=data.get("line2"),
            city=data["city"],
            state=data.get("state"),
            postal_code=data["postalCode"],
            country=data["country"],
        )


@dataclass(slots=True)
class Buyer:
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None

    def merged(self, other: "Buyer") -> "Buyer":
        """Overlay the non-empty fields of other onto this buyer."""
        return Buyer(
            email=other.email or self.email,
            first_name=other.first_name or self.first_name,
            last_name=other.last_name or self.last_name,
            phone=other.phone or self.phone,
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "phone": self.phone,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Buyer":
        return cls(
            email=data.get("email"),
            first_name=data.get("firstName"),
            last_name=data.get("lastName"),
            phone=data.get("phone"),
        )


@dataclass(slots=True)
class ItemDetails:
    id: str
    title: str
    price: int
    type: str = "physical"
    image_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "title": self.title,
            "price": self.price,
            "type": self.type,
            "imageUrl": self.image_url,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ItemDetails":
        return cls(
            id=data["id"],
            title=data["title"],
            price=int(data.get("price", 0)),
            type=data.get("type") or "physical",
            image_url=data.get("imageUrl"),
        )


@dataclass(slots=True)
class LineItem:
    id: str
    item: ItemDetails
    quantity: int
    total_price: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "item": self.item.to_dict(),
            "quantity": self.quantity,
            "totalPrice": self.total_price,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LineItem":
        return cls(
            id=data["id"],
            item=ItemDetails.from_dict(data["item"]),
            quantity=int(data["quantity"]),
            total_price=int(data.get("totalPrice", 0)),
        )


@dataclass(slots=True)
class CatalogReference:
    """Reference to a merchant catalog item in a create request."""

    catalog_item_id: str
    app_id: str
    quantity: int
    variant_id: Optional[str] = None


@dataclass(slots=True)
class FulfillmentOption:
    id: str
    title: str
    price: int
    type: str = "shipping"
    description: str = ""
    min_days: Optional[int] = None
    max_days: Optional[int] = None
    carrier: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "price": self.price,
        }
        if self.min_days is not None and self.max_days is not None:
            result["estimatedDelivery"] = {"minDays": self.min_days, "maxDays": self.max_days}
        if self.carrier:
            result["carrier"] = self.carrier
        return result


@dataclass(slots=True)
class CheckoutSession:
    """A checkout session as persisted in the ephemeral store."""

    id: str
    currency: str
    expires_at: datetime
    status: CheckoutStatus = CheckoutStatus.INCOMPLETE
    line_items: List[LineItem] = field(default_factory=list)
    buyer: Optional[Buyer] = None
    selected_fulfillment_id: Optional[str] = None
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    discount_code: Optional[str] = None
    payment_transaction_id: Optional[str] = None
    order_id: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at < (now or utc_now())

    @property
    def subtotal(self) -> int:
        return sum(item.total_price or item.item.price * item.quantity for item in self.line_items)

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "status": self.status.value,
            "currency": self.currency,
            "lineItems": [item.to_dict() for item in self.line_items],
            "buyer": self.buyer.to_dict() if self.buyer else None,
            "selectedFulfillmentId": self.selected_fulfillment_id,
            "shippingAddress": self.shipping_address.to_dict() if self.shipping_address else None,
            "billingAddress": self.billing_address.to_dict() if self.billing_address else None,
            "discountCode": self.discount_code,
            "paymentTransactionId": self.payment_transaction_id,
            "orderId": self.order_id,
            "metadata": self.metadata or None,
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
            "expiresAt": to_iso(self.expires_at),
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckoutSession":
        return cls(
            id=data["id"],
            status=CheckoutStatus(data["status"]),
            currency=data["currency"],
            line_items=[LineItem.from_dict(item) for item in data.get("lineItems", [])],
            buyer=Buyer.from_dict(data["buyer"]) if data.get("buyer") else None,
            selected_fulfillment_id=data.get("selectedFulfillmentId"),
            shipping_address=Address.from_dict(data["shippingAddress"]) if data.get("shippingAddress") else None,
            billing_address=Address.from_dict(data["billingAddress"]) if data.get("billingAddress") else None,
            discount_code=data.get("discountCode"),
            payment_transaction_id=data.get("paymentTransactionId"),
            order_id=data.get("orderId"),
            metadata=dict(data.get("metadata") or {}),
            created_at=from_iso(data["createdAt"]),
            updated_at=from_iso(data["updatedAt"]),
            expires_at=from_iso(data["expiresAt"]),
        )


class _Unset:
    """Marker for a patch field that was not provided."""

    _instance: Optional["_Unset"] = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(slots=True)
class SessionPatch:
    """Explicit field-by-field update.

    ``UNSET`` means "leave as is"; ``None`` on a clearable field means
    "remove" (for example ``discount_code=None`` drops the discount).
    """

    buyer: Any = UNSET
    shipping_address: Any = UNSET
    billing_address: Any = UNSET
    selected_fulfillment_id: Any = UNSET
    discount_code: Any = UNSET
    metadata: Any = UNSET

    def provided(self) -> List[str]:
        return [f.name for f in fields(self) if getattr(self, f.name) is not UNSET]

    def is_empty(self) -> bool:
        return not self.provided()
