"""
Merchant backend interface.

The gateway never owns catalog, shipping or order data; it asks the
merchant backend. ``DemoMerchantBackend`` answers from fixed data so the
gateway runs end to end in dev and sandbox.
"""
from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..constants import IdPrefix
from .models import Address, CatalogReference, CheckoutSession, FulfillmentOption, ItemDetails, LineItem

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OrderResult:
    order_id: str
    transaction_id: str


DEFAULT_SHIPPING_OPTIONS: List[FulfillmentOption] = [
    FulfillmentOption(
        id="standard_shipping",
        title="Standard Shipping",
        description="5-7 business days",
        price=599,
        min_days=5,
        max_days=7,
        carrier="USPS",
    ),
    FulfillmentOption(
        id="express_shipping",
        title="Express Shipping",
        description="2-3 business days",
        price=1299,
        min_days=2,
        max_days=3,
        carrier="FedEx",
    ),
]


class MerchantBackend(ABC):
    """Catalog, shipping and order operations of the merchant platform."""

    @abstractmethod
    async def resolve_line_items(self, references: List[CatalogReference]) -> List[LineItem]:
        """
        Price catalog references into line items.

        Args:
            references: Items requested by the agent

        Returns:
            Line items with item details and total prices filled in
        """

    @abstractmethod
    async def get_shipping_rates(
        self,
        checkout_id: str,
        shipping_address: Optional[Address] = None,
    ) -> List[FulfillmentOption]:
        """Shipping options available for a checkout."""

    @abstractmethod
    async def create_order(
        self,
        session: CheckoutSession,
        credential: Dict[str, Any],
    ) -> OrderResult:
        """
        Charge the credential and create the order.

        Args:
            session: Checkout being completed
            credential: Detokenized payment credential

        Returns:
            OrderResult with the merchant order and transaction IDs
        """


# (title, unit price in minor units, item type)
DEMO_CATALOG: Dict[str, tuple[str, int, str]] = {
    "prod_tshirt": ("Classic Cotton T-Shirt", 2500, "physical"),
    "prod_mug": ("Ceramic Coffee Mug", 1500, "physical"),
    "prod_ebook": ("Field Guide eBook", 999, "digital"),
    "prod_giftcard": ("Digital Gift Card", 5000, "digital"),
}
DEMO_DEFAULT_PRICE = 2000


class DemoMerchantBackend(MerchantBackend):
    """Fixed catalog and shipping rates; orders are only logged."""

    def __init__(self, catalog: Optional[Dict[str, tuple[str, int, str]]] = None) -> None:
        self.catalog = catalog if catalog is not None else dict(DEMO_CATALOG)
        self.orders: Dict[str, OrderResult] = {}

    async def resolve_line_items(self, references: List[CatalogReference]) -> List[LineItem]:
        items = []
        for index, ref in enumerate(references):
            title, price, item_type = self.catalog.get(
                ref.catalog_item_id,
                (f"Product {ref.catalog_item_id}", DEMO_DEFAULT_PRICE, "physical"),
            )
            items.append(
                LineItem(
                    id=f"item_{index}",
                    item=ItemDetails(id=ref.catalog_item_id, title=title, price=price, type=item_type),
                    quantity=ref.quantity,
                    total_price=price * ref.quantity,
                )
            )
        return items

    async def get_shipping_rates(
        self,
        checkout_id: str,
        shipping_address: Optional[Address] = None,
    ) -> List[FulfillmentOption]:
        return list(DEFAULT_SHIPPING_OPTIONS)

    async def create_order(
        self,
        session: CheckoutSession,
        credential: Dict[str, Any],
    ) -> OrderResult:
        result = OrderResult(
            order_id=f"{IdPrefix.ORDER}{uuid.uuid4().hex[:16]}",
            transaction_id=f"{IdPrefix.TRANSACTION}{uuid.uuid4().hex[:16]}",
        )
        self.orders[result.order_id] = result
        logger.info(
            f"Demo order {result.order_id} created for checkout {session.id} "
            f"credential_type={credential.get('type')}"
        )
        return result
