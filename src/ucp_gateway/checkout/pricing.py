"""
Pricing and totals engine.

All amounts are integers in minor currency units. Percentage math goes
through Decimal with ROUND_HALF_UP so results never depend on binary float
rounding.

Example:
    subtotal 6500, 10% discount, shipping 599, tax 0.08
    -> discount 650, taxable 6449, tax 516, total 6965
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .models import FulfillmentOption, LineItem

CURRENCY_EXPONENTS = {"JPY": 0}


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class TotalType(str, Enum):
    SUBTOTAL = "SUBTOTAL"
    SHIPPING = "SHIPPING"
    DISCOUNT = "DISCOUNT"
    TAX = "TAX"
    TOTAL = "TOTAL"


@dataclass(slots=True, frozen=True)
class Discount:
    code: str
    type: DiscountType
    value: int
    name: str


@dataclass(slots=True, frozen=True)
class TotalsBreakdown:
    subtotal: int
    discount: int
    shipping: int
    tax: int
    total: int

    @property
    def taxable_amount(self) -> int:
        return self.subtotal - self.discount + self.shipping


@dataclass(slots=True, frozen=True)
class Total:
    type: TotalType
    label: str
    amount: int

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "label": self.label, "amount": self.amount}


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_subtotal(line_items: Iterable[LineItem]) -> int:
    return sum(item.total_price or item.item.price * item.quantity for item in line_items)


def calculate_discount(subtotal: int, discount: Optional[Discount]) -> int:
    if discount is None or subtotal <= 0:
        return 0
    if discount.type == DiscountType.PERCENTAGE:
        return round_half_up(Decimal(subtotal) * Decimal(discount.value) / Decimal(100))
    return min(discount.value, subtotal)


def calculate_tax(taxable_amount: int, tax_rate: Decimal | float | str) -> int:
    rate = Decimal(str(tax_rate))
    if rate <= 0 or taxable_amount <= 0:
        return 0
    return round_half_up(Decimal(taxable_amount) * rate)


def calculate_totals(
    line_items: Iterable[LineItem],
    shipping_option: Optional[FulfillmentOption] = None,
    discount: Optional[Discount] = None,
    tax_rate: Decimal | float | str = 0,
) -> TotalsBreakdown:
    subtotal = calculate_subtotal(line_items)
    discount_amount = calculate_discount(subtotal, discount)
    shipping = shipping_option.price if shipping_option else 0
    tax = calculate_tax(subtotal - discount_amount + shipping, tax_rate)
    total = max(0, subtotal - discount_amount + shipping + tax)
    return TotalsBreakdown(
        subtotal=subtotal,
        discount=discount_amount,
        shipping=shipping,
        tax=tax,
        total=total,
    )


def breakdown_to_totals(
    breakdown: TotalsBreakdown,
    shipping_label: str = "Shipping",
    discount_label: str = "Discount",
    tax_label: str = "Tax",
) -> List[Total]:
    """Ordered typed totals; zero shipping/discount/tax lines are omitted."""
    totals = [Total(TotalType.SUBTOTAL, "Subtotal", breakdown.subtotal)]
    if breakdown.shipping > 0:
        totals.append(Total(TotalType.SHIPPING, shipping_label, breakdown.shipping))
    if breakdown.discount > 0:
        totals.append(Total(TotalType.DISCOUNT, discount_label, -breakdown.discount))
    if breakdown.tax > 0:
        totals.append(Total(TotalType.TAX, tax_label, breakdown.tax))
    totals.append(Total(TotalType.TOTAL, "Total", breakdown.total))
    return totals


def recalculate_totals(
    line_items: Iterable[LineItem],
    fulfillment: Optional[FulfillmentOption] = None,
    discount: Optional[Discount] = None,
    tax_rate: Decimal | float | str = 0,
) -> List[Total]:
    breakdown = calculate_totals(line_items, fulfillment, discount, tax_rate)
    return breakdown_to_totals(
        breakdown,
        shipping_label=fulfillment.title if fulfillment else "Shipping",
        discount_label=discount.name if discount else "Discount",
    )


def get_total_by_type(totals: Iterable[Total], total_type: TotalType) -> Optional[Total]:
    for total in totals:
        if total.type == total_type:
            return total
    return None


def get_grand_total(totals: Iterable[Total]) -> int:
    total = get_total_by_type(totals, TotalType.TOTAL)
    return total.amount if total else 0


def format_amount(amount: int, currency: str = "USD") -> str:
    """Render minor units as a decimal string, e.g. 6965 USD -> ``69.65 USD``."""
    exponent = CURRENCY_EXPONENTS.get(currency.upper(), 2)
    value = Decimal(amount).scaleb(-exponent)
    return f"{value:.{exponent}f} {currency.upper()}"


# Demo discount catalog until a coupons backend is wired in.
_DEMO_DISCOUNTS: Dict[str, Discount] = {
    "TEST10": Discount(code="TEST10", type=DiscountType.PERCENTAGE, value=10, name="10% Off"),
    "FLAT20": Discount(code="FLAT20", type=DiscountType.FIXED, value=2000, name="$20 Off"),
}


def validate_discount_code(code: str, subtotal: int = 0) -> Optional[Discount]:
    """Return the discount for code, or None if unknown."""
    if not code:
        return None
    return _DEMO_DISCOUNTS.get(code.strip().upper())
