"""Payment handler configuration and card network detection."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Pattern, Tuple


class CardNetwork(str, Enum):
    VISA = "VISA"
    MASTERCARD = "MASTERCARD"
    AMEX = "AMEX"
    DISCOVER = "DISCOVER"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "creditCard"
    GOOGLE_PAY = "googlePay"
    APPLE_PAY = "applePay"


class TokenizationType(str, Enum):
    """PAYMENT_GATEWAY hands out network tokens; DIRECT hands out the PAN."""

    PAYMENT_GATEWAY = "PAYMENT_GATEWAY"
    DIRECT = "DIRECT"


CARD_NETWORK_NAMES: Dict[CardNetwork, str] = {
    CardNetwork.VISA: "Visa",
    CardNetwork.MASTERCARD: "Mastercard",
    CardNetwork.AMEX: "American Express",
    CardNetwork.DISCOVER: "Discover",
}

CARD_BIN_PATTERNS: Tuple[Tuple[CardNetwork, Pattern[str]], ...] = (
    (CardNetwork.VISA, re.compile(r"^4")),
    (CardNetwork.MASTERCARD, re.compile(r"^5[1-5]")),
    (CardNetwork.MASTERCARD, re.compile(r"^2[2-7]")),
    (CardNetwork.AMEX, re.compile(r"^3[47]")),
    (CardNetwork.DISCOVER, re.compile(r"^6(?:011|5)")),
)


@dataclass(slots=True, frozen=True)
class CardBrandInfo:
    brand: CardNetwork
    brand_name: str


def detect_card_brand(pan: str) -> Optional[CardBrandInfo]:
    digits = re.sub(r"\D", "", pan or "")
    for network, pattern in CARD_BIN_PATTERNS:
        if pattern.match(digits):
            return CardBrandInfo(brand=network, brand_name=CARD_NETWORK_NAMES[network])
    return None


def luhn_valid(pan: str) -> bool:
    digits = [int(d) for d in re.sub(r"\D", "", pan or "")]
    if not digits:
        return False
    checksum = 0
    for index, digit in enumerate(reversed(digits)):
        if index % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        checksum += digit
    return checksum % 10 == 0


@dataclass(slots=True)
class PaymentHandlerConfig:
    """Configuration published in the handler declaration."""

    merchant_id: str
    environment: str = "TEST"
    supported_card_networks: List[CardNetwork] = field(default_factory=lambda: list(CardNetwork))
    supported_payment_methods: List[PaymentMethod] = field(default_factory=lambda: list(PaymentMethod))
    supported_currencies: List[str] = field(default_factory=lambda: ["USD", "EUR", "GBP", "ILS"])
    three_ds_enabled: bool = True
    recurring_enabled: bool = False
    tokenization_type: TokenizationType = TokenizationType.PAYMENT_GATEWAY
    gateway_merchant_id: Optional[str] = None

    @classmethod
    def from_settings(cls, settings) -> "PaymentHandlerConfig":
        return cls(
            merchant_id=settings.merchant_id,
            environment=settings.payment_environment,
            supported_currencies=list(settings.supported_currencies),
            three_ds_enabled=settings.three_ds_enabled,
            recurring_enabled=settings.recurring_enabled,
            tokenization_type=TokenizationType(settings.tokenization_type),
            gateway_merchant_id=settings.merchant_id,
        )

    def supports_network(self, network: CardNetwork) -> bool:
        return network in self.supported_card_networks

    def supports_method(self, method: PaymentMethod) -> bool:
        return method in self.supported_payment_methods

    def supports_currency(self, currency: str) -> bool:
        return currency.upper() in self.supported_currencies

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "environment": self.environment,
            "supportedCardNetworks": [n.value for n in self.supported_card_networks],
            "supportedPaymentMethods": [m.value for m in self.supported_payment_methods],
            "supportedCurrencies": list(self.supported_currencies),
            "threeDSEnabled": self.three_ds_enabled,
            "recurringEnabled": self.recurring_enabled,
            "tokenizationType": self.tokenization_type.value,
        }
        if self.gateway_merchant_id:
            result["gatewayMerchantId"] = self.gateway_merchant_id
        return result
