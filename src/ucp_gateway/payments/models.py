"""Payment token models."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from ..checkout.models import from_iso, to_iso, utc_now

BUSINESS_IDENTITY_TYPE = "wix_merchant_id"


@dataclass(slots=True, frozen=True)
class BusinessIdentity:
    value: str
    type: str = BUSINESS_IDENTITY_TYPE

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "value": self.value}


@dataclass(slots=True, frozen=True)
class TokenBinding:
    """Ties a token to one checkout at one merchant."""

    checkout_id: str
    business_identity: BusinessIdentity

    def to_dict(self) -> Dict[str, Any]:
        return {"checkoutId": self.checkout_id, "businessIdentity": self.business_identity.to_dict()}


@dataclass(slots=True)
class SourceCredential:
    """Raw credential supplied at tokenization. Never persisted."""

    type: str
    pan: Optional[str] = None
    expiry_month: Optional[str] = None
    expiry_year: Optional[str] = None
    cvv: Optional[str] = None
    cardholder_name: Optional[str] = None
    google_pay_token: Optional[str] = None
    apple_pay_token: Optional[str] = None

    def __repr__(self) -> str:
        last4 = self.pan[-4:] if self.pan else None
        return f"SourceCredential(type={self.type!r}, last4={last4!r})"


@dataclass(slots=True)
class PaymentInstrument:
    type: str
    brand: Optional[str] = None
    last_digits: Optional[str] = None
    expiry_month: Optional[str] = None
    expiry_year: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            k: v
            for k, v in {
                "type": self.type,
                "brand": self.brand,
                "lastDigits": self.last_digits,
                "expiryMonth": self.expiry_month,
                "expiryYear": self.expiry_year,
            }.items()
            if v is not None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaymentInstrument":
        return cls(
            type=data["type"],
            brand=data.get("brand"),
            last_digits=data.get("lastDigits"),
            expiry_month=data.get("expiryMonth"),
            expiry_year=data.get("expiryYear"),
        )


@dataclass(slots=True)
class StoredPaymentToken:
    id: str
    provider_token: str
    checkout_id: str
    business_id: str
    instrument: PaymentInstrument
    expires_at: datetime
    created_at: datetime
    credential_type: str
    used: bool = False

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "wixCardToken": self.provider_token,
            "binding": {"checkoutId": self.checkout_id, "businessId": self.business_id},
            "instrument": self.instrument.to_dict(),
            "createdAt": to_iso(self.created_at),
            "expiresAt": to_iso(self.expires_at),
            "credentialType": self.credential_type,
            "used": self.used,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredPaymentToken":
        return cls(
            id=data["id"],
            provider_token=data["wixCardToken"],
            checkout_id=data["binding"]["checkoutId"],
            business_id=data["binding"]["businessId"],
            instrument=PaymentInstrument.from_dict(data["instrument"]),
            created_at=from_iso(data["createdAt"]),
            expires_at=from_iso(data["expiresAt"]),
            credential_type=data.get("credentialType", "network_token"),
            used=bool(data.get("used", False)),
        )


@dataclass(slots=True)
class TokenizeResult:
    token: str
    expires_at: datetime
    instrument: PaymentInstrument

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "expiresAt": to_iso(self.expires_at),
            "instrument": self.instrument.to_dict(),
        }


@dataclass(slots=True)
class DetokenizeResult:
    credential: Dict[str, Any]
    invalidated: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"credential": self.credential, "invalidated": self.invalidated}
