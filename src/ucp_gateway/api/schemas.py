"""Request bodies shared by the HTTP routers (camelCase on the wire)."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..checkout.models import Address, Buyer


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AddressBody(WireModel):
    line1: str = Field(..., min_length=1, max_length=200)
    line2: Optional[str] = Field(None, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: str = Field(..., alias="postalCode", min_length=1, max_length=20)
    country: str = Field(..., min_length=2, max_length=2, description="ISO 3166-1 alpha-2")

    def to_domain(self) -> Address:
        return Address(
            line1=self.line1,
            line2=self.line2,
            city=self.city,
            state=self.state,
            postal_code=self.postal_code,
            country=self.country.upper(),
        )


class BuyerBody(WireModel):
    email: Optional[str] = Field(None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=254)
    first_name: Optional[str] = Field(None, alias="firstName", max_length=100)
    last_name: Optional[str] = Field(None, alias="lastName", max_length=100)
    phone: Optional[str] = Field(None, max_length=30)

    def to_domain(self) -> Buyer:
        return Buyer(
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            phone=self.phone,
        )


class BusinessIdentityBody(WireModel):
    type: str = "wix_merchant_id"
    value: str = Field(..., min_length=1)


class BindingBody(WireModel):
    checkout_id: str = Field(..., alias="checkoutId", min_length=1)
    business_identity: BusinessIdentityBody = Field(..., alias="businessIdentity")
