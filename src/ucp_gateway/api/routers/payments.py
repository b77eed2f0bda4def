"""Payment handler endpoints (``com.wix.payments``)."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import Field

from ...payments.models import BusinessIdentity, SourceCredential, TokenBinding
from ..dependencies import GatewayContainer, get_container
from ..schemas import BindingBody, WireModel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment-handler", tags=["payment-handler"])


class SourceCredentialBody(WireModel):
    type: str = Field(..., description="card | googlePay | applePay")
    pan: Optional[str] = Field(None, max_length=23)
    expiry_month: Optional[str] = Field(None, alias="expiryMonth", max_length=2)
    expiry_year: Optional[str] = Field(None, alias="expiryYear", max_length=4)
    cvv: Optional[str] = Field(None, max_length=4)
    cardholder_name: Optional[str] = Field(None, alias="cardholderName", max_length=100)
    google_pay_token: Optional[str] = Field(None, alias="googlePayToken")
    apple_pay_token: Optional[str] = Field(None, alias="applePayToken")

    def to_domain(self) -> SourceCredential:
        return SourceCredential(
            type=self.type,
            pan=self.pan,
            expiry_month=self.expiry_month,
            expiry_year=self.expiry_year,
            cvv=self.cvv,
            cardholder_name=self.cardholder_name,
            google_pay_token=self.google_pay_token,
            apple_pay_token=self.apple_pay_token,
        )

    def __repr__(self) -> str:
        return f"SourceCredentialBody(type={self.type!r})"


class TokenizeRequest(WireModel):
    source_credential: SourceCredentialBody = Field(..., alias="sourceCredential")
    binding: BindingBody
    metadata: Optional[Dict[str, str]] = None


class DetokenizeRequest(WireModel):
    token: str = Field(..., min_length=1)
    binding: BindingBody
    delegated_to: Optional[str] = Field(None, alias="delegatedTo")


class InvalidateRequest(WireModel):
    token: str = Field(..., min_length=1)
    checkout_id: str = Field(..., alias="checkoutId", min_length=1)


def _binding(body: BindingBody) -> TokenBinding:
    return TokenBinding(
        checkout_id=body.checkout_id,
        business_identity=BusinessIdentity(
            value=body.business_identity.value,
            type=body.business_identity.type,
        ),
    )


@router.post("/tokenize")
async def tokenize(
    request: TokenizeRequest,
    container: GatewayContainer = Depends(get_container),
) -> Dict[str, Any]:
    """Exchange a raw credential for a single-use, checkout-bound token."""
    result = await container.payment_handler.tokenize(
        request.source_credential.to_domain(),
        _binding(request.binding),
    )
    return result.to_dict()


@router.post("/detokenize")
async def detokenize(
    request: DetokenizeRequest,
    container: GatewayContainer = Depends(get_container),
) -> Dict[str, Any]:
    """Redeem a token exactly once."""
    result = await container.payment_handler.detokenize(
        request.token,
        _binding(request.binding),
        delegated_to=request.delegated_to,
    )
    return result.to_dict()


@router.post("/invalidate")
async def invalidate(
    request: InvalidateRequest,
    container: GatewayContainer = Depends(get_container),
) -> Dict[str, Any]:
    """Drop an outstanding token, e.g. when the agent abandons a checkout."""
    invalidated = await container.payment_handler.invalidate(request.checkout_id, request.token)
    return {"invalidated": invalidated}


@router.get("/info")
async def handler_info(container: GatewayContainer = Depends(get_container)) -> Dict[str, Any]:
    return container.payment_handler.info()
