"""Credit and payment schemas."""

from typing import Dict, List, Optional

from pydantic import Field, field_validator

from ..domain.results import PackageOffer
from ._strict_base import StrictModel, StrictRequestModel


class CreditPackageResponse(StrictModel):
    code: str
    name: str
    sessions_included: int
    price_minor: int = Field(description="Price in minor currency units")
    currency: str
    description: Optional[str] = None

    @classmethod
    def from_offer(cls, offer: PackageOffer) -> "CreditPackageResponse":
        return cls(**offer.to_dict())


class CreditBalanceResponse(StrictModel):
    patient_id: str
    available: int
    credit_ids: List[str] = Field(default_factory=list)
    summary: Dict[str, int] = Field(
        default_factory=dict, description="Credit counts per status plus total_granted"
    )


class CheckoutRequest(StrictRequestModel):
    package_code: str = Field(..., min_length=1, max_length=50)

    @field_validator("package_code")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


class CheckoutResponse(StrictModel):
    reference: str
    provider: str
    checkout_url: str


class PaymentCallbackResponse(StrictModel):
    event_id: str
    status: str
    credits_granted: int = 0


class CreditGrantRequest(StrictRequestModel):
    """Admin or partner grant; ``package_reference`` makes the grant idempotent."""

    patient_id: str = Field(..., min_length=1)
    count: int = Field(..., gt=0, le=100)
    package_reference: str = Field(..., min_length=1, max_length=100)


class CreditGrantResponse(StrictModel):
    patient_id: str
    package_reference: str
    credit_ids: List[str] = Field(default_factory=list)


class CreditRefundResponse(StrictModel):
    credit_id: str
    status: str
    refunded: bool
