"""Pydantic v2 schemas for payout accounts and saved payment methods."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PayoutAccountCreateRequest(BaseModel):
    country: str | None = Field(None, min_length=2, max_length=2)


class PayoutAccountResponse(BaseModel):
    account_id: str
    onboarding_url: str


class OnboardingLinkResponse(BaseModel):
    onboarding_url: str


class PayoutAccountStatusResponse(BaseModel):
    has_account: bool
    is_complete: bool
    account_id: str | None
    payouts_enabled: bool


class PaymentMethodCreateRequest(BaseModel):
    payment_method_id: str = Field(..., min_length=3, max_length=255)


class PaymentMethodResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    gateway_payment_method_id: str
    type: str
    brand: str | None
    last4: str | None
    expiry_month: int | None
    expiry_year: int | None
    is_default: bool
    created_at: datetime
