"""Pydantic v2 schemas for escrow endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.config import settings


class EscrowCreateRequest(BaseModel):
    """Payer opens an escrow transaction toward a payee.

    ``amount`` is in minor currency units (10000 = $100.00). The payer is the
    authenticated caller.
    """
    payee_id: int = Field(..., gt=0)
    amount: int = Field(..., gt=0)
    currency: str = Field(default_factory=lambda: settings.escrow_default_currency)
    job_posting_id: int | None = Field(None, gt=0)
    booking_id: int | None = Field(None, gt=0)
    description: str | None = Field(None, max_length=2000)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: int) -> int:
        if v > settings.escrow_max_amount:
            raise ValueError(f"Maximum escrow amount is {settings.escrow_max_amount}")
        return v

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        code = v.strip().upper()
        if code not in settings.escrow_supported_currencies:
            raise ValueError(
                f"Unsupported currency {v!r}; expected one of "
                f"{', '.join(settings.escrow_supported_currencies)}"
            )
        return code


class EscrowCreateResponse(BaseModel):
    transaction_id: int
    client_secret: str | None
    amount: int
    commission: int
    payout: int


class ReleaseRequest(BaseModel):
    reason: str | None = Field(None, max_length=2000)


class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class TransitionResponse(BaseModel):
    success: bool
    status: str


class RefundResponse(BaseModel):
    success: bool
    refund_reference: str


class EscrowTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    payer_id: int
    payee_id: int
    job_posting_id: int | None
    booking_id: int | None
    amount: int
    currency: str
    platform_commission_rate: int
    platform_commission_amount: int
    payee_payout_amount: int
    payment_intent_id: str | None
    transfer_group_id: str | None
    status: str
    escrow_release_date: datetime
    service_completion_confirmed: bool
    service_completion_date: datetime | None
    description: str | None
    dispute_reason: str | None
    created_at: datetime
    updated_at: datetime

    @field_validator("status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> str:
        return v.value if hasattr(v, "value") else str(v)


class HistoryEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    previous_status: str | None
    new_status: str
    action_by: int | None
    action_reason: str | None
    created_at: datetime

    @field_validator("action", "previous_status", "new_status", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> str | None:
        if v is None:
            return None
        return v.value if hasattr(v, "value") else str(v)


class TransactionDetailResponse(BaseModel):
    transaction: EscrowTransactionResponse
    history: list[HistoryEntryResponse]
