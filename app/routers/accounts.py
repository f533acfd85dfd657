"""Payout account and saved payment method endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.middleware import AuthenticatedUser, get_current_user
from app.auth.rate_limit import check_rate_limit
from app.database import get_db
from app.errors import PartyNotFound
from app.schemas.account import (
    OnboardingLinkResponse,
    PaymentMethodCreateRequest,
    PaymentMethodResponse,
    PayoutAccountCreateRequest,
    PayoutAccountResponse,
    PayoutAccountStatusResponse,
)
from app.services import payment_methods as payment_method_service
from app.services import payout_accounts as payout_service
from app.services.gateway import PaymentGateway, get_gateway

router = APIRouter(prefix="/escrow", tags=["accounts"], dependencies=[Depends(check_rate_limit)])


@router.post("/accounts", response_model=PayoutAccountResponse, status_code=201)
async def create_payout_account(
    data: PayoutAccountCreateRequest | None = None,
    auth: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
) -> PayoutAccountResponse:
    """Provision a payout destination for the caller and return the onboarding link."""
    account = await payout_service.provision_payout_account(
        db, gateway, auth.user, country=data.country if data else None,
    )
    return PayoutAccountResponse(account_id=account.account_id, onboarding_url=account.onboarding_url)


@router.get("/accounts/status", response_model=PayoutAccountStatusResponse)
async def get_payout_account_status(
    auth: AuthenticatedUser = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_gateway),
) -> PayoutAccountStatusResponse:
    """Whether the caller's payout destination exists and has finished onboarding."""
    status = await payout_service.payout_account_status(gateway, auth.user)
    return PayoutAccountStatusResponse(**status)


@router.post("/accounts/onboarding-link", response_model=OnboardingLinkResponse)
async def refresh_onboarding_link(
    auth: AuthenticatedUser = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_gateway),
) -> OnboardingLinkResponse:
    """New onboarding link for an existing payout destination (links expire)."""
    url = await payout_service.refresh_onboarding_link(gateway, auth.user)
    if url is None:
        raise PartyNotFound("No payout account to onboard")
    return OnboardingLinkResponse(onboarding_url=url)


@router.get("/payment-methods", response_model=list[PaymentMethodResponse])
async def list_payment_methods(
    auth: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[PaymentMethodResponse]:
    methods = await payment_method_service.list_payment_methods(db, auth.user_id)
    return [PaymentMethodResponse.model_validate(m) for m in methods]


@router.post("/payment-methods", response_model=PaymentMethodResponse, status_code=201)
async def save_payment_method(
    data: PaymentMethodCreateRequest,
    auth: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
) -> PaymentMethodResponse:
    method = await payment_method_service.save_payment_method(
        db, gateway, auth.user_id, data.payment_method_id,
    )
    return PaymentMethodResponse.model_validate(method)
