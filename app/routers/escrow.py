"""Escrow transaction endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.middleware import AuthenticatedUser, get_current_user
from app.auth.rate_limit import check_rate_limit
from app.database import get_db
from app.errors import Unauthorized
from app.models.escrow import EscrowStatus, EscrowTransaction
from app.schemas.escrow import (
    EscrowCreateRequest,
    EscrowCreateResponse,
    EscrowTransactionResponse,
    HistoryEntryResponse,
    RefundRequest,
    RefundResponse,
    ReleaseRequest,
    TransactionDetailResponse,
    TransitionResponse,
)
from app.services.escrow import EscrowTracker
from app.services.gateway import PaymentGateway, get_gateway

router = APIRouter(
    prefix="/escrow/transactions",
    tags=["escrow"],
    dependencies=[Depends(check_rate_limit)],
)


def get_tracker(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
) -> EscrowTracker:
    return EscrowTracker(db, gateway)


def _assert_payer_or_admin(auth: AuthenticatedUser, transaction: EscrowTransaction) -> None:
    if auth.user_id != transaction.payer_id and not auth.is_admin:
        raise Unauthorized("Only the payer or an administrator can do this")


def _assert_party_or_admin(auth: AuthenticatedUser, transaction: EscrowTransaction) -> None:
    if auth.user_id not in (transaction.payer_id, transaction.payee_id) and not auth.is_admin:
        raise Unauthorized("Access denied")


@router.post("", response_model=EscrowCreateResponse, status_code=201)
async def create_transaction(
    data: EscrowCreateRequest,
    auth: AuthenticatedUser = Depends(get_current_user),
    tracker: EscrowTracker = Depends(get_tracker),
) -> EscrowCreateResponse:
    """Payer opens an escrow transaction. Returns the client secret to collect payment."""
    created = await tracker.create(
        payer_id=auth.user_id,
        payee_id=data.payee_id,
        amount=data.amount,
        currency=data.currency,
        job_posting_id=data.job_posting_id,
        booking_id=data.booking_id,
        description=data.description,
    )
    transaction = created.transaction
    return EscrowCreateResponse(
        transaction_id=transaction.id,
        client_secret=created.client_secret,
        amount=transaction.amount,
        commission=transaction.platform_commission_amount,
        payout=transaction.payee_payout_amount,
    )


@router.get("", response_model=list[EscrowTransactionResponse])
async def list_transactions(
    auth: AuthenticatedUser = Depends(get_current_user),
    tracker: EscrowTracker = Depends(get_tracker),
) -> list[EscrowTransactionResponse]:
    """Transactions where the caller is the payer or the payee."""
    transactions = await tracker.list_for_party(auth.user_id)
    return [EscrowTransactionResponse.model_validate(t) for t in transactions]


@router.get("/{transaction_id}", response_model=TransactionDetailResponse)
async def get_transaction(
    transaction_id: int,
    auth: AuthenticatedUser = Depends(get_current_user),
    tracker: EscrowTracker = Depends(get_tracker),
) -> TransactionDetailResponse:
    """Transaction plus its full history. Parties and administrators only."""
    transaction, history = await tracker.get_with_history(transaction_id)
    _assert_party_or_admin(auth, transaction)
    return TransactionDetailResponse(
        transaction=EscrowTransactionResponse.model_validate(transaction),
        history=[HistoryEntryResponse.model_validate(h) for h in history],
    )


@router.post("/{transaction_id}/confirm", response_model=TransitionResponse)
async def confirm_transaction(
    transaction_id: int,
    auth: AuthenticatedUser = Depends(get_current_user),
    tracker: EscrowTracker = Depends(get_tracker),
) -> TransitionResponse:
    """Check payment capture with the gateway and move funds into escrow."""
    transaction = await tracker.get(transaction_id)
    _assert_payer_or_admin(auth, transaction)
    transaction = await tracker.confirm(transaction_id, confirmed_by=auth.user_id)
    return TransitionResponse(
        success=transaction.status == EscrowStatus.IN_ESCROW,
        status=transaction.status.value,
    )


@router.post("/{transaction_id}/release", response_model=TransitionResponse)
async def release_transaction(
    transaction_id: int,
    data: ReleaseRequest | None = None,
    auth: AuthenticatedUser = Depends(get_current_user),
    tracker: EscrowTracker = Depends(get_tracker),
) -> TransitionResponse:
    """Release escrowed funds to the payee. Payer or administrator only."""
    transaction = await tracker.get(transaction_id)
    _assert_payer_or_admin(auth, transaction)
    reason = data.reason if data else None
    transaction = await tracker.release(transaction_id, released_by=auth.user_id, reason=reason)
    return TransitionResponse(success=True, status=transaction.status.value)


@router.post("/{transaction_id}/refund", response_model=RefundResponse)
async def refund_transaction(
    transaction_id: int,
    data: RefundRequest,
    auth: AuthenticatedUser = Depends(get_current_user),
    tracker: EscrowTracker = Depends(get_tracker),
) -> RefundResponse:
    """Refund the payer. Either party or an administrator may request it."""
    transaction = await tracker.get(transaction_id)
    _assert_party_or_admin(auth, transaction)
    result = await tracker.refund(transaction_id, requested_by=auth.user_id, reason=data.reason)
    return RefundResponse(success=True, refund_reference=result.refund_reference)
