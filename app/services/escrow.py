"""Escrow transaction tracker: create, confirm, release, refund, auto-release.

``EscrowTracker`` is the only writer of ``escrow_transactions.status`` and of
``transaction_history``. Every status change is a conditional UPDATE guarded
by the status the change starts from, followed by exactly one history row, and
both are committed together. Zero rows updated means another request moved the
transaction first, which surfaces as ``InvalidStateTransition``.

Gateway calls happen before anything is written: if the gateway fails, the
transaction stays exactly as it was.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import (
    InvalidEscrowRequest,
    InvalidStateTransition,
    PartyNotFound,
    PayeeNotOnboarded,
    TransactionNotFound,
)
from app.models.escrow import (
    EscrowAction,
    EscrowStatus,
    EscrowTransaction,
    TransactionHistoryEntry,
)
from app.models.user import User
from app.services.commission import compute_split
from app.services.gateway import GatewayPaymentStatus, PaymentGateway

logger = logging.getLogger(__name__)

AUTO_RELEASE_REASON = "auto-released after escrow period"

REFUNDABLE_STATUSES = (EscrowStatus.IN_ESCROW, EscrowStatus.RELEASED)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class CreatedTransaction:
    transaction: EscrowTransaction
    client_secret: str | None


@dataclass
class RefundResult:
    transaction: EscrowTransaction
    refund_reference: str


class EscrowTracker:
    """Drives escrow transactions through their lifecycle.

    pending -> in_escrow -> released -> refunded
       |           |
       |           +------------------> refunded
       +-> payment_failed
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        *,
        commission_rate_bps: int | None = None,
        release_days: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.db = db
        self.gateway = gateway
        self.commission_rate_bps = (
            settings.escrow_commission_rate_bps if commission_rate_bps is None else commission_rate_bps
        )
        self.release_days = settings.escrow_release_days if release_days is None else release_days
        self.clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, transaction_id: int) -> EscrowTransaction:
        result = await self.db.execute(
            select(EscrowTransaction)
            .where(EscrowTransaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        transaction = result.scalar_one_or_none()
        if transaction is None:
            raise TransactionNotFound()
        return transaction

    async def get_with_history(
        self, transaction_id: int
    ) -> tuple[EscrowTransaction, list[TransactionHistoryEntry]]:
        """Return the transaction and its history, newest entry first."""
        transaction = await self.get(transaction_id)
        result = await self.db.execute(
            select(TransactionHistoryEntry)
            .where(TransactionHistoryEntry.escrow_transaction_id == transaction_id)
            .order_by(TransactionHistoryEntry.created_at.desc(), TransactionHistoryEntry.id.desc())
        )
        return transaction, list(result.scalars().all())

    async def list_for_party(self, user_id: int) -> list[EscrowTransaction]:
        """Transactions where the user is payer or payee, newest first."""
        result = await self.db.execute(
            select(EscrowTransaction)
            .where(or_(EscrowTransaction.payer_id == user_id, EscrowTransaction.payee_id == user_id))
            .order_by(EscrowTransaction.created_at.desc(), EscrowTransaction.id.desc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def create(
        self,
        payer_id: int,
        payee_id: int,
        amount: int,
        currency: str,
        job_posting_id: int | None = None,
        booking_id: int | None = None,
        description: str | None = None,
        metadata: dict | None = None,
    ) -> CreatedTransaction:
        """Open a transaction in ``pending`` and request a held payment for it."""
        if amount <= 0:
            raise InvalidEscrowRequest("Amount must be positive")
        if payer_id == payee_id:
            raise InvalidEscrowRequest("Payer and payee must be different users")

        payee = await self.db.get(User, payee_id)
        if payee is None or not payee.is_active:
            raise PartyNotFound("Payee not found")
        if not payee.payout_account_id:
            raise PayeeNotOnboarded()

        split = compute_split(amount, self.commission_rate_bps)
        now = self.clock()
        transfer_group = f"escrow_{int(now.timestamp() * 1000)}_{payer_id}_{payee_id}"

        held = await self.gateway.create_held_payment(
            amount=amount,
            currency=currency,
            destination_account=payee.payout_account_id,
            commission=split.commission,
            transfer_group=transfer_group,
            metadata={
                "payer_id": str(payer_id),
                "payee_id": str(payee_id),
                "job_posting_id": str(job_posting_id or ""),
                "booking_id": str(booking_id or ""),
            },
            idempotency_key=f"escrow-create-{transfer_group}",
        )

        # A repeated submission within the same millisecond gets the same payment back
        result = await self.db.execute(
            select(EscrowTransaction).where(
                EscrowTransaction.payment_intent_id == held.payment_reference
            )
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            logger.info(
                "Escrow %s already holds payment %s, not creating a duplicate",
                existing.id, held.payment_reference,
            )
            return CreatedTransaction(transaction=existing, client_secret=held.client_secret)

        transaction = EscrowTransaction(
            payer_id=payer_id,
            payee_id=payee_id,
            job_posting_id=job_posting_id,
            booking_id=booking_id,
            amount=amount,
            currency=currency.upper(),
            platform_commission_rate=self.commission_rate_bps,
            platform_commission_amount=split.commission,
            payee_payout_amount=split.payout,
            payment_intent_id=held.payment_reference,
            transfer_group_id=transfer_group,
            status=EscrowStatus.PENDING,
            escrow_release_date=now + timedelta(days=self.release_days),
            description=description,
            metadata_=metadata,
            created_at=now,
            updated_at=now,
        )
        self.db.add(transaction)
        await self.db.flush()

        self._record_history(
            transaction.id, EscrowAction.CREATED, None, EscrowStatus.PENDING, payer_id,
            metadata={
                "payment_intent_id": held.payment_reference,
                "commission_rate_bps": self.commission_rate_bps,
            },
        )
        await self.db.commit()
        await self.db.refresh(transaction)

        logger.info(
            "Escrow %s created: %s %s from user %s to user %s (commission %s)",
            transaction.id, amount, transaction.currency, payer_id, payee_id, split.commission,
        )
        return CreatedTransaction(transaction=transaction, client_secret=held.client_secret)

    async def confirm(
        self, transaction_id: int, confirmed_by: int | None = None
    ) -> EscrowTransaction:
        """Check the gateway and move a pending transaction into escrow (or failed).

        If the gateway still reports the payment as in progress, nothing changes.
        """
        transaction = await self.get(transaction_id)
        if transaction.status != EscrowStatus.PENDING:
            raise InvalidStateTransition("confirm", transaction.status.value)

        payment_status = await self.gateway.get_payment_status(transaction.payment_intent_id)

        if payment_status == GatewayPaymentStatus.PENDING:
            logger.info("Escrow %s payment still in progress, not confirming yet", transaction_id)
            return transaction

        if payment_status == GatewayPaymentStatus.SUCCEEDED:
            new_status, action = EscrowStatus.IN_ESCROW, EscrowAction.FUNDS_CAPTURED
        else:
            new_status, action = EscrowStatus.PAYMENT_FAILED, EscrowAction.PAYMENT_FAILED

        await self._transition(transaction, "confirm", EscrowStatus.PENDING, new_status)
        self._record_history(
            transaction_id, action, EscrowStatus.PENDING, new_status,
            confirmed_by if confirmed_by is not None else transaction.payer_id,
        )
        await self.db.commit()
        await self.db.refresh(transaction)
        return transaction

    async def release(
        self,
        transaction_id: int,
        released_by: int | None,
        reason: str | None = None,
    ) -> EscrowTransaction:
        """Release escrowed funds to the payee. Only valid from ``in_escrow``.

        Funds already sit on the payee's connected account (destination
        charge), so release is a bookkeeping transition with no gateway call.
        Caller authorization is the route layer's job.
        """
        transaction = await self.get(transaction_id)
        now = self.clock()
        await self._transition(
            transaction, "release", EscrowStatus.IN_ESCROW, EscrowStatus.RELEASED,
            service_completion_confirmed=True,
            service_completion_date=now,
        )
        self._record_history(
            transaction_id, EscrowAction.RELEASED, EscrowStatus.IN_ESCROW, EscrowStatus.RELEASED,
            released_by, reason,
        )
        await self.db.commit()
        await self.db.refresh(transaction)
        return transaction

    async def refund(
        self, transaction_id: int, requested_by: int, reason: str
    ) -> RefundResult:
        """Refund the payer. Valid from ``in_escrow`` or ``released``."""
        transaction = await self.get(transaction_id)
        previous = transaction.status
        if previous not in REFUNDABLE_STATUSES:
            logger.warning(
                "Refund rejected for escrow %s in status %s", transaction_id, previous.value
            )
            raise InvalidStateTransition("refund", previous.value)

        refund_reference = await self.gateway.create_refund(
            transaction.payment_intent_id,
            reason,
            metadata={
                "escrow_transaction_id": str(transaction_id),
                "requested_by": str(requested_by),
            },
            idempotency_key=f"escrow-refund-{transaction_id}",
        )

        try:
            await self._transition(
                transaction, "refund", previous, EscrowStatus.REFUNDED, dispute_reason=reason,
            )
        except InvalidStateTransition:
            logger.warning(
                "Escrow %s was refunded concurrently; gateway refund %s was not repeated",
                transaction_id, refund_reference,
            )
            raise

        self._record_history(
            transaction_id, EscrowAction.REFUNDED, previous, EscrowStatus.REFUNDED,
            requested_by, reason, metadata={"refund_reference": refund_reference},
        )
        await self.db.commit()
        await self.db.refresh(transaction)
        return RefundResult(transaction=transaction, refund_reference=refund_reference)

    async def auto_release(self, now: datetime | None = None) -> int:
        """Release every in-escrow transaction whose release date has passed.

        Returns the number released. Transactions released or refunded by
        someone else mid-sweep are skipped.
        """
        now = now or self.clock()
        result = await self.db.execute(
            select(EscrowTransaction.id)
            .where(
                EscrowTransaction.status == EscrowStatus.IN_ESCROW,
                EscrowTransaction.escrow_release_date <= now,
            )
            .order_by(EscrowTransaction.escrow_release_date)
        )
        due = list(result.scalars().all())

        released = 0
        for transaction_id in due:
            try:
                await self.release(transaction_id, None, AUTO_RELEASE_REASON)
            except InvalidStateTransition as e:
                logger.info(
                    "Auto-release skipped escrow %s, now %s", transaction_id, e.current_status
                )
                continue
            released += 1

        if due:
            logger.info("Auto-release: %d of %d due transactions released", released, len(due))
        return released

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _transition(
        self,
        transaction: EscrowTransaction,
        operation: str,
        expected: EscrowStatus,
        new_status: EscrowStatus,
        **fields: object,
    ) -> None:
        """UPDATE ... SET status = new WHERE id = ? AND status = expected."""
        result = await self.db.execute(
            update(EscrowTransaction)
            .where(
                EscrowTransaction.id == transaction.id,
                EscrowTransaction.status == expected,
            )
            .values(status=new_status, updated_at=self.clock(), **fields)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.refresh(transaction)
            logger.warning(
                "Escrow %s: %s rejected, status is %s (expected %s)",
                transaction.id, operation, transaction.status.value, expected.value,
            )
            raise InvalidStateTransition(operation, transaction.status.value)

        logger.info(
            "Escrow %s: %s -> %s", transaction.id, expected.value, new_status.value
        )

    def _record_history(
        self,
        transaction_id: int,
        action: EscrowAction,
        previous_status: EscrowStatus | None,
        new_status: EscrowStatus,
        action_by: int | None,
        reason: str | None = None,
        metadata: dict | None = None,
    ) -> None:
        """Append to the immutable history. Committed with the status change."""
        self.db.add(
            TransactionHistoryEntry(
                escrow_transaction_id=transaction_id,
                action=action,
                previous_status=previous_status,
                new_status=new_status,
                action_by=action_by,
                action_reason=reason,
                metadata_=metadata,
                created_at=self.clock(),
            )
        )
