"""Escrow transaction and transaction history models."""

import enum
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

JSONType = JSON().with_variant(JSONB, "postgresql")


class EscrowStatus(enum.Enum):
    PENDING = "pending"
    IN_ESCROW = "in_escrow"
    RELEASED = "released"
    REFUNDED = "refunded"
    PAYMENT_FAILED = "payment_failed"


class EscrowAction(enum.Enum):
    CREATED = "created"
    FUNDS_CAPTURED = "funds_captured"
    PAYMENT_FAILED = "payment_failed"
    RELEASED = "released"
    REFUNDED = "refunded"


class EscrowTransaction(Base):
    __tablename__ = "escrow_transactions"
    __table_args__ = (
        CheckConstraint(
            "platform_commission_amount + payee_payout_amount = amount",
            name="ck_escrow_split_sums_to_amount",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    payee_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    job_posting_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    booking_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Money, all in minor currency units
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    platform_commission_rate: Mapped[int] = mapped_column(
        Integer, nullable=False, doc="Basis points applied at creation"
    )
    platform_commission_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    payee_payout_amount: Mapped[int] = mapped_column(
        Integer, nullable=False, doc="amount - platform_commission_amount"
    )

    # Gateway references
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    transfer_group_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[EscrowStatus] = mapped_column(
        Enum(EscrowStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=EscrowStatus.PENDING,
        index=True,
    )

    escrow_release_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    service_completion_confirmed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    service_completion_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


class TransactionHistoryEntry(Base):
    """Append-only audit trail. One row per status change; never update or delete rows."""
    __tablename__ = "transaction_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    escrow_transaction_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("escrow_transactions.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    action: Mapped[EscrowAction] = mapped_column(
        Enum(EscrowAction, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    previous_status: Mapped[EscrowStatus | None] = mapped_column(
        Enum(EscrowStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=True,
    )
    new_status: Mapped[EscrowStatus] = mapped_column(
        Enum(EscrowStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    action_by: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=True,
        doc="NULL for system-initiated actions",
    )
    action_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
