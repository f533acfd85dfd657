"""Create escrow_transactions, transaction_history and payment_methods tables.

Revision ID: 002
Revises: 001
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ENUM, JSONB

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_STATUSES = ("pending", "in_escrow", "released", "refunded", "payment_failed")
_ACTIONS = ("created", "funds_captured", "payment_failed", "released", "refunded")


def upgrade() -> None:
    escrow_status = sa.Enum(*_STATUSES, name="escrowstatus")

    op.create_table(
        "escrow_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("payer_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("payee_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("job_posting_id", sa.Integer(), nullable=True),
        sa.Column("booking_id", sa.Integer(), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("platform_commission_rate", sa.Integer(), nullable=False),
        sa.Column("platform_commission_amount", sa.Integer(), nullable=False),
        sa.Column("payee_payout_amount", sa.Integer(), nullable=False),
        sa.Column("payment_intent_id", sa.String(255), unique=True, nullable=True),
        sa.Column("transfer_group_id", sa.String(255), nullable=True),
        sa.Column("status", escrow_status, nullable=False, server_default="pending"),
        sa.Column("escrow_release_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("service_completion_confirmed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("service_completion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("dispute_reason", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "platform_commission_amount + payee_payout_amount = amount",
            name="ck_escrow_split_sums_to_amount",
        ),
    )
    op.create_index("ix_escrow_transactions_payer_id", "escrow_transactions", ["payer_id"])
    op.create_index("ix_escrow_transactions_payee_id", "escrow_transactions", ["payee_id"])
    op.create_index("ix_escrow_transactions_status", "escrow_transactions", ["status"])

    op.create_table(
        "transaction_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "escrow_transaction_id", sa.Integer(),
            sa.ForeignKey("escrow_transactions.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("action", sa.Enum(*_ACTIONS, name="escrowaction"), nullable=False),
        sa.Column("previous_status", ENUM(*_STATUSES, name="escrowstatus", create_type=False), nullable=True),
        sa.Column("new_status", ENUM(*_STATUSES, name="escrowstatus", create_type=False), nullable=False),
        sa.Column("action_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("action_reason", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_transaction_history_escrow_transaction_id", "transaction_history", ["escrow_transaction_id"]
    )

    op.create_table(
        "payment_methods",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("gateway_payment_method_id", sa.String(255), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("brand", sa.String(32), nullable=True),
        sa.Column("last4", sa.String(4), nullable=True),
        sa.Column("expiry_month", sa.Integer(), nullable=True),
        sa.Column("expiry_year", sa.Integer(), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_payment_methods_user_id", "payment_methods", ["user_id"])


def downgrade() -> None:
    op.drop_table("payment_methods")
    op.drop_table("transaction_history")
    op.drop_table("escrow_transactions")
    op.execute("DROP TYPE IF EXISTS escrowstatus")
    op.execute("DROP TYPE IF EXISTS escrowaction")
