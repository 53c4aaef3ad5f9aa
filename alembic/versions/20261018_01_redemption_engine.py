"""Ledger accounts, redemption sessions and no-show tables.

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(name=name, create_type=False)


def upgrade() -> None:
    op.execute("CREATE TYPE rcn_transaction_type AS ENUM ('mint', 'redeem', 'transfer', 'tier_bonus', 'shop_purchase')")
    op.execute("CREATE TYPE rcn_token_source AS ENUM ('earned', 'purchased', 'tier_bonus')")
    op.execute("CREATE TYPE rcn_transaction_status AS ENUM ('pending', 'confirmed', 'failed')")
    op.execute(
        "CREATE TYPE redemption_session_status AS ENUM ('pending', 'approved', 'rejected', 'expired', 'used')"
    )
    op.execute("CREATE TYPE redemption_rejected_by AS ENUM ('customer', 'shop', 'engine')")
    op.execute(
        "CREATE TYPE no_show_tier AS ENUM ('normal', 'warning', 'caution', 'deposit_required', 'suspended')"
    )
    op.execute("CREATE TYPE no_show_dispute_status AS ENUM ('auto_approved', 'pending', 'approved', 'rejected')")

    op.create_table(
        "customer_ledger_accounts",
        sa.Column("address", sa.String(64), primary_key=True),
        sa.Column("earned_balance", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("market_balance", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("lifetime_earnings", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("home_shop_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("earned_balance >= 0", name="ck_customer_ledger_accounts_earned_non_negative"),
    )

    op.create_table(
        "rcn_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("type", _enum("rcn_transaction_type"), nullable=False),
        sa.Column("customer_address", sa.String(64), nullable=False),
        sa.Column("shop_id", sa.String(64), nullable=True),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("token_source", _enum("rcn_token_source"), nullable=False),
        sa.Column("is_cross_shop", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", _enum("rcn_transaction_status"), nullable=False, server_default="pending"),
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=True, unique=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index(
        "ix_rcn_transactions_customer_created",
        "rcn_transactions",
        ["customer_address", "created_at"],
    )

    op.create_table(
        "redemption_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("customer_address", sa.String(64), nullable=False),
        sa.Column("shop_id", sa.String(64), nullable=False),
        sa.Column("max_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", _enum("redemption_session_status"), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("signature", sa.Text(), nullable=True),
        sa.Column("rejected_by", _enum("redemption_rejected_by"), nullable=True),
        sa.Column("failure_reason", sa.String(), nullable=True),
        sa.Column("transaction_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index(
        "ix_redemption_sessions_customer_status",
        "redemption_sessions",
        ["customer_address", "status"],
    )
    op.create_index(
        "ix_redemption_sessions_status_expires",
        "redemption_sessions",
        ["status", "expires_at"],
    )

    op.create_table(
        "no_show_records",
        sa.Column("customer_address", sa.String(64), primary_key=True),
        sa.Column("no_show_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_no_show_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("booking_suspended_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("successful_appointments_since_tier3", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tier_relief_bands", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("dispute_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("no_show_count >= 0", name="ck_no_show_records_count_non_negative"),
    )

    op.create_table(
        "no_show_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("order_id", sa.String(128), nullable=False, unique=True),
        sa.Column("customer_address", sa.String(64), nullable=False),
        sa.Column("shop_id", sa.String(64), nullable=True),
        sa.Column("marked_no_show_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("resulting_tier", _enum("no_show_tier"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index(
        "ix_no_show_events_customer_marked",
        "no_show_events",
        ["customer_address", "marked_no_show_at"],
    )

    op.create_table(
        "no_show_disputes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("order_id", sa.String(128), nullable=False, unique=True),
        sa.Column("customer_address", sa.String(64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("status", _enum("no_show_dispute_status"), nullable=False, server_default="pending"),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(64), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["no_show_events.order_id"], ondelete="CASCADE"),
    )
    op.create_index("ix_no_show_disputes_customer_address", "no_show_disputes", ["customer_address"])


def downgrade() -> None:
    op.drop_index("ix_no_show_disputes_customer_address", table_name="no_show_disputes")
    op.drop_table("no_show_disputes")
    op.drop_index("ix_no_show_events_customer_marked", table_name="no_show_events")
    op.drop_table("no_show_events")
    op.drop_table("no_show_records")
    op.drop_index("ix_redemption_sessions_status_expires", table_name="redemption_sessions")
    op.drop_index("ix_redemption_sessions_customer_status", table_name="redemption_sessions")
    op.drop_table("redemption_sessions")
    op.drop_index("ix_rcn_transactions_customer_created", table_name="rcn_transactions")
    op.drop_table("rcn_transactions")
    op.drop_table("customer_ledger_accounts")

    op.execute("DROP TYPE no_show_dispute_status")
    op.execute("DROP TYPE no_show_tier")
    op.execute("DROP TYPE redemption_rejected_by")
    op.execute("DROP TYPE redemption_session_status")
    op.execute("DROP TYPE rcn_transaction_status")
    op.execute("DROP TYPE rcn_token_source")
    op.execute("DROP TYPE rcn_transaction_type")
