"""Ledger-owned customer balances and the append-only transaction log."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    Index,
    JSON,
    Numeric,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from rcn_api.db.base import Base, enum_values


class CustomerTier(str, Enum):
    """Earning tiers derived from lifetime earnings."""

    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"


class CustomerLedgerAccount(Base):
    """Balance record for a customer wallet; mutated only through the ledger client."""

    __tablename__ = "customer_ledger_accounts"
    __table_args__ = (
        CheckConstraint("earned_balance >= 0", name="ck_customer_ledger_accounts_earned_non_negative"),
    )

    address = Column(String(64), primary_key=True)
    earned_balance = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    market_balance = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    lifetime_earnings = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    home_shop_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class TransactionType(str, Enum):
    MINT = "mint"
    REDEEM = "redeem"
    TRANSFER = "transfer"
    TIER_BONUS = "tier_bonus"
    SHOP_PURCHASE = "shop_purchase"


class TokenSource(str, Enum):
    EARNED = "earned"
    PURCHASED = "purchased"
    TIER_BONUS = "tier_bonus"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class RcnTransaction(Base):
    """Immutable token movement record."""

    __tablename__ = "rcn_transactions"
    __table_args__ = (
        Index("ix_rcn_transactions_customer_created", "customer_address", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    transaction_type = Column(
        "type",
        SqlEnum(TransactionType, name="rcn_transaction_type", values_callable=enum_values),
        nullable=False,
    )
    customer_address = Column(String(64), nullable=False)
    shop_id = Column(String(64), nullable=True)
    amount = Column(Numeric(14, 2), nullable=False)
    token_source = Column(
        SqlEnum(TokenSource, name="rcn_token_source", values_callable=enum_values),
        nullable=False,
    )
    is_cross_shop = Column(Boolean, nullable=False, default=False, server_default="false")
    status = Column(
        SqlEnum(TransactionStatus, name="rcn_transaction_status", values_callable=enum_values),
        nullable=False,
        default=TransactionStatus.PENDING,
    )
    session_id = Column(UUID(as_uuid=True), nullable=True, unique=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
