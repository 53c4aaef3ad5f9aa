"""Redemption session records shared by shop and customer devices."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    Index,
    JSON,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from rcn_api.db.base import Base, enum_values


class RedemptionSessionStatus(str, Enum):
    """Lifecycle statuses for redemption sessions."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    USED = "used"


TERMINAL_SESSION_STATUSES = frozenset(
    {
        RedemptionSessionStatus.REJECTED,
        RedemptionSessionStatus.EXPIRED,
        RedemptionSessionStatus.USED,
    }
)

LIVE_SESSION_STATUSES = frozenset(
    {
        RedemptionSessionStatus.PENDING,
        RedemptionSessionStatus.APPROVED,
    }
)


class RedemptionRejectedBy(str, Enum):
    CUSTOMER = "customer"
    SHOP = "shop"
    ENGINE = "engine"


class RedemptionSession(Base):
    """Coordination record between a shop redemption request and a customer approval."""

    __tablename__ = "redemption_sessions"
    __table_args__ = (
        Index("ix_redemption_sessions_customer_status", "customer_address", "status"),
        Index("ix_redemption_sessions_status_expires", "status", "expires_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_address = Column(String(64), nullable=False)
    shop_id = Column(String(64), nullable=False)
    max_amount = Column(Numeric(14, 2), nullable=False)
    status = Column(
        SqlEnum(RedemptionSessionStatus, name="redemption_session_status", values_callable=enum_values),
        nullable=False,
        default=RedemptionSessionStatus.PENDING,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    signature = Column(Text, nullable=True)
    rejected_by = Column(
        SqlEnum(RedemptionRejectedBy, name="redemption_rejected_by", values_callable=enum_values),
        nullable=True,
    )
    failure_reason = Column(String, nullable=True)
    transaction_id = Column(UUID(as_uuid=True), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
