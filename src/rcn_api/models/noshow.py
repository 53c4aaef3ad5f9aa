"""No-show trust records, no-show history and disputes."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from rcn_api.db.base import Base, enum_values


class NoShowTier(str, Enum):
    """Escalating restriction levels, ordered from least to most restrictive."""

    NORMAL = "normal"
    WARNING = "warning"
    CAUTION = "caution"
    DEPOSIT_REQUIRED = "deposit_required"
    SUSPENDED = "suspended"


class DisputeStatus(str, Enum):
    AUTO_APPROVED = "auto_approved"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class NoShowRecord(Base):
    """Per-customer no-show counters; the tier is derived from these on read."""

    __tablename__ = "no_show_records"
    __table_args__ = (
        CheckConstraint("no_show_count >= 0", name="ck_no_show_records_count_non_negative"),
    )

    customer_address = Column(String(64), primary_key=True)
    no_show_count = Column(Integer, nullable=False, default=0, server_default="0")
    last_no_show_at = Column(DateTime(timezone=True), nullable=True)
    booking_suspended_until = Column(DateTime(timezone=True), nullable=True)
    successful_appointments_since_tier3 = Column(Integer, nullable=False, default=0, server_default="0")
    tier_relief_bands = Column(Integer, nullable=False, default=0, server_default="0")
    dispute_count = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class NoShowEvent(Base):
    """A missed appointment; opens the dispute window for its order.

    ``resulting_tier`` is the effective tier the customer landed in once this
    no-show was counted.
    """

    __tablename__ = "no_show_events"
    __table_args__ = (
        Index("ix_no_show_events_customer_marked", "customer_address", "marked_no_show_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_id = Column(String(128), nullable=False, unique=True)
    customer_address = Column(String(64), nullable=False)
    shop_id = Column(String(64), nullable=True)
    marked_no_show_at = Column(DateTime(timezone=True), nullable=False)
    notes = Column(Text, nullable=True)
    resulting_tier = Column(
        SqlEnum(NoShowTier, name="no_show_tier", values_callable=enum_values),
        nullable=False,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    dispute = relationship("NoShowDispute", back_populates="event", uselist=False)


class NoShowDispute(Base):
    """Customer contest of a no-show event."""

    __tablename__ = "no_show_disputes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_id = Column(
        String(128),
        ForeignKey("no_show_events.order_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    customer_address = Column(String(64), nullable=False, index=True)
    reason = Column(Text, nullable=False)
    status = Column(
        SqlEnum(DisputeStatus, name="no_show_dispute_status", values_callable=enum_values),
        nullable=False,
        default=DisputeStatus.PENDING,
    )
    submitted_at = Column(DateTime(timezone=True), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by = Column(String(64), nullable=True)
    resolution_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    event = relationship("NoShowEvent", back_populates="dispute")
