"""Pure no-show tier rules: thresholds, restrictions and redemption multiplier."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from rcn_api.core.clock import ensure_aware
from rcn_api.core.settings import settings
from rcn_api.models.noshow import NoShowRecord, NoShowTier

TIER_ORDER: tuple[NoShowTier, ...] = (
    NoShowTier.NORMAL,
    NoShowTier.WARNING,
    NoShowTier.CAUTION,
    NoShowTier.DEPOSIT_REQUIRED,
    NoShowTier.SUSPENDED,
)

FULL_REDEMPTION = Decimal("1")


@dataclass(frozen=True)
class TierRestrictions:
    can_book: bool
    minimum_advance_hours: int
    requires_deposit: bool
    redemption_multiplier: Decimal


@dataclass(frozen=True)
class NoShowStatus:
    """Derived trust state for a customer, recomputed on every read."""

    customer_address: str
    tier: NoShowTier
    no_show_count: int
    can_book: bool
    requires_deposit: bool
    minimum_advance_hours: int
    redemption_multiplier: Decimal
    restrictions: List[str] = field(default_factory=list)
    last_no_show_at: Optional[datetime] = None
    booking_suspended_until: Optional[datetime] = None
    successful_appointments_since_tier3: int = 0
    deposit_amount: Optional[Decimal] = None

    @property
    def is_suspended(self) -> bool:
        return not self.can_book


def tier_for_count(no_show_count: int) -> NoShowTier:
    """Raw tier from the no-show count alone."""

    if no_show_count >= settings.noshow_suspension_threshold:
        return NoShowTier.SUSPENDED
    if no_show_count >= settings.noshow_deposit_threshold:
        return NoShowTier.DEPOSIT_REQUIRED
    if no_show_count >= settings.noshow_caution_threshold:
        return NoShowTier.CAUTION
    if no_show_count >= 1:
        return NoShowTier.WARNING
    return NoShowTier.NORMAL


def effective_tier(no_show_count: int, relief_bands: int = 0) -> NoShowTier:
    """Tier after de-escalation relief.

    Relief is earned only at ``deposit_required`` and only lowers that tier; a
    count that has escalated to suspension or dropped below the deposit band
    ignores it.
    """

    tier = tier_for_count(no_show_count)
    if tier != NoShowTier.DEPOSIT_REQUIRED or relief_bands <= 0:
        return tier
    index = max(TIER_ORDER.index(tier) - relief_bands, 0)
    return TIER_ORDER[index]


def redemption_multiplier_for_tier(tier: NoShowTier) -> Decimal:
    if TIER_ORDER.index(tier) >= TIER_ORDER.index(NoShowTier.CAUTION):
        return Decimal(settings.noshow_max_redemption_percent) / Decimal(100)
    return FULL_REDEMPTION


def restrictions_for_tier(tier: NoShowTier) -> TierRestrictions:
    multiplier = redemption_multiplier_for_tier(tier)
    if tier == NoShowTier.CAUTION:
        return TierRestrictions(
            can_book=True,
            minimum_advance_hours=settings.noshow_caution_advance_booking_hours,
            requires_deposit=False,
            redemption_multiplier=multiplier,
        )
    if tier in (NoShowTier.DEPOSIT_REQUIRED, NoShowTier.SUSPENDED):
        return TierRestrictions(
            can_book=tier != NoShowTier.SUSPENDED,
            minimum_advance_hours=settings.noshow_deposit_advance_booking_hours,
            requires_deposit=True,
            redemption_multiplier=multiplier,
        )
    return TierRestrictions(
        can_book=True,
        minimum_advance_hours=0,
        requires_deposit=False,
        redemption_multiplier=multiplier,
    )


def suspension_active(booking_suspended_until: datetime | None, now: datetime) -> bool:
    if booking_suspended_until is None:
        return False
    return ensure_aware(now) < ensure_aware(booking_suspended_until)


def _deposit_amount() -> Decimal:
    return Decimal(str(settings.noshow_deposit_amount)).quantize(Decimal("0.01"))


def describe_restrictions(
    tier: NoShowTier,
    *,
    booking_suspended_until: datetime | None,
    now: datetime,
) -> List[str]:
    """Customer-facing copy for the restrictions currently applied."""

    deposit = f"${_deposit_amount()} refundable deposit required for all bookings"
    percent = settings.noshow_max_redemption_percent
    limited = f"Limited to {percent}% RCN redemption per booking"

    if tier == NoShowTier.CAUTION:
        hours = settings.noshow_caution_advance_booking_hours
        return [f"Must book at least {hours} hours in advance", limited]

    hours = settings.noshow_deposit_advance_booking_hours
    if tier == NoShowTier.DEPOSIT_REQUIRED:
        return [deposit, f"Must book at least {hours} hours in advance", limited]

    if tier == NoShowTier.SUSPENDED:
        lines: List[str] = []
        if suspension_active(booking_suspended_until, now):
            until = ensure_aware(booking_suspended_until).strftime("%B %d, %Y")
            lines.append(f"Booking privileges suspended until {until}")
        lines.extend(
            [
                f"After suspension: {deposit}",
                f"After suspension: Must book at least {hours} hours in advance",
                limited,
            ]
        )
        return lines

    return []


def build_status(customer_address: str, record: NoShowRecord | None, now: datetime) -> NoShowStatus:
    """Derive the trust status from a stored record; missing records are ``normal``."""

    if record is None:
        restrictions = restrictions_for_tier(NoShowTier.NORMAL)
        return NoShowStatus(
            customer_address=customer_address,
            tier=NoShowTier.NORMAL,
            no_show_count=0,
            can_book=True,
            requires_deposit=False,
            minimum_advance_hours=restrictions.minimum_advance_hours,
            redemption_multiplier=restrictions.redemption_multiplier,
        )

    count = int(record.no_show_count or 0)
    tier = effective_tier(count, int(record.tier_relief_bands or 0))
    restrictions = restrictions_for_tier(tier)
    suspended_until = ensure_aware(record.booking_suspended_until) if record.booking_suspended_until else None
    # A lapsed suspension lets the customer book again under the deposit rules.
    can_book = not suspension_active(suspended_until, now) and (
        restrictions.can_book or suspended_until is not None
    )

    return NoShowStatus(
        customer_address=customer_address,
        tier=tier,
        no_show_count=count,
        can_book=can_book,
        requires_deposit=restrictions.requires_deposit,
        minimum_advance_hours=restrictions.minimum_advance_hours,
        redemption_multiplier=restrictions.redemption_multiplier,
        restrictions=describe_restrictions(tier, booking_suspended_until=suspended_until, now=now),
        last_no_show_at=ensure_aware(record.last_no_show_at) if record.last_no_show_at else None,
        booking_suspended_until=suspended_until,
        successful_appointments_since_tier3=int(record.successful_appointments_since_tier3 or 0),
        deposit_amount=_deposit_amount() if restrictions.requires_deposit else None,
    )


__all__ = [
    "NoShowStatus",
    "TIER_ORDER",
    "TierRestrictions",
    "build_status",
    "describe_restrictions",
    "effective_tier",
    "redemption_multiplier_for_tier",
    "restrictions_for_tier",
    "suspension_active",
    "tier_for_count",
]
