from datetime import datetime, timedelta, timezone
from decimal import Decimal

from rcn_api.models.noshow import NoShowRecord, NoShowTier
from rcn_api.services.noshow.policy import (
    build_status,
    describe_restrictions,
    effective_tier,
    redemption_multiplier_for_tier,
    restrictions_for_tier,
    tier_for_count,
)

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def _record(**overrides) -> NoShowRecord:
    values = {
        "customer_address": "0x00000000000000000000000000000000000000aa",
        "no_show_count": 0,
        "tier_relief_bands": 0,
        "successful_appointments_since_tier3": 0,
        "dispute_count": 0,
    }
    values.update(overrides)
    return NoShowRecord(**values)


def test_tier_thresholds() -> None:
    assert [tier_for_count(count) for count in range(7)] == [
        NoShowTier.NORMAL,
        NoShowTier.WARNING,
        NoShowTier.CAUTION,
        NoShowTier.DEPOSIT_REQUIRED,
        NoShowTier.DEPOSIT_REQUIRED,
        NoShowTier.SUSPENDED,
        NoShowTier.SUSPENDED,
    ]


def test_relief_only_lowers_deposit_band() -> None:
    assert effective_tier(3, 1) == NoShowTier.CAUTION
    assert effective_tier(4, 1) == NoShowTier.CAUTION
    assert effective_tier(5, 1) == NoShowTier.SUSPENDED
    assert effective_tier(2, 1) == NoShowTier.CAUTION
    assert effective_tier(3, 0) == NoShowTier.DEPOSIT_REQUIRED


def test_redemption_multiplier_drops_from_caution_upwards() -> None:
    assert redemption_multiplier_for_tier(NoShowTier.NORMAL) == Decimal("1")
    assert redemption_multiplier_for_tier(NoShowTier.WARNING) == Decimal("1")
    assert redemption_multiplier_for_tier(NoShowTier.CAUTION) == Decimal("0.8")
    assert redemption_multiplier_for_tier(NoShowTier.DEPOSIT_REQUIRED) == Decimal("0.8")
    assert redemption_multiplier_for_tier(NoShowTier.SUSPENDED) == Decimal("0.8")


def test_restrictions_per_tier() -> None:
    caution = restrictions_for_tier(NoShowTier.CAUTION)
    assert caution.can_book is True
    assert caution.minimum_advance_hours == 24
    assert caution.requires_deposit is False

    deposit = restrictions_for_tier(NoShowTier.DEPOSIT_REQUIRED)
    assert deposit.minimum_advance_hours == 48
    assert deposit.requires_deposit is True

    assert restrictions_for_tier(NoShowTier.SUSPENDED).can_book is False


def test_describe_restrictions_for_caution_and_deposit() -> None:
    assert describe_restrictions(NoShowTier.CAUTION, booking_suspended_until=None, now=NOW) == [
        "Must book at least 24 hours in advance",
        "Limited to 80% RCN redemption per booking",
    ]
    deposit_lines = describe_restrictions(NoShowTier.DEPOSIT_REQUIRED, booking_suspended_until=None, now=NOW)
    assert deposit_lines[0] == "$25.00 refundable deposit required for all bookings"
    assert describe_restrictions(NoShowTier.WARNING, booking_suspended_until=None, now=NOW) == []


def test_missing_record_is_normal() -> None:
    status = build_status("0xabc", None, NOW)

    assert status.tier == NoShowTier.NORMAL
    assert status.can_book is True
    assert status.redemption_multiplier == Decimal("1")
    assert status.restrictions == []


def test_active_suspension_blocks_booking() -> None:
    until = NOW + timedelta(days=30)
    status = build_status("0xabc", _record(no_show_count=5, booking_suspended_until=until), NOW)

    assert status.tier == NoShowTier.SUSPENDED
    assert status.can_book is False
    assert status.is_suspended is True
    assert status.restrictions[0] == "Booking privileges suspended until November 17, 2026"
    assert status.deposit_amount == Decimal("25.00")


def test_lapsed_suspension_books_under_deposit_rules() -> None:
    until = NOW - timedelta(minutes=1)
    status = build_status("0xabc", _record(no_show_count=5, booking_suspended_until=until), NOW)

    assert status.tier == NoShowTier.SUSPENDED
    assert status.can_book is True
    assert status.requires_deposit is True
    assert status.redemption_multiplier == Decimal("0.8")
    assert not any(line.startswith("Booking privileges suspended") for line in status.restrictions)
