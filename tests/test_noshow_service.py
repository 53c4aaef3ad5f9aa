import warnings
from datetime import timedelta

import pytest
from sqlalchemy.exc import SAWarning

from rcn_api.models.noshow import DisputeStatus, NoShowTier
from rcn_api.services.errors import (
    InvalidReasonError,
    InvalidStateError,
    NoShowEventNotFoundError,
    NotFoundError,
    UnauthorizedError,
    WindowExpiredError,
)
from rcn_api.services.noshow import NoShowService
from rcn_api.services.noshow.service import AUTO_APPROVED_MESSAGE, AUTO_RESOLVER, PENDING_MESSAGE

CUSTOMER = "0x00000000000000000000000000000000000000c1"
REASON = "I was at the shop but nobody answered the door"


async def _mark(service: NoShowService, count: int, *, prefix: str = "order") -> None:
    for index in range(count):
        await service.mark_no_show(CUSTOMER, f"{prefix}-{index}", shop_id="shop-1")


@pytest.mark.asyncio
async def test_tiers_escalate_with_each_no_show(session_factory, clock) -> None:
    async with session_factory() as session:
        service = NoShowService(session, clock=clock)

        first = await service.mark_no_show(CUSTOMER, "order-1", shop_id="shop-1", notes="Did not arrive")
        assert first.tier == NoShowTier.WARNING
        assert first.no_show_count == 1
        assert first.last_no_show_at == clock.now

        second = await service.mark_no_show(CUSTOMER, "order-2", shop_id="shop-1")
        assert second.tier == NoShowTier.CAUTION
        assert second.minimum_advance_hours == 24

        third = await service.mark_no_show(CUSTOMER, "order-3", shop_id="shop-1")
        assert third.tier == NoShowTier.DEPOSIT_REQUIRED
        assert third.requires_deposit is True
        assert third.booking_suspended_until is None

        history = await service.list_history(CUSTOMER)

    assert sorted(event.order_id for event in history) == ["order-1", "order-2", "order-3"]
    assert {event.resulting_tier for event in history} == {
        NoShowTier.WARNING,
        NoShowTier.CAUTION,
        NoShowTier.DEPOSIT_REQUIRED,
    }


@pytest.mark.asyncio
async def test_duplicate_order_is_rejected(session_factory, clock) -> None:
    async with session_factory() as session:
        service = NoShowService(session, clock=clock)
        await service.mark_no_show(CUSTOMER, "order-1")

        with pytest.raises(InvalidStateError):
            await service.mark_no_show(CUSTOMER, "order-1")

        status = await service.get_status(CUSTOMER)

    assert status.no_show_count == 1


@pytest.mark.asyncio
async def test_fifth_no_show_suspends_for_thirty_days(session_factory, clock) -> None:
    async with session_factory() as session:
        service = NoShowService(session, clock=clock)
        await _mark(service, 5)
        status = await service.get_status(CUSTOMER)

        assert status.tier == NoShowTier.SUSPENDED
        assert status.can_book is False
        assert status.booking_suspended_until == clock.now + timedelta(days=30)

        clock.advance(days=30, seconds=1)
        lapsed = await service.get_status(CUSTOMER)

    assert lapsed.tier == NoShowTier.SUSPENDED
    assert lapsed.can_book is True
    assert lapsed.requires_deposit is True


@pytest.mark.asyncio
async def test_successful_appointments_relieve_deposit_tier(session_factory, clock) -> None:
    async with session_factory() as session:
        service = NoShowService(session, clock=clock)
        await _mark(service, 3)

        await service.record_successful_appointment(CUSTOMER)
        status = await service.record_successful_appointment(CUSTOMER)
        assert status.tier == NoShowTier.DEPOSIT_REQUIRED
        assert status.successful_appointments_since_tier3 == 2

        relieved = await service.record_successful_appointment(CUSTOMER)
        assert relieved.tier == NoShowTier.CAUTION
        assert relieved.no_show_count == 3
        assert relieved.successful_appointments_since_tier3 == 0

        again = await service.mark_no_show(CUSTOMER, "order-late")

    assert again.no_show_count == 4
    assert again.tier == NoShowTier.DEPOSIT_REQUIRED


@pytest.mark.asyncio
async def test_successful_appointment_outside_deposit_band_is_ignored(session_factory, clock) -> None:
    async with session_factory() as session:
        service = NoShowService(session, clock=clock)
        await service.mark_no_show(CUSTOMER, "order-1")
        status = await service.record_successful_appointment(CUSTOMER)

        unknown = await service.record_successful_appointment("0x00000000000000000000000000000000000000ff")

    assert status.tier == NoShowTier.WARNING
    assert status.successful_appointments_since_tier3 == 0
    assert unknown.tier == NoShowTier.NORMAL


@pytest.mark.asyncio
async def test_first_dispute_is_auto_approved_and_reverses_penalty(session_factory, clock) -> None:
    async with session_factory() as session:
        service = NoShowService(session, clock=clock)
        await _mark(service, 2)

        outcome = await service.submit_dispute("order-1", f"  {REASON}  ", customer_address=CUSTOMER.upper())

    assert outcome.auto_approved is True
    assert outcome.message == AUTO_APPROVED_MESSAGE
    assert outcome.dispute.status == DisputeStatus.AUTO_APPROVED
    assert outcome.dispute.resolved_by == AUTO_RESOLVER
    assert outcome.dispute.reason == REASON
    assert outcome.status.no_show_count == 1
    assert outcome.status.tier == NoShowTier.WARNING


@pytest.mark.asyncio
async def test_later_disputes_wait_for_shop_review(session_factory, clock) -> None:
    async with session_factory() as session:
        service = NoShowService(session, clock=clock)
        await _mark(service, 3)

        await service.submit_dispute("order-0", REASON, CUSTOMER)
        outcome = await service.submit_dispute("order-1", REASON, CUSTOMER)

        assert outcome.auto_approved is False
        assert outcome.message == PENDING_MESSAGE
        assert outcome.dispute.status == DisputeStatus.PENDING
        assert outcome.status.no_show_count == 2

        pending = await service.list_disputes(status=DisputeStatus.PENDING, shop_id="shop-1")
        assert [dispute.order_id for dispute in pending] == ["order-1"]

        resolved = await service.resolve_dispute(
            "order-1", approve=True, notes="Confirmed by shop", resolved_by="shop-1"
        )
        assert resolved.status == DisputeStatus.APPROVED
        assert resolved.resolved_by == "shop-1"

        status = await service.get_status(CUSTOMER)
        assert status.no_show_count == 1

        with pytest.raises(InvalidStateError) as excinfo:
            await service.resolve_dispute("order-1", approve=False)

    assert excinfo.value.current_status == DisputeStatus.APPROVED.value


@pytest.mark.asyncio
async def test_rejected_dispute_keeps_penalty(session_factory, clock) -> None:
    async with session_factory() as session:
        service = NoShowService(session, clock=clock)
        await _mark(service, 2)
        await service.submit_dispute("order-0", REASON, CUSTOMER)
        await service.submit_dispute("order-1", REASON, CUSTOMER)

        resolved = await service.resolve_dispute("order-1", approve=False, notes="Shop has camera footage")
        status = await service.get_status(CUSTOMER)

    assert resolved.status == DisputeStatus.REJECTED
    assert resolved.resolution_notes == "Shop has camera footage"
    assert status.no_show_count == 1


@pytest.mark.asyncio
async def test_auto_approved_dispute_lifts_suspension(session_factory, clock) -> None:
    async with session_factory() as session:
        service = NoShowService(session, clock=clock)
        await _mark(service, 5)

        outcome = await service.submit_dispute("order-4", REASON, CUSTOMER)

    assert outcome.status.no_show_count == 4
    assert outcome.status.tier == NoShowTier.DEPOSIT_REQUIRED
    assert outcome.status.booking_suspended_until is None
    assert outcome.status.can_book is True


@pytest.mark.asyncio
async def test_dispute_window_closes_after_seven_days(session_factory, clock) -> None:
    async with session_factory() as session:
        service = NoShowService(session, clock=clock)
        await service.mark_no_show(CUSTOMER, "order-on-time")
        await service.mark_no_show(CUSTOMER, "order-late")

        clock.advance(days=7)
        outcome = await service.submit_dispute("order-on-time", REASON, CUSTOMER)
        assert outcome.auto_approved is True

        clock.advance(seconds=1)
        with pytest.raises(WindowExpiredError):
            await service.submit_dispute("order-late", REASON, CUSTOMER)


@pytest.mark.asyncio
async def test_dispute_validation_errors(session_factory, clock) -> None:
    async with session_factory() as session:
        service = NoShowService(session, clock=clock)
        await service.mark_no_show(CUSTOMER, "order-1")

        with pytest.raises(NoShowEventNotFoundError):
            await service.submit_dispute("missing-order", REASON, CUSTOMER)

        with pytest.raises(InvalidReasonError):
            await service.submit_dispute("order-1", "   too short  ", CUSTOMER)

        with pytest.raises(UnauthorizedError):
            await service.submit_dispute(
                "order-1",
                REASON,
                customer_address="0x00000000000000000000000000000000000000ee",
            )

        await service.submit_dispute("order-1", REASON, CUSTOMER)
        with pytest.raises(InvalidStateError):
            await service.submit_dispute("order-1", REASON, CUSTOMER)

        with pytest.raises(NotFoundError):
            await service.resolve_dispute("missing-order", approve=True)


@pytest.mark.asyncio
async def test_stranger_cannot_dispute_or_block_the_customer(session_factory, clock) -> None:
    async with session_factory() as session:
        service = NoShowService(session, clock=clock)
        await service.mark_no_show(CUSTOMER, "order-1", shop_id="shop-1")

        with pytest.raises(UnauthorizedError):
            await service.submit_dispute("order-1", "junk from a stranger", None)
        with pytest.raises(UnauthorizedError):
            await service.submit_dispute("order-1", "junk from a stranger", "")
        with pytest.raises(UnauthorizedError):
            await service.submit_dispute("order-1", "junk from a stranger", "0x00000000000000000000000000000000000000ee")

        outcome = await service.submit_dispute("order-1", REASON, CUSTOMER)
        disputes = await service.list_disputes(customer_address=CUSTOMER)

    assert outcome.auto_approved is True
    assert [dispute.reason for dispute in disputes] == [REASON]


@pytest.mark.asyncio
async def test_auto_approval_flushes_the_dispute_with_the_reversal(session_factory, clock) -> None:
    async with session_factory() as session:
        service = NoShowService(session, clock=clock)
        await _mark(service, 1)

        with warnings.catch_warnings():
            warnings.simplefilter("error", SAWarning)
            outcome = await service.submit_dispute("order-0", REASON, CUSTOMER)

        history = await service.list_history(CUSTOMER)

    assert outcome.status.no_show_count == 0
    assert history[0].dispute.status == DisputeStatus.AUTO_APPROVED


@pytest.mark.asyncio
async def test_resolution_requires_meaningful_notes(session_factory, clock) -> None:
    async with session_factory() as session:
        service = NoShowService(session, clock=clock)
        await _mark(service, 2)
        await service.submit_dispute("order-0", REASON, CUSTOMER)
        await service.submit_dispute("order-1", REASON, CUSTOMER)

        with pytest.raises(InvalidReasonError):
            await service.resolve_dispute("order-1", approve=True)
        with pytest.raises(InvalidReasonError):
            await service.resolve_dispute("order-1", approve=True, notes="   ok    ")

        still_pending = await service.list_disputes(status=DisputeStatus.PENDING)
        resolved = await service.resolve_dispute("order-1", approve=True, notes="  Tow truck receipt checked  ")
        status = await service.get_status(CUSTOMER)

    assert [dispute.order_id for dispute in still_pending] == ["order-1"]
    assert resolved.status == DisputeStatus.APPROVED
    assert resolved.resolution_notes == "Tow truck receipt checked"
    assert status.no_show_count == 0
