"""No-show trust tier persistence, de-escalation and dispute handling."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Sequence

from loguru import logger
from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rcn_api.core.clock import Clock, ensure_aware, utcnow
from rcn_api.core.settings import settings
from rcn_api.models.noshow import (
    DisputeStatus,
    NoShowDispute,
    NoShowEvent,
    NoShowRecord,
    NoShowTier,
)
from rcn_api.observability.redemption import get_redemption_store
from rcn_api.services.errors import (
    InvalidReasonError,
    InvalidStateError,
    NoShowEventNotFoundError,
    NotFoundError,
    UnauthorizedError,
    WindowExpiredError,
)
from rcn_api.services.ledger.client import normalize_address
from rcn_api.services.noshow.policy import NoShowStatus, build_status, effective_tier

AUTO_APPROVED_MESSAGE = "Your dispute has been automatically approved. The no-show penalty has been reversed."
PENDING_MESSAGE = "Your dispute has been submitted and is pending shop review."
AUTO_RESOLVER = "system_auto"


@dataclass
class DisputeOutcome:
    dispute: NoShowDispute
    auto_approved: bool
    message: str
    status: NoShowStatus


class NoShowService:
    """Tracks missed appointments and derives booking/redemption restrictions.

    Counters are only ever changed with in-database arithmetic so concurrent
    marks and reversals on the same customer cannot lose updates.
    """

    def __init__(self, session: AsyncSession, *, clock: Clock | None = None) -> None:
        self._db = session
        self._clock = clock or utcnow

    async def get_record(self, customer_address: str) -> NoShowRecord | None:
        stmt = (
            select(NoShowRecord)
            .where(NoShowRecord.customer_address == normalize_address(customer_address))
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure_record(self, customer_address: str) -> NoShowRecord:
        """Fetch or create the trust record for a customer."""

        address = normalize_address(customer_address)
        record = await self.get_record(address)
        if record:
            return record

        record = NoShowRecord(customer_address=address)
        self._db.add(record)
        try:
            await self._db.commit()
            logger.info("Created no-show record", customer_address=address)
        except IntegrityError:
            await self._db.rollback()
            logger.warning("Detected race when creating no-show record", customer_address=address)
            return await self.ensure_record(address)
        return record

    async def get_status(self, customer_address: str) -> NoShowStatus:
        address = normalize_address(customer_address)
        record = await self.get_record(address)
        return build_status(address, record, self._clock())

    async def mark_no_show(
        self,
        customer_address: str,
        order_id: str,
        *,
        shop_id: str | None = None,
        notes: str | None = None,
    ) -> NoShowStatus:
        """Count a missed appointment and open its dispute window."""

        address = normalize_address(customer_address)
        if await self._get_event(order_id) is not None:
            raise InvalidStateError(f"No-show already recorded for order {order_id}")

        await self.ensure_record(address)
        now = self._clock()

        stmt = (
            update(NoShowRecord)
            .where(NoShowRecord.customer_address == address)
            .values(
                no_show_count=NoShowRecord.no_show_count + 1,
                last_no_show_at=now,
                successful_appointments_since_tier3=0,
                tier_relief_bands=0,
            )
            .returning(NoShowRecord.no_show_count)
            .execution_options(synchronize_session=False)
        )
        new_count = (await self._db.execute(stmt)).scalar_one()
        tier = effective_tier(new_count)
        suspended_until = now + timedelta(days=settings.noshow_suspension_days) if tier == NoShowTier.SUSPENDED else None
        await self._db.execute(
            update(NoShowRecord)
            .where(NoShowRecord.customer_address == address)
            .values(booking_suspended_until=suspended_until)
            .execution_options(synchronize_session=False)
        )

        self._db.add(
            NoShowEvent(
                order_id=order_id,
                customer_address=address,
                shop_id=shop_id,
                marked_no_show_at=now,
                notes=notes,
                resulting_tier=tier,
            )
        )
        try:
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            raise InvalidStateError(f"No-show already recorded for order {order_id}") from exc

        get_redemption_store().record_no_show(tier.value)
        logger.info(
            "No-show recorded",
            customer_address=address,
            order_id=order_id,
            shop_id=shop_id,
            no_show_count=new_count,
            tier=tier.value,
        )
        return await self.get_status(address)

    async def record_successful_appointment(self, customer_address: str) -> NoShowStatus:
        """Feed de-escalation: enough completed visits at the deposit tier earn relief."""

        address = normalize_address(customer_address)
        stmt = (
            update(NoShowRecord)
            .where(
                NoShowRecord.customer_address == address,
                NoShowRecord.no_show_count >= settings.noshow_deposit_threshold,
                NoShowRecord.no_show_count < settings.noshow_suspension_threshold,
                NoShowRecord.tier_relief_bands == 0,
            )
            .values(successful_appointments_since_tier3=NoShowRecord.successful_appointments_since_tier3 + 1)
            .returning(NoShowRecord.successful_appointments_since_tier3)
            .execution_options(synchronize_session=False)
        )
        successes = (await self._db.execute(stmt)).scalar_one_or_none()
        if successes is None:
            await self._db.rollback()
            return await self.get_status(address)

        if successes >= settings.noshow_deposit_reset_after_successful:
            await self._db.execute(
                update(NoShowRecord)
                .where(NoShowRecord.customer_address == address)
                .values(tier_relief_bands=1, successful_appointments_since_tier3=0)
                .execution_options(synchronize_session=False)
            )
            logger.info("Deposit tier relief granted", customer_address=address, successful_appointments=successes)
        await self._db.commit()
        return await self.get_status(address)

    async def submit_dispute(
        self,
        order_id: str,
        reason: str,
        customer_address: str,
    ) -> DisputeOutcome:
        """File the customer's dispute; only the customer who was marked may dispute."""

        event = await self._get_event(order_id)
        if event is None:
            raise NoShowEventNotFoundError(f"No-show record not found for order {order_id}")
        if not customer_address or normalize_address(customer_address) != event.customer_address:
            raise UnauthorizedError("Only the customer who missed the appointment can dispute it")

        now = self._clock()
        window_end = ensure_aware(event.marked_no_show_at) + timedelta(days=settings.noshow_dispute_window_days)
        if now > window_end:
            raise WindowExpiredError(
                f"Dispute window has expired. Disputes must be submitted within "
                f"{settings.noshow_dispute_window_days} days of the no-show."
            )

        cleaned = (reason or "").strip()
        if len(cleaned) < settings.noshow_dispute_min_reason_length:
            raise InvalidReasonError(
                f"Please provide a reason of at least {settings.noshow_dispute_min_reason_length} characters"
            )
        if event.dispute is not None:
            raise InvalidStateError(
                f"Order {order_id} has already been disputed",
                current_status=event.dispute.status.value,
            )

        address = event.customer_address
        await self.ensure_record(address)
        counter = (
            update(NoShowRecord)
            .where(NoShowRecord.customer_address == address)
            .values(dispute_count=NoShowRecord.dispute_count + 1)
            .returning(NoShowRecord.dispute_count)
            .execution_options(synchronize_session=False)
        )
        dispute_number = (await self._db.execute(counter)).scalar_one()
        auto_approve = settings.noshow_auto_approve_first_dispute and dispute_number == 1

        dispute = NoShowDispute(
            event=event,
            order_id=order_id,
            customer_address=address,
            reason=cleaned,
            submitted_at=now,
            status=DisputeStatus.AUTO_APPROVED if auto_approve else DisputeStatus.PENDING,
        )
        if auto_approve:
            dispute.resolved_at = now
            dispute.resolved_by = AUTO_RESOLVER
            dispute.resolution_notes = "Auto-approved: first dispute"
        self._db.add(dispute)
        try:
            await self._db.flush()
        except IntegrityError as exc:
            await self._db.rollback()
            raise InvalidStateError(f"Order {order_id} has already been disputed") from exc

        if auto_approve:
            await self._reverse_no_show(address)
        await self._db.commit()

        outcome = dispute.status.value
        get_redemption_store().record_dispute(outcome)
        logger.info(
            "No-show dispute submitted",
            order_id=order_id,
            customer_address=address,
            status=outcome,
            dispute_number=dispute_number,
        )
        return DisputeOutcome(
            dispute=dispute,
            auto_approved=auto_approve,
            message=AUTO_APPROVED_MESSAGE if auto_approve else PENDING_MESSAGE,
            status=await self.get_status(address),
        )

    async def resolve_dispute(
        self,
        order_id: str,
        *,
        approve: bool,
        notes: str | None = None,
        resolved_by: str | None = None,
    ) -> NoShowDispute:
        """Settle a pending dispute; approval reverses the no-show."""

        dispute = await self._get_dispute(order_id)
        if dispute is None:
            raise NotFoundError(f"Dispute not found for order {order_id}")
        if dispute.status != DisputeStatus.PENDING:
            raise InvalidStateError(
                f"Dispute is already {dispute.status.value}. Only pending disputes can be resolved.",
                current_status=dispute.status.value,
            )

        cleaned = (notes or "").strip()
        if len(cleaned) < settings.noshow_resolution_min_notes_length:
            raise InvalidReasonError(
                f"Please provide resolution notes of at least {settings.noshow_resolution_min_notes_length} characters"
            )

        target = DisputeStatus.APPROVED if approve else DisputeStatus.REJECTED
        stmt = (
            update(NoShowDispute)
            .where(NoShowDispute.order_id == order_id, NoShowDispute.status == DisputeStatus.PENDING)
            .values(
                status=target,
                resolved_at=self._clock(),
                resolved_by=resolved_by,
                resolution_notes=cleaned,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        if result.rowcount != 1:
            await self._db.rollback()
            raise InvalidStateError(
                f"Dispute is already {dispute.status.value}. Only pending disputes can be resolved.",
                current_status=dispute.status.value,
            )

        if approve:
            await self._reverse_no_show(dispute.customer_address)
        await self._db.commit()

        get_redemption_store().record_dispute(target.value)
        logger.info(
            "No-show dispute resolved",
            order_id=order_id,
            customer_address=dispute.customer_address,
            status=target.value,
            resolved_by=resolved_by,
        )
        resolved = await self._get_dispute(order_id)
        if resolved is None:
            raise NotFoundError(f"Dispute not found for order {order_id}")
        return resolved

    async def list_history(self, customer_address: str, *, limit: int = 20) -> Sequence[NoShowEvent]:
        stmt = (
            select(NoShowEvent)
            .options(selectinload(NoShowEvent.dispute))
            .where(NoShowEvent.customer_address == normalize_address(customer_address))
            .order_by(NoShowEvent.marked_no_show_at.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalars().all()

    async def list_disputes(
        self,
        *,
        status: DisputeStatus | None = None,
        shop_id: str | None = None,
        customer_address: str | None = None,
        limit: int = 50,
    ) -> Sequence[NoShowDispute]:
        stmt = (
            select(NoShowDispute)
            .join(NoShowEvent, NoShowEvent.order_id == NoShowDispute.order_id)
            .options(selectinload(NoShowDispute.event))
            .order_by(NoShowDispute.submitted_at.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        if status is not None:
            stmt = stmt.where(NoShowDispute.status == status)
        if shop_id:
            stmt = stmt.where(NoShowEvent.shop_id == shop_id)
        if customer_address:
            stmt = stmt.where(NoShowDispute.customer_address == normalize_address(customer_address))
        result = await self._db.execute(stmt)
        return result.scalars().all()

    async def _reverse_no_show(self, customer_address: str) -> None:
        stmt = (
            update(NoShowRecord)
            .where(NoShowRecord.customer_address == customer_address)
            .values(
                no_show_count=case(
                    (NoShowRecord.no_show_count > 0, NoShowRecord.no_show_count - 1),
                    else_=0,
                )
            )
            .returning(NoShowRecord.no_show_count, NoShowRecord.tier_relief_bands)
            .execution_options(synchronize_session=False)
        )
        new_count, relief = (await self._db.execute(stmt)).one()
        tier = effective_tier(new_count, relief)
        if tier != NoShowTier.SUSPENDED:
            await self._db.execute(
                update(NoShowRecord)
                .where(NoShowRecord.customer_address == customer_address)
                .values(booking_suspended_until=None)
                .execution_options(synchronize_session=False)
            )
        logger.info(
            "No-show reversed",
            customer_address=customer_address,
            no_show_count=new_count,
            tier=tier.value,
        )

    async def _get_event(self, order_id: str) -> Optional[NoShowEvent]:
        stmt = (
            select(NoShowEvent)
            .options(selectinload(NoShowEvent.dispute))
            .where(NoShowEvent.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_dispute(self, order_id: str) -> Optional[NoShowDispute]:
        stmt = (
            select(NoShowDispute)
            .options(selectinload(NoShowDispute.event))
            .where(NoShowDispute.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()


__all__ = ["AUTO_APPROVED_MESSAGE", "DisputeOutcome", "NoShowService", "PENDING_MESSAGE"]
