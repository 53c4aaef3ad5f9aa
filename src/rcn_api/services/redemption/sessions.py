"""Redemption session protocol: create, approve, reject, cancel, consume, expire."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import NoReturn, Optional, Sequence
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rcn_api.core.clock import Clock, utcnow
from rcn_api.core.settings import settings
from rcn_api.models.ledger import RcnTransaction, TokenSource, TransactionStatus, TransactionType
from rcn_api.models.redemption import (
    LIVE_SESSION_STATUSES,
    RedemptionRejectedBy,
    RedemptionSession,
    RedemptionSessionStatus,
)
from rcn_api.observability.redemption import get_redemption_store
from rcn_api.services.errors import (
    InsufficientFundsError,
    InvalidSignatureError,
    InvalidStateError,
    RedemptionDeniedError,
    SessionExpiredError,
    SessionNotFoundError,
    UnauthorizedError,
)
from rcn_api.services.ledger.balance_accessor import BalanceAccessor
from rcn_api.services.ledger.client import LedgerClient, SqlLedgerClient, normalize_address
from rcn_api.services.noshow.service import NoShowService
from rcn_api.services.redemption.authorization import CENT, RedemptionAuthorizer, RedemptionDecision
from rcn_api.services.redemption.signatures import (
    EthSignatureVerifier,
    SignatureVerifier,
    build_approval_message,
    format_amount,
    format_expiry,
    signature_matches,
)

EXPIRED_REASON = "Session expired before completion"


@dataclass
class CreatedSession:
    session: RedemptionSession
    decision: RedemptionDecision
    signing_message: str
    qr_payload: str


@dataclass
class ConsumptionResult:
    session: RedemptionSession
    transaction: RcnTransaction


def signing_message_for(session: RedemptionSession) -> str:
    return build_approval_message(
        session_id=str(session.id),
        customer_address=session.customer_address,
        shop_id=session.shop_id,
        max_amount=Decimal(session.max_amount),
        expires_at=session.expires_at,
    )


def qr_payload_for(session: RedemptionSession) -> str:
    """Compact payload the shop device renders for the customer to scan."""

    return json.dumps(
        {
            "type": "rcn_redemption",
            "sessionId": str(session.id),
            "customerAddress": session.customer_address,
            "shopId": session.shop_id,
            "amount": format_amount(Decimal(session.max_amount)),
            "expiresAt": format_expiry(session.expires_at),
        },
        separators=(",", ":"),
    )


def _coerce_session_id(session_id: UUID | str) -> UUID:
    if isinstance(session_id, UUID):
        return session_id
    try:
        return UUID(str(session_id))
    except ValueError as exc:
        raise SessionNotFoundError(f"Redemption session {session_id} not found") from exc


class RedemptionSessionService:
    """Coordinates the shop/customer handshake around a single redemption.

    Every transition is a conditional ``UPDATE ... WHERE status = <expected>``
    whose row count decides the winner, so concurrent callers never need an
    in-process lock. Expiry is evaluated lazily against ``expires_at`` on every
    access; the sweeper worker only tidies up rows nobody touched.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        ledger: LedgerClient | None = None,
        verifier: SignatureVerifier | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._db = session
        self._clock = clock or utcnow
        self._ledger = ledger or SqlLedgerClient(session)
        self._verifier = verifier or EthSignatureVerifier()
        self._authorizer = RedemptionAuthorizer(
            BalanceAccessor(self._ledger),
            NoShowService(session, clock=self._clock),
            clock=self._clock,
        )
        self._store = get_redemption_store()

    @property
    def authorizer(self) -> RedemptionAuthorizer:
        return self._authorizer

    async def create_session(self, customer_address: str, shop_id: str, amount: Decimal) -> CreatedSession:
        """Open a pending session after authorization approves the amount."""

        address = normalize_address(customer_address)
        amount = Decimal(amount)
        decision = await self._authorizer.authorize(address, shop_id, amount)
        if not decision.can_redeem:
            self._store.record_session_transition("denied")
            raise RedemptionDeniedError(decision.message, max_redeemable=decision.max_redeemable)

        await self._expire_matching(customer_address=address, shop_id=shop_id)
        now = self._clock()
        existing = await self._db.execute(
            select(RedemptionSession.id)
            .where(
                RedemptionSession.customer_address == address,
                RedemptionSession.shop_id == shop_id,
                RedemptionSession.status == RedemptionSessionStatus.PENDING,
                RedemptionSession.expires_at > now,
            )
            .limit(1)
        )
        if existing.scalar_one_or_none() is not None:
            raise InvalidStateError(
                "A pending redemption session already exists",
                current_status=RedemptionSessionStatus.PENDING.value,
            )

        session = RedemptionSession(
            id=uuid4(),
            customer_address=address,
            shop_id=shop_id,
            max_amount=amount.quantize(CENT),
            status=RedemptionSessionStatus.PENDING,
            created_at=now,
            expires_at=now + timedelta(seconds=settings.redemption_session_ttl_seconds),
            metadata_json={
                "isHomeShop": decision.is_home_shop,
                "maxRedeemable": str(decision.max_redeemable),
                "tierMultiplier": str(decision.tier_multiplier),
            },
        )
        self._db.add(session)
        await self._db.commit()
        session = await self._get(session.id)

        self._store.record_session_transition(RedemptionSessionStatus.PENDING.value)
        logger.info(
            "Redemption session created",
            session_id=str(session.id),
            customer_address=address,
            shop_id=shop_id,
            amount=str(session.max_amount),
            expires_at=session.expires_at.isoformat(),
        )
        return CreatedSession(
            session=session,
            decision=decision,
            signing_message=signing_message_for(session),
            qr_payload=qr_payload_for(session),
        )

    async def approve_session(
        self,
        session_id: UUID | str,
        signature: str,
        customer_address: str,
    ) -> RedemptionSession:
        """Customer approval; the signature must recover to the session's customer.

        Eligibility is re-checked first so a customer whose balance or no-show
        tier changed since creation cannot approve a session consume would refuse.
        """

        session = await self.get_session(session_id)
        self._assert_customer(session, customer_address)
        self._assert_transition_allowed(session, RedemptionSessionStatus.PENDING, "approved")

        decision = await self._authorizer.authorize(
            session.customer_address,
            session.shop_id,
            Decimal(session.max_amount),
        )
        if not decision.can_redeem:
            self._store.record_session_transition("denied")
            raise RedemptionDeniedError(decision.message, max_redeemable=decision.max_redeemable)

        if not signature_matches(
            self._verifier,
            message=signing_message_for(session),
            signature=signature,
            expected_address=session.customer_address,
        ):
            self._store.record_session_transition("invalid_signature")
            logger.warning(
                "Redemption approval signature mismatch",
                session_id=str(session.id),
                customer_address=session.customer_address,
            )
            raise InvalidSignatureError(
                "Invalid customer signature. Please ensure you are signing with the correct wallet."
            )

        now = self._clock()
        result = await self._db.execute(
            update(RedemptionSession)
            .where(
                RedemptionSession.id == session.id,
                RedemptionSession.status == RedemptionSessionStatus.PENDING,
                RedemptionSession.expires_at > now,
            )
            .values(status=RedemptionSessionStatus.APPROVED, approved_at=now, signature=signature)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._db.rollback()
            await self._raise_lost_transition(session.id, "approved")

        await self._db.commit()
        self._store.record_session_transition(RedemptionSessionStatus.APPROVED.value)
        logger.info("Redemption session approved", session_id=str(session.id), customer_address=session.customer_address)
        return await self._get(session.id)

    async def reject_session(
        self,
        session_id: UUID | str,
        customer_address: Optional[str],
    ) -> RedemptionSession:
        """Customer declines a pending session; only that customer may do so."""

        session = await self.get_session(session_id)
        self._assert_customer(session, customer_address)
        return await self._reject_pending(session, RedemptionRejectedBy.CUSTOMER, "Rejected by customer")

    async def cancel_session(self, session_id: UUID | str, shop_id: str) -> RedemptionSession:
        """Shop withdraws its own pending request."""

        session = await self.get_session(session_id)
        if session.shop_id != shop_id:
            raise UnauthorizedError("Redemption session belongs to a different shop")
        return await self._reject_pending(session, RedemptionRejectedBy.SHOP, "Cancelled by shop")

    async def consume_session(self, session_id: UUID | str, shop_id: str) -> ConsumptionResult:
        """Debit the customer for an approved session exactly once.

        The status claim runs first so the database serializes concurrent
        consumers on the session row; re-authorization, the ledger debit and the
        transaction insert then share that database transaction.
        """

        sid = _coerce_session_id(session_id)
        now = self._clock()
        claim = await self._db.execute(
            update(RedemptionSession)
            .where(
                RedemptionSession.id == sid,
                RedemptionSession.status == RedemptionSessionStatus.APPROVED,
                RedemptionSession.shop_id == shop_id,
                RedemptionSession.expires_at > now,
            )
            .values(status=RedemptionSessionStatus.USED, used_at=now)
            .execution_options(synchronize_session=False)
        )
        if claim.rowcount != 1:
            await self._db.rollback()
            session = await self.get_session(sid)
            if session.shop_id != shop_id:
                raise UnauthorizedError("Redemption session belongs to a different shop")
            self._store.record_consumption("conflict")
            await self._raise_lost_transition(sid, "used")

        try:
            session = await self._get(sid)
            amount = Decimal(session.max_amount)
            decision = await self._authorizer.authorize(session.customer_address, shop_id, amount)
            if not decision.can_redeem:
                raise RedemptionDeniedError(decision.message, max_redeemable=decision.max_redeemable)

            await self._ledger.debit(session.customer_address, amount)
            transaction = RcnTransaction(
                id=uuid4(),
                transaction_type=TransactionType.REDEEM,
                customer_address=session.customer_address,
                shop_id=shop_id,
                amount=amount,
                token_source=TokenSource.EARNED,
                is_cross_shop=not decision.is_home_shop,
                status=TransactionStatus.CONFIRMED,
                session_id=session.id,
                metadata_json={
                    "maxRedeemable": str(decision.max_redeemable),
                    "tierMultiplier": str(decision.tier_multiplier),
                },
                created_at=now,
            )
            self._db.add(transaction)
            session.transaction_id = transaction.id
            await self._db.commit()
        except Exception as exc:
            await self._db.rollback()
            await self._reject_failed_consumption(sid, str(exc))
            if isinstance(exc, (RedemptionDeniedError, InsufficientFundsError)):
                outcome = "denied" if isinstance(exc, RedemptionDeniedError) else "insufficient_funds"
                self._store.record_consumption(outcome)
                logger.warning("Redemption consumption refused", session_id=str(sid), shop_id=shop_id, reason=str(exc))
            else:
                self._store.record_consumption("failed")
                logger.exception("Redemption consumption failed", session_id=str(sid), shop_id=shop_id)
            raise

        self._store.record_session_transition(RedemptionSessionStatus.USED.value)
        self._store.record_consumption("succeeded", cross_shop=transaction.is_cross_shop)
        logger.info(
            "Redemption session consumed",
            session_id=str(sid),
            shop_id=shop_id,
            customer_address=session.customer_address,
            amount=str(amount),
            transaction_id=str(transaction.id),
            is_cross_shop=transaction.is_cross_shop,
        )
        return ConsumptionResult(session=await self._get(sid), transaction=transaction)

    async def get_session(self, session_id: UUID | str) -> RedemptionSession:
        """Load a session after persisting any lapsed expiry."""

        sid = _coerce_session_id(session_id)
        await self._expire_matching(session_id=sid)
        return await self._get(sid)

    async def list_sessions(
        self,
        *,
        status: RedemptionSessionStatus | None = None,
        customer_address: str | None = None,
        shop_id: str | None = None,
        limit: int = 50,
    ) -> Sequence[RedemptionSession]:
        address = normalize_address(customer_address) if customer_address else None
        await self._expire_matching(customer_address=address, shop_id=shop_id)

        stmt = (
            select(RedemptionSession)
            .order_by(RedemptionSession.created_at.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        if status is not None:
            stmt = stmt.where(RedemptionSession.status == status)
        if address:
            stmt = stmt.where(RedemptionSession.customer_address == address)
        if shop_id:
            stmt = stmt.where(RedemptionSession.shop_id == shop_id)
        result = await self._db.execute(stmt)
        return result.scalars().all()

    async def expire_stale_sessions(self, *, limit: int | None = None) -> int:
        """Mark up to ``limit`` lapsed live sessions as expired; returns the count."""

        now = self._clock()
        candidates = (
            select(RedemptionSession.id)
            .where(
                RedemptionSession.status.in_(LIVE_SESSION_STATUSES),
                RedemptionSession.expires_at <= now,
            )
            .order_by(RedemptionSession.expires_at)
            .limit(limit or settings.redemption_session_sweep_limit)
        )
        ids = list((await self._db.execute(candidates)).scalars().all())
        if not ids:
            return 0
        return await self._expire_where(RedemptionSession.id.in_(ids), now=now)

    async def _expire_matching(
        self,
        *,
        session_id: UUID | None = None,
        customer_address: str | None = None,
        shop_id: str | None = None,
    ) -> int:
        criteria = []
        if session_id is not None:
            criteria.append(RedemptionSession.id == session_id)
        if customer_address:
            criteria.append(RedemptionSession.customer_address == customer_address)
        if shop_id:
            criteria.append(RedemptionSession.shop_id == shop_id)
        return await self._expire_where(*criteria, now=self._clock())

    async def _expire_where(self, *criteria, now) -> int:
        result = await self._db.execute(
            update(RedemptionSession)
            .where(
                *criteria,
                RedemptionSession.status.in_(LIVE_SESSION_STATUSES),
                RedemptionSession.expires_at <= now,
            )
            .values(status=RedemptionSessionStatus.EXPIRED, failure_reason=EXPIRED_REASON)
            .execution_options(synchronize_session=False)
        )
        expired = result.rowcount or 0
        await self._db.commit()
        if expired:
            self._store.record_session_transition(RedemptionSessionStatus.EXPIRED.value, count=expired)
            logger.info("Redemption sessions expired", count=expired)
        return expired

    async def _reject_pending(
        self,
        session: RedemptionSession,
        rejected_by: RedemptionRejectedBy,
        reason: str,
    ) -> RedemptionSession:
        self._assert_transition_allowed(session, RedemptionSessionStatus.PENDING, "rejected")
        now = self._clock()
        result = await self._db.execute(
            update(RedemptionSession)
            .where(
                RedemptionSession.id == session.id,
                RedemptionSession.status == RedemptionSessionStatus.PENDING,
                RedemptionSession.expires_at > now,
            )
            .values(
                status=RedemptionSessionStatus.REJECTED,
                rejected_at=now,
                rejected_by=rejected_by,
                failure_reason=reason,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._db.rollback()
            await self._raise_lost_transition(session.id, "rejected")

        await self._db.commit()
        self._store.record_session_transition(RedemptionSessionStatus.REJECTED.value)
        logger.info(
            "Redemption session rejected",
            session_id=str(session.id),
            rejected_by=rejected_by.value,
        )
        return await self._get(session.id)

    async def _reject_failed_consumption(self, session_id: UUID, reason: str) -> None:
        result = await self._db.execute(
            update(RedemptionSession)
            .where(
                RedemptionSession.id == session_id,
                RedemptionSession.status == RedemptionSessionStatus.APPROVED,
            )
            .values(
                status=RedemptionSessionStatus.REJECTED,
                rejected_at=self._clock(),
                rejected_by=RedemptionRejectedBy.ENGINE,
                failure_reason=reason[:500],
            )
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        if result.rowcount:
            self._store.record_session_transition(RedemptionSessionStatus.REJECTED.value)

    async def _raise_lost_transition(self, session_id: UUID, target: str) -> NoReturn:
        """Explain why a conditional transition matched no row."""

        session = await self.get_session(session_id)
        if session.status == RedemptionSessionStatus.EXPIRED:
            raise SessionExpiredError()
        raise InvalidStateError(
            f"Cannot move redemption session from {session.status.value} to {target}",
            current_status=session.status.value,
        )

    @staticmethod
    def _assert_customer(session: RedemptionSession, customer_address: Optional[str]) -> None:
        if not customer_address or normalize_address(customer_address) != session.customer_address:
            raise UnauthorizedError("Redemption session belongs to a different customer")

    @staticmethod
    def _assert_transition_allowed(
        session: RedemptionSession,
        expected: RedemptionSessionStatus,
        target: str,
    ) -> None:
        if session.status == RedemptionSessionStatus.EXPIRED:
            raise SessionExpiredError()
        if session.status != expected:
            raise InvalidStateError(
                f"Cannot move redemption session from {session.status.value} to {target}",
                current_status=session.status.value,
            )

    async def _get(self, session_id: UUID) -> RedemptionSession:
        stmt = (
            select(RedemptionSession)
            .where(RedemptionSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        session = result.scalar_one_or_none()
        if session is None:
            raise SessionNotFoundError(f"Redemption session {session_id} not found")
        return session


__all__ = [
    "ConsumptionResult",
    "CreatedSession",
    "RedemptionSessionService",
    "qr_payload_for",
    "signing_message_for",
]
