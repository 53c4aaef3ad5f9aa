"""API endpoints for redemption verification and the shop/customer session handshake."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from rcn_api.api.dependencies.errors import to_http_exception
from rcn_api.api.dependencies.security import require_shop_id
from rcn_api.core.clock import ensure_aware
from rcn_api.db.session import get_session
from rcn_api.models.redemption import RedemptionSession, RedemptionSessionStatus
from rcn_api.services.errors import RedemptionError
from rcn_api.services.ledger import BalanceAccessor, SqlLedgerClient
from rcn_api.services.redemption import (
    RedemptionSessionService,
    qr_payload_for,
    signing_message_for,
)


router = APIRouter(prefix="/redemption", tags=["redemption"])


class RedemptionVerifyRequest(BaseModel):
    customerAddress: str = Field(..., min_length=1, description="Customer wallet address")
    shopId: str = Field(..., min_length=1, description="Shop requesting the redemption")
    amount: float = Field(..., allow_inf_nan=False, description="RCN amount to redeem, at most 2 decimal places")


class RedemptionVerifyResponse(BaseModel):
    canRedeem: bool
    maxRedeemable: float
    reason: Optional[str]
    message: str
    isHomeShop: bool
    earnedBalance: float
    tierMultiplier: float
    crossShopLimit: Optional[float]
    noShowTier: Optional[str]


class RedemptionSessionCreateRequest(BaseModel):
    customerAddress: str = Field(..., min_length=1, description="Customer wallet address")
    amount: float = Field(..., allow_inf_nan=False, description="RCN amount the shop wants to redeem")


class RedemptionSessionResponse(BaseModel):
    sessionId: UUID
    customerAddress: str
    shopId: str
    maxAmount: float
    status: str
    createdAt: datetime
    expiresAt: datetime
    approvedAt: Optional[datetime]
    usedAt: Optional[datetime]
    rejectedAt: Optional[datetime]
    rejectedBy: Optional[str]
    failureReason: Optional[str]
    transactionId: Optional[UUID]
    signingMessage: str


class RedemptionSessionCreateResponse(RedemptionSessionResponse):
    qrPayload: str
    maxRedeemable: float
    isHomeShop: bool


class RedemptionApproveRequest(BaseModel):
    signature: str = Field(..., min_length=1, description="EIP-191 signature over the signing message")
    customerAddress: str = Field(..., min_length=1, description="Wallet approving the session")


class RedemptionRejectRequest(BaseModel):
    customerAddress: str = Field(..., min_length=1, description="Wallet rejecting the session")


class RedemptionStatusResponse(BaseModel):
    sessionId: UUID
    status: str


class RedemptionConsumeResponse(BaseModel):
    sessionId: UUID
    status: str
    transactionId: UUID
    amount: float
    isCrossShop: bool


class CustomerBalancesResponse(BaseModel):
    customerAddress: str
    earnedBalance: float
    marketBalance: float
    lifetimeEarnings: float
    homeShopId: Optional[str]
    tier: str


def _serialize_session(session: RedemptionSession) -> RedemptionSessionResponse:
    return RedemptionSessionResponse(**_session_fields(session))


def _session_fields(session: RedemptionSession) -> dict[str, object]:
    return {
        "sessionId": session.id,
        "customerAddress": session.customer_address,
        "shopId": session.shop_id,
        "maxAmount": float(session.max_amount),
        "status": session.status.value,
        "createdAt": ensure_aware(session.created_at),
        "expiresAt": ensure_aware(session.expires_at),
        "approvedAt": ensure_aware(session.approved_at) if session.approved_at else None,
        "usedAt": ensure_aware(session.used_at) if session.used_at else None,
        "rejectedAt": ensure_aware(session.rejected_at) if session.rejected_at else None,
        "rejectedBy": session.rejected_by.value if session.rejected_by else None,
        "failureReason": session.failure_reason,
        "transactionId": session.transaction_id,
        "signingMessage": signing_message_for(session),
    }


@router.post("/verify", response_model=RedemptionVerifyResponse)
async def verify_redemption(
    payload: RedemptionVerifyRequest,
    db: AsyncSession = Depends(get_session),
) -> RedemptionVerifyResponse:
    service = RedemptionSessionService(db)
    try:
        decision = await service.authorizer.authorize(
            payload.customerAddress,
            payload.shopId,
            Decimal(str(payload.amount)),
        )
    except RedemptionError as error:
        raise to_http_exception(error) from error

    return RedemptionVerifyResponse(
        canRedeem=decision.can_redeem,
        maxRedeemable=float(decision.max_redeemable),
        reason=decision.reason,
        message=decision.message,
        isHomeShop=decision.is_home_shop,
        earnedBalance=float(decision.earned_balance),
        tierMultiplier=float(decision.tier_multiplier),
        crossShopLimit=float(decision.cross_shop_limit) if decision.cross_shop_limit is not None else None,
        noShowTier=decision.no_show_tier.value if decision.no_show_tier else None,
    )


@router.post(
    "/sessions",
    response_model=RedemptionSessionCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_redemption_session(
    payload: RedemptionSessionCreateRequest,
    shop_id: str = Depends(require_shop_id),
    db: AsyncSession = Depends(get_session),
) -> RedemptionSessionCreateResponse:
    service = RedemptionSessionService(db)
    try:
        created = await service.create_session(
            payload.customerAddress,
            shop_id,
            Decimal(str(payload.amount)),
        )
    except RedemptionError as error:
        raise to_http_exception(error) from error

    return RedemptionSessionCreateResponse(
        **_session_fields(created.session),
        qrPayload=created.qr_payload,
        maxRedeemable=float(created.decision.max_redeemable),
        isHomeShop=created.decision.is_home_shop,
    )


@router.get("/sessions", response_model=List[RedemptionSessionResponse])
async def list_redemption_sessions(
    status_filter: Optional[str] = Query(None, alias="status"),
    customer_address: Optional[str] = Query(None, alias="customerAddress"),
    shop_id: Optional[str] = Query(None, alias="shopId"),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_session),
) -> List[RedemptionSessionResponse]:
    parsed_status: RedemptionSessionStatus | None = None
    if status_filter:
        try:
            parsed_status = RedemptionSessionStatus(status_filter)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Unsupported session status: {status_filter}") from exc

    service = RedemptionSessionService(db)
    sessions = await service.list_sessions(
        status=parsed_status,
        customer_address=customer_address,
        shop_id=shop_id,
        limit=limit,
    )
    return [_serialize_session(session) for session in sessions]


@router.get("/sessions/{session_id}", response_model=RedemptionSessionResponse)
async def get_redemption_session(
    session_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> RedemptionSessionResponse:
    service = RedemptionSessionService(db)
    try:
        session = await service.get_session(session_id)
    except RedemptionError as error:
        raise to_http_exception(error) from error
    return _serialize_session(session)


@router.get("/sessions/{session_id}/qr")
async def get_redemption_session_qr(
    session_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    service = RedemptionSessionService(db)
    try:
        session = await service.get_session(session_id)
    except RedemptionError as error:
        raise to_http_exception(error) from error
    return {"sessionId": str(session.id), "qrPayload": qr_payload_for(session)}


@router.post("/sessions/{session_id}/approve", response_model=RedemptionStatusResponse)
async def approve_redemption_session(
    session_id: UUID,
    payload: RedemptionApproveRequest,
    db: AsyncSession = Depends(get_session),
) -> RedemptionStatusResponse:
    service = RedemptionSessionService(db)
    try:
        session = await service.approve_session(
            session_id,
            payload.signature,
            customer_address=payload.customerAddress,
        )
    except RedemptionError as error:
        raise to_http_exception(error) from error
    return RedemptionStatusResponse(sessionId=session.id, status=session.status.value)


@router.post("/sessions/{session_id}/reject", response_model=RedemptionStatusResponse)
async def reject_redemption_session(
    session_id: UUID,
    payload: Optional[RedemptionRejectRequest] = None,
    db: AsyncSession = Depends(get_session),
) -> RedemptionStatusResponse:
    service = RedemptionSessionService(db)
    try:
        session = await service.reject_session(
            session_id,
            customer_address=payload.customerAddress if payload else None,
        )
    except RedemptionError as error:
        raise to_http_exception(error) from error
    return RedemptionStatusResponse(sessionId=session.id, status=session.status.value)


@router.post("/sessions/{session_id}/cancel", response_model=RedemptionStatusResponse)
async def cancel_redemption_session(
    session_id: UUID,
    shop_id: str = Depends(require_shop_id),
    db: AsyncSession = Depends(get_session),
) -> RedemptionStatusResponse:
    service = RedemptionSessionService(db)
    try:
        session = await service.cancel_session(session_id, shop_id)
    except RedemptionError as error:
        raise to_http_exception(error) from error
    return RedemptionStatusResponse(sessionId=session.id, status=session.status.value)


@router.post("/sessions/{session_id}/consume", response_model=RedemptionConsumeResponse)
async def consume_redemption_session(
    session_id: UUID,
    shop_id: str = Depends(require_shop_id),
    db: AsyncSession = Depends(get_session),
) -> RedemptionConsumeResponse:
    service = RedemptionSessionService(db)
    try:
        result = await service.consume_session(session_id, shop_id)
    except RedemptionError as error:
        raise to_http_exception(error) from error

    return RedemptionConsumeResponse(
        sessionId=result.session.id,
        status=result.session.status.value,
        transactionId=result.transaction.id,
        amount=float(result.transaction.amount),
        isCrossShop=result.transaction.is_cross_shop,
    )


@router.get("/customers/{customer_address}/balances", response_model=CustomerBalancesResponse)
async def get_customer_balances(
    customer_address: str,
    db: AsyncSession = Depends(get_session),
) -> CustomerBalancesResponse:
    accessor = BalanceAccessor(SqlLedgerClient(db))
    try:
        balances = await accessor.get_balances(customer_address)
    except RedemptionError as error:
        raise to_http_exception(error) from error

    return CustomerBalancesResponse(
        customerAddress=balances.customer_address,
        earnedBalance=float(balances.earned_balance),
        marketBalance=float(balances.market_balance),
        lifetimeEarnings=float(balances.lifetime_earnings),
        homeShopId=balances.home_shop_id,
        tier=balances.tier.value,
    )
