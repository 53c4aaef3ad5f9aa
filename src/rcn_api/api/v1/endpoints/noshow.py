"""API endpoints for no-show tiers, history and disputes."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from rcn_api.api.dependencies.errors import to_http_exception
from rcn_api.api.dependencies.security import require_internal_api_key
from rcn_api.core.clock import ensure_aware
from rcn_api.db.session import get_session
from rcn_api.models.noshow import DisputeStatus, NoShowDispute, NoShowEvent
from rcn_api.services.errors import RedemptionError
from rcn_api.services.noshow import NoShowService, NoShowStatus


router = APIRouter(prefix="/noshow", tags=["noshow"])


class NoShowStatusResponse(BaseModel):
    customerAddress: str
    tier: str
    noShowCount: int
    canBook: bool
    requiresDeposit: bool
    depositAmount: Optional[float]
    minimumAdvanceHours: int
    redemptionMultiplier: float
    restrictions: List[str]
    lastNoShowAt: Optional[datetime]
    bookingSuspendedUntil: Optional[datetime]
    successfulAppointmentsSinceTier3: int


class MarkNoShowRequest(BaseModel):
    orderId: str = Field(..., min_length=1, description="Order the customer missed")
    shopId: Optional[str] = Field(None, description="Shop reporting the no-show")
    notes: Optional[str] = Field(None, description="Free-form notes from the shop")


class DisputeSubmitRequest(BaseModel):
    orderId: str = Field(..., min_length=1, description="Order whose no-show is disputed")
    reason: str = Field(..., description="Customer explanation")
    customerAddress: str = Field(..., min_length=1, description="Wallet submitting the dispute")


class DisputeResponse(BaseModel):
    orderId: str
    customerAddress: str
    shopId: Optional[str]
    reason: str
    status: str
    submittedAt: datetime
    resolvedAt: Optional[datetime]
    resolvedBy: Optional[str]
    resolutionNotes: Optional[str]


class DisputeSubmitResponse(BaseModel):
    success: bool
    autoApproved: bool
    message: str
    status: str
    dispute: DisputeResponse
    customerStatus: NoShowStatusResponse


class DisputeResolveRequest(BaseModel):
    approve: bool = Field(..., description="Approve (true) or reject (false) the dispute")
    notes: Optional[str] = Field(None, description="Resolution notes shown to the customer, at least 10 characters")
    resolvedBy: Optional[str] = Field(None, description="Shop or staff member resolving the dispute")


class NoShowEventResponse(BaseModel):
    orderId: str
    shopId: Optional[str]
    markedNoShowAt: datetime
    notes: Optional[str]
    resultingTier: str
    disputeStatus: Optional[str]


def _serialize_status(snapshot: NoShowStatus) -> NoShowStatusResponse:
    return NoShowStatusResponse(
        customerAddress=snapshot.customer_address,
        tier=snapshot.tier.value,
        noShowCount=snapshot.no_show_count,
        canBook=snapshot.can_book,
        requiresDeposit=snapshot.requires_deposit,
        depositAmount=float(snapshot.deposit_amount) if snapshot.deposit_amount is not None else None,
        minimumAdvanceHours=snapshot.minimum_advance_hours,
        redemptionMultiplier=float(snapshot.redemption_multiplier),
        restrictions=list(snapshot.restrictions),
        lastNoShowAt=snapshot.last_no_show_at,
        bookingSuspendedUntil=snapshot.booking_suspended_until,
        successfulAppointmentsSinceTier3=snapshot.successful_appointments_since_tier3,
    )


def _serialize_dispute(dispute: NoShowDispute) -> DisputeResponse:
    return DisputeResponse(
        orderId=dispute.order_id,
        customerAddress=dispute.customer_address,
        shopId=dispute.event.shop_id if dispute.event else None,
        reason=dispute.reason,
        status=dispute.status.value,
        submittedAt=ensure_aware(dispute.submitted_at),
        resolvedAt=ensure_aware(dispute.resolved_at) if dispute.resolved_at else None,
        resolvedBy=dispute.resolved_by,
        resolutionNotes=dispute.resolution_notes,
    )


def _serialize_event(event: NoShowEvent) -> NoShowEventResponse:
    return NoShowEventResponse(
        orderId=event.order_id,
        shopId=event.shop_id,
        markedNoShowAt=ensure_aware(event.marked_no_show_at),
        notes=event.notes,
        resultingTier=event.resulting_tier.value,
        disputeStatus=event.dispute.status.value if event.dispute else None,
    )


@router.get("/disputes", response_model=List[DisputeResponse])
async def list_disputes(
    status_filter: Optional[str] = Query(None, alias="status"),
    shop_id: Optional[str] = Query(None, alias="shopId"),
    customer_address: Optional[str] = Query(None, alias="customerAddress"),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_session),
) -> List[DisputeResponse]:
    parsed_status: DisputeStatus | None = None
    if status_filter:
        try:
            parsed_status = DisputeStatus(status_filter)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Unsupported dispute status: {status_filter}") from exc

    service = NoShowService(db)
    disputes = await service.list_disputes(
        status=parsed_status,
        shop_id=shop_id,
        customer_address=customer_address,
        limit=limit,
    )
    return [_serialize_dispute(dispute) for dispute in disputes]


@router.post(
    "/disputes",
    response_model=DisputeSubmitResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_dispute(
    payload: DisputeSubmitRequest,
    db: AsyncSession = Depends(get_session),
) -> DisputeSubmitResponse:
    service = NoShowService(db)
    try:
        outcome = await service.submit_dispute(
            payload.orderId,
            payload.reason,
            customer_address=payload.customerAddress,
        )
    except RedemptionError as error:
        raise to_http_exception(error) from error

    return DisputeSubmitResponse(
        success=True,
        autoApproved=outcome.auto_approved,
        message=outcome.message,
        status=outcome.dispute.status.value,
        dispute=_serialize_dispute(outcome.dispute),
        customerStatus=_serialize_status(outcome.status),
    )


@router.post(
    "/disputes/{order_id}/resolve",
    response_model=DisputeResponse,
    dependencies=[Depends(require_internal_api_key)],
)
async def resolve_dispute(
    order_id: str,
    payload: DisputeResolveRequest,
    db: AsyncSession = Depends(get_session),
) -> DisputeResponse:
    service = NoShowService(db)
    try:
        dispute = await service.resolve_dispute(
            order_id,
            approve=payload.approve,
            notes=payload.notes,
            resolved_by=payload.resolvedBy,
        )
    except RedemptionError as error:
        raise to_http_exception(error) from error
    return _serialize_dispute(dispute)


@router.get("/{customer_address}/status", response_model=NoShowStatusResponse)
async def get_no_show_status(
    customer_address: str,
    db: AsyncSession = Depends(get_session),
) -> NoShowStatusResponse:
    service = NoShowService(db)
    return _serialize_status(await service.get_status(customer_address))


@router.get("/{customer_address}/history", response_model=List[NoShowEventResponse])
async def get_no_show_history(
    customer_address: str,
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
) -> List[NoShowEventResponse]:
    service = NoShowService(db)
    events = await service.list_history(customer_address, limit=limit)
    return [_serialize_event(event) for event in events]


@router.post(
    "/{customer_address}/mark",
    response_model=NoShowStatusResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_internal_api_key)],
)
async def mark_no_show(
    customer_address: str,
    payload: MarkNoShowRequest,
    db: AsyncSession = Depends(get_session),
) -> NoShowStatusResponse:
    service = NoShowService(db)
    try:
        snapshot = await service.mark_no_show(
            customer_address,
            payload.orderId,
            shop_id=payload.shopId,
            notes=payload.notes,
        )
    except RedemptionError as error:
        raise to_http_exception(error) from error
    return _serialize_status(snapshot)


@router.post(
    "/{customer_address}/appointments/completed",
    response_model=NoShowStatusResponse,
    dependencies=[Depends(require_internal_api_key)],
)
async def record_successful_appointment(
    customer_address: str,
    db: AsyncSession = Depends(get_session),
) -> NoShowStatusResponse:
    service = NoShowService(db)
    return _serialize_status(await service.record_successful_appointment(customer_address))
