"""Liveness and readiness probes."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Literal, Optional

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rcn_api.core.settings import settings
from rcn_api.db.session import get_session
from rcn_api.workers import RedemptionSessionSweeper

ComponentState = Literal["ready", "starting", "disabled", "error"]
OverallState = Literal["ready", "degraded", "error"]


router = APIRouter()


class ComponentStatus(BaseModel):
    status: ComponentState
    detail: Optional[str] = None
    lastRunAt: Optional[datetime] = None
    lastRunExpired: Optional[int] = None


class ReadinessPayload(BaseModel):
    status: OverallState
    components: Dict[str, ComponentStatus]


async def _database_status(session: AsyncSession) -> ComponentStatus:
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Readiness database probe failed", error=str(exc))
        return ComponentStatus(status="error", detail=f"Database unreachable ({exc})")
    return ComponentStatus(status="ready")


def _sweeper_status(sweeper: RedemptionSessionSweeper | None) -> ComponentStatus:
    if not settings.redemption_session_sweeper_enabled or sweeper is None:
        return ComponentStatus(status="disabled", detail="Expiry is enforced on access; background sweep is off")

    state: ComponentState = "ready"
    detail: Optional[str] = None
    if sweeper.last_error:
        state, detail = "error", sweeper.last_error
    elif not sweeper.is_running:
        state, detail = "starting", "Redemption session sweeper not running"
    return ComponentStatus(
        status=state,
        detail=detail,
        lastRunAt=sweeper.last_run_at,
        lastRunExpired=sweeper.last_run_expired,
    )


def _overall(components: Dict[str, ComponentStatus]) -> OverallState:
    if components["database"].status == "error":
        return "error"
    if any(component.status in ("error", "starting") for component in components.values()):
        return "degraded"
    return "ready"


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components = {
        "database": await _database_status(session),
        "redemption_session_sweeper": _sweeper_status(
            getattr(request.app.state, "redemption_session_sweeper", None)
        ),
    }
    return ReadinessPayload(status=_overall(components), components=components)
