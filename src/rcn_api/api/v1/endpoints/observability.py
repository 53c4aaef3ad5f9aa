"""Observability endpoints for redemption and no-show telemetry."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from rcn_api.api.dependencies.security import require_internal_api_key
from rcn_api.observability.redemption import get_redemption_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/redemption",
    dependencies=[Depends(require_internal_api_key)],
    summary="Redemption session and no-show telemetry snapshot",
)
async def get_redemption_snapshot() -> dict[str, object]:
    return get_redemption_store().snapshot().as_dict()
