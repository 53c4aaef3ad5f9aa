"""Translate service-layer redemption errors into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status

from rcn_api.services.errors import (
    InsufficientFundsError,
    InvalidReasonError,
    InvalidStateError,
    NotFoundError,
    RedemptionDeniedError,
    RedemptionError,
    UnauthorizedError,
    WindowExpiredError,
)

_STATUS_BY_ERROR: tuple[tuple[type[RedemptionError], int], ...] = (
    (UnauthorizedError, status.HTTP_403_FORBIDDEN),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (WindowExpiredError, status.HTTP_410_GONE),
    (InsufficientFundsError, status.HTTP_402_PAYMENT_REQUIRED),
    (InvalidReasonError, status.HTTP_422_UNPROCESSABLE_ENTITY),
)


def to_http_exception(error: RedemptionError) -> HTTPException:
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, mapped in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            status_code = mapped
            break

    detail: str | dict[str, object] = str(error)
    if isinstance(error, RedemptionDeniedError) and error.max_redeemable is not None:
        detail = {"message": str(error), "maxRedeemable": float(error.max_redeemable)}
    elif isinstance(error, InvalidStateError) and error.current_status:
        detail = {"message": str(error), "currentStatus": error.current_status}
    return HTTPException(status_code=status_code, detail=detail)
