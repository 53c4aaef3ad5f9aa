"""Error taxonomy shared by the redemption and no-show services.

Every error is terminal for the calling request; the services never retry a
state transition on the caller's behalf.
"""

from __future__ import annotations


class RedemptionError(RuntimeError):
    """Base exception for redemption engine failures."""


class UnauthorizedError(RedemptionError):
    """The caller may not perform the operation."""


class RedemptionDeniedError(UnauthorizedError):
    """Authorization refused a redemption amount."""

    def __init__(self, reason: str, *, max_redeemable: object | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.max_redeemable = max_redeemable


class InvalidSignatureError(UnauthorizedError):
    """Approval signature does not recover to the session's customer."""


class InvalidStateError(RedemptionError):
    """A transition was attempted from the wrong session or dispute state."""

    def __init__(self, message: str, *, current_status: str | None = None) -> None:
        super().__init__(message)
        self.current_status = current_status


class SessionExpiredError(InvalidStateError):
    """The session passed its expiry before the transition could be applied."""

    def __init__(self, message: str = "Redemption session has expired") -> None:
        super().__init__(message, current_status="expired")


class NotFoundError(RedemptionError):
    """Unknown customer, session or order."""


class CustomerNotFoundError(NotFoundError):
    pass


class SessionNotFoundError(NotFoundError):
    pass


class NoShowEventNotFoundError(NotFoundError):
    pass


class WindowExpiredError(RedemptionError):
    """Dispute submitted after the dispute window closed."""


class InsufficientFundsError(RedemptionError):
    """Ledger debit refused because the earned balance is too low."""


class InvalidReasonError(RedemptionError):
    """Dispute reason is too short."""


__all__ = [
    "CustomerNotFoundError",
    "InsufficientFundsError",
    "InvalidReasonError",
    "InvalidSignatureError",
    "InvalidStateError",
    "NoShowEventNotFoundError",
    "NotFoundError",
    "RedemptionDeniedError",
    "RedemptionError",
    "SessionExpiredError",
    "SessionNotFoundError",
    "UnauthorizedError",
    "WindowExpiredError",
]
