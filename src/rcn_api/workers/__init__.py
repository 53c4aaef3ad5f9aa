"""Background workers supporting async processing."""

from .redemption_session_sweeper import RedemptionSessionSweeper

__all__ = ["RedemptionSessionSweeper"]
