"""SQLAlchemy models package."""

# Import all models
from .ledger import (  # noqa: F401
    CustomerLedgerAccount,
    CustomerTier,
    RcnTransaction,
    TokenSource,
    TransactionStatus,
    TransactionType,
)
from .noshow import (  # noqa: F401
    DisputeStatus,
    NoShowDispute,
    NoShowEvent,
    NoShowRecord,
    NoShowTier,
)
from .redemption import (  # noqa: F401
    LIVE_SESSION_STATUSES,
    TERMINAL_SESSION_STATUSES,
    RedemptionRejectedBy,
    RedemptionSession,
    RedemptionSessionStatus,
)
