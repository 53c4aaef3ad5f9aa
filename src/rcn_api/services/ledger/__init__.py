"""Ledger collaborator exports."""

from .balance_accessor import (  # noqa: F401
    BalanceAccessor,
    CustomerBalances,
    tier_for_lifetime_earnings,
)
from .client import (  # noqa: F401
    LedgerBalance,
    LedgerClient,
    SqlLedgerClient,
    normalize_address,
)
