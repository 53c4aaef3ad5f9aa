"""Ledger collaborator: balance lookup and the atomic earned-balance debit."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rcn_api.models.ledger import CustomerLedgerAccount
from rcn_api.services.errors import InsufficientFundsError


def normalize_address(address: str) -> str:
    """Wallet addresses are compared case-insensitively."""

    return address.strip().lower()


@dataclass(frozen=True)
class LedgerBalance:
    """Raw ledger view of a customer account."""

    address: str
    earned_balance: Decimal
    market_balance: Decimal
    lifetime_earnings: Decimal
    home_shop_id: Optional[str]


class LedgerClient(Protocol):
    async def get_balance(self, address: str) -> LedgerBalance | None:
        ...

    async def debit(self, address: str, amount: Decimal) -> None:
        ...


class SqlLedgerClient:
    """Ledger backed by the shared database.

    Runs on the caller's session so that a debit commits or rolls back together
    with the redemption session transition that triggered it.
    """

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get_balance(self, address: str) -> LedgerBalance | None:
        stmt = (
            select(CustomerLedgerAccount)
            .where(CustomerLedgerAccount.address == normalize_address(address))
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        account = result.scalar_one_or_none()
        if account is None:
            return None
        return LedgerBalance(
            address=account.address,
            earned_balance=Decimal(account.earned_balance or 0),
            market_balance=Decimal(account.market_balance or 0),
            lifetime_earnings=Decimal(account.lifetime_earnings or 0),
            home_shop_id=account.home_shop_id,
        )

    async def debit(self, address: str, amount: Decimal) -> None:
        """Decrease the earned balance, refusing if it would go negative."""

        amount = Decimal(amount)
        if amount <= Decimal("0"):
            raise ValueError("Debit amount must be positive")

        normalized = normalize_address(address)
        stmt = (
            update(CustomerLedgerAccount)
            .where(
                CustomerLedgerAccount.address == normalized,
                CustomerLedgerAccount.earned_balance >= amount,
            )
            .values(
                earned_balance=CustomerLedgerAccount.earned_balance - amount,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        if result.rowcount != 1:
            logger.warning("Ledger debit refused", customer_address=normalized, amount=str(amount))
            raise InsufficientFundsError(f"Insufficient earned balance to debit {amount} RCN")

        logger.info("Ledger debit applied", customer_address=normalized, amount=str(amount))
