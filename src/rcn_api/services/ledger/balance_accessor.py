"""Read-only balance view consumed by redemption authorization."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from loguru import logger

from rcn_api.core.settings import settings
from rcn_api.models.ledger import CustomerTier
from rcn_api.services.errors import CustomerNotFoundError
from rcn_api.services.ledger.client import LedgerClient, normalize_address


@dataclass(frozen=True)
class CustomerBalances:
    """Serializable balance snapshot for a customer."""

    customer_address: str
    earned_balance: Decimal
    market_balance: Decimal
    home_shop_id: Optional[str]
    lifetime_earnings: Decimal
    tier: CustomerTier


def tier_for_lifetime_earnings(lifetime_earnings: Decimal) -> CustomerTier:
    """Map lifetime earnings onto BRONZE/SILVER/GOLD."""

    earned = Decimal(lifetime_earnings or 0)
    if earned >= Decimal(settings.customer_tier_gold_threshold):
        return CustomerTier.GOLD
    if earned >= Decimal(settings.customer_tier_silver_threshold):
        return CustomerTier.SILVER
    return CustomerTier.BRONZE


class BalanceAccessor:
    def __init__(self, ledger: LedgerClient) -> None:
        self._ledger = ledger

    async def get_balances(self, customer_address: str) -> CustomerBalances:
        address = normalize_address(customer_address)
        balance = await self._ledger.get_balance(address)
        if balance is None:
            logger.info("Ledger record missing", customer_address=address)
            raise CustomerNotFoundError(f"Customer {address} not found")

        return CustomerBalances(
            customer_address=address,
            earned_balance=balance.earned_balance,
            market_balance=balance.market_balance,
            home_shop_id=balance.home_shop_id,
            lifetime_earnings=balance.lifetime_earnings,
            tier=tier_for_lifetime_earnings(balance.lifetime_earnings),
        )
