from decimal import Decimal

import pytest

from rcn_api.models.ledger import CustomerTier
from rcn_api.services.errors import CustomerNotFoundError, InsufficientFundsError
from rcn_api.services.ledger import BalanceAccessor, SqlLedgerClient
from rcn_api.services.ledger.balance_accessor import tier_for_lifetime_earnings


def test_tier_thresholds_follow_lifetime_earnings() -> None:
    assert tier_for_lifetime_earnings(Decimal("0")) == CustomerTier.BRONZE
    assert tier_for_lifetime_earnings(Decimal("199.99")) == CustomerTier.BRONZE
    assert tier_for_lifetime_earnings(Decimal("200")) == CustomerTier.SILVER
    assert tier_for_lifetime_earnings(Decimal("1000")) == CustomerTier.GOLD


@pytest.mark.asyncio
async def test_balances_are_looked_up_case_insensitively(session_factory, seed_account) -> None:
    await seed_account(
        session_factory,
        "0xAbCdEf0000000000000000000000000000000001",
        earned="150.50",
        lifetime="450",
        market="12",
        home_shop_id="shop-home",
    )

    async with session_factory() as session:
        accessor = BalanceAccessor(SqlLedgerClient(session))
        balances = await accessor.get_balances("0xABCDEF0000000000000000000000000000000001")

    assert balances.customer_address == "0xabcdef0000000000000000000000000000000001"
    assert balances.earned_balance == Decimal("150.50")
    assert balances.market_balance == Decimal("12")
    assert balances.home_shop_id == "shop-home"
    assert balances.tier == CustomerTier.SILVER


@pytest.mark.asyncio
async def test_unknown_customer_raises_not_found(session_factory) -> None:
    async with session_factory() as session:
        accessor = BalanceAccessor(SqlLedgerClient(session))
        with pytest.raises(CustomerNotFoundError):
            await accessor.get_balances("0x0000000000000000000000000000000000000bad")


@pytest.mark.asyncio
async def test_ledger_debit_refuses_to_overdraw(session_factory, seed_account) -> None:
    address = await seed_account(session_factory, "0x00000000000000000000000000000000000000d1", earned="30")

    async with session_factory() as session:
        ledger = SqlLedgerClient(session)
        await ledger.debit(address, Decimal("25"))
        await session.commit()

        with pytest.raises(InsufficientFundsError):
            await ledger.debit(address, Decimal("10"))
        await session.rollback()

        balance = await ledger.get_balance(address)

    assert balance is not None
    assert balance.earned_balance == Decimal("5")
