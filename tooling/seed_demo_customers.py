"""Seed demo customer ledger accounts for local redemption testing."""

from __future__ import annotations

import asyncio
from decimal import Decimal
import os
from typing import TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rcn_api.core.settings import settings
from rcn_api.models.ledger import CustomerLedgerAccount


class SeedCustomer(TypedDict):
    address: str
    earned_balance: str
    lifetime_earnings: str
    home_shop_id: str | None


DEMO_CUSTOMERS: list[SeedCustomer] = [
    {
        "address": os.getenv("DEMO_HOME_CUSTOMER_ADDRESS", "0x1111111111111111111111111111111111111111").lower(),
        "earned_balance": "150",
        "lifetime_earnings": "1250",
        "home_shop_id": os.getenv("DEMO_HOME_SHOP_ID", "shop-demo-1"),
    },
    {
        "address": os.getenv("DEMO_ROAMING_CUSTOMER_ADDRESS", "0x2222222222222222222222222222222222222222").lower(),
        "earned_balance": "80",
        "lifetime_earnings": "240",
        "home_shop_id": None,
    },
]


async def seed_customers(session: AsyncSession) -> None:
    for customer in DEMO_CUSTOMERS:
        with session.no_autoflush:
            existing = await session.execute(
                select(CustomerLedgerAccount).where(CustomerLedgerAccount.address == customer["address"])
            )
        record = existing.scalar_one_or_none()

        if record:
            record.earned_balance = Decimal(customer["earned_balance"])
            record.lifetime_earnings = Decimal(customer["lifetime_earnings"])
            record.home_shop_id = customer["home_shop_id"]
        else:
            session.add(
                CustomerLedgerAccount(
                    address=customer["address"],
                    earned_balance=Decimal(customer["earned_balance"]),
                    market_balance=Decimal("0"),
                    lifetime_earnings=Decimal(customer["lifetime_earnings"]),
                    home_shop_id=customer["home_shop_id"],
                )
            )
    await session.commit()


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            await seed_customers(session)
        print("Demo customer ledger accounts ready")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
