from decimal import Decimal

import pytest

from rcn_api.models.redemption import RedemptionSession, RedemptionSessionStatus
from rcn_api.services.redemption import RedemptionSessionService
from rcn_api.workers import RedemptionSessionSweeper


@pytest.mark.asyncio
async def test_sweeper_expires_lapsed_sessions(session_factory, seed_account, customer_wallet, clock) -> None:
    address = await seed_account(session_factory, customer_wallet.address, earned="50", home_shop_id="shop-1")
    async with session_factory() as session:
        created = await RedemptionSessionService(session, clock=clock).create_session(address, "shop-1", Decimal("5"))

    sweeper = RedemptionSessionSweeper(session_factory, interval_seconds=1, limit=10, clock=clock)

    assert await sweeper.run_once() == {"expired": 0}

    clock.advance(minutes=5, seconds=1)
    summary = await sweeper.run_once()

    assert summary == {"expired": 1}
    assert sweeper.last_run_expired == 1
    assert sweeper.last_error is None

    async with session_factory() as session:
        stored = await session.get(RedemptionSession, created.session.id)
    assert stored.status == RedemptionSessionStatus.EXPIRED


@pytest.mark.asyncio
async def test_sweeper_start_and_stop(session_factory, clock) -> None:
    sweeper = RedemptionSessionSweeper(session_factory, interval_seconds=60, limit=10, clock=clock)

    sweeper.start()
    assert sweeper.is_running is True

    await sweeper.stop()
    assert sweeper.is_running is False
    assert sweeper.last_error is None
