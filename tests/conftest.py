from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from eth_account import Account
from eth_account.messages import encode_defunct
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rcn_api import models  # noqa: F401
from rcn_api.app import create_app
from rcn_api.db.base import Base
from rcn_api.db.session import get_session
from rcn_api.models.ledger import CustomerLedgerAccount
from rcn_api.observability.redemption import get_redemption_store


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def reset_redemption_store():
    store = get_redemption_store()
    store.reset()
    yield
    store.reset()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture
def customer_wallet():
    return Account.create()


@pytest.fixture
def sign_message():
    def _sign(wallet, message: str) -> str:
        signed = Account.sign_message(encode_defunct(text=message), private_key=wallet.key)
        return "0x" + bytes(signed.signature).hex()

    return _sign


async def _create_factory(url: str, **engine_kwargs):
    engine = create_async_engine(url, future=True, **engine_kwargs)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def session_factory():
    engine, factory = await _create_factory("sqlite+aiosqlite:///:memory:")
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """File-backed database so concurrent sessions use separate connections."""

    engine, factory = await _create_factory(
        f"sqlite+aiosqlite:///{tmp_path / 'rcn-test.db'}",
        connect_args={"timeout": 30},
    )
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def seed_account():
    async def _seed(
        factory,
        address: str,
        *,
        earned: str | int,
        home_shop_id: str | None = None,
        lifetime: str | int | None = None,
        market: str | int = 0,
    ) -> str:
        normalized = address.lower()
        async with factory() as session:
            session.add(
                CustomerLedgerAccount(
                    address=normalized,
                    earned_balance=Decimal(str(earned)),
                    market_balance=Decimal(str(market)),
                    lifetime_earnings=Decimal(str(lifetime if lifetime is not None else earned)),
                    home_shop_id=home_shop_id,
                )
            )
            await session.commit()
        return normalized

    return _seed


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
