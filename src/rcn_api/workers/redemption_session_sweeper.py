"""Background expiry of redemption sessions nobody touched after their deadline."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rcn_api.core.clock import Clock, utcnow
from rcn_api.core.settings import settings
from rcn_api.services.redemption.sessions import RedemptionSessionService


class RedemptionSessionSweeper:
    """Periodically persists ``expired`` on lapsed ``pending``/``approved`` sessions.

    Expiry is already enforced whenever a session is read or transitioned; the
    sweeper only keeps listings and dashboards from showing stale live rows.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        interval_seconds: int | None = None,
        limit: int | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.redemption_session_sweep_interval_seconds
        self.limit = limit or settings.redemption_session_sweep_limit
        self._clock = clock or utcnow
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.last_run_at: datetime | None = None
        self.last_run_expired: int | None = None
        self.last_error: str | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._wakeup.clear()
        self._task = asyncio.create_task(self._loop(), name="redemption-session-sweeper")
        logger.info("Redemption session sweeper started", interval_seconds=self.interval_seconds, limit=self.limit)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        self._wakeup.set()
        await task
        logger.info("Redemption session sweeper stopped")

    async def run_once(self) -> Dict[str, int]:
        """Expire one batch of lapsed sessions and record the outcome."""

        self.last_run_at = self._clock()
        async with self._session_factory() as db:
            service = RedemptionSessionService(db, clock=self._clock)
            try:
                expired = await service.expire_stale_sessions(limit=self.limit)
            except Exception as exc:
                await db.rollback()
                self.last_error = str(exc)
                raise

        self.last_run_expired = expired
        self.last_error = None
        if expired:
            logger.info("Redemption session sweep expired sessions", expired=expired, limit=self.limit)
        return {"expired": expired}

    async def _loop(self) -> None:
        while not self._wakeup.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Redemption session sweep failed", limit=self.limit)
            if await self._sleep():
                break

    async def _sleep(self) -> bool:
        """Wait one interval; returns True when ``stop`` interrupted the wait."""

        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval_seconds)
        except asyncio.TimeoutError:
            return False
        return True
