"""Expire lapsed redemption sessions once.

Intended usage: schedule via cron when the in-process sweeper is disabled.

Example:
    python tooling/run_session_sweep.py --limit 1000
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from loguru import logger

from rcn_api.core.settings import settings
from rcn_api.db.session import async_session
from rcn_api.workers import RedemptionSessionSweeper


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Execute one redemption session expiry sweep")
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Override the number of sessions expired in this sweep.",
    )
    return parser.parse_args()


async def _run(limit: int | None) -> dict[str, int]:
    sweeper = RedemptionSessionSweeper(
        async_session,
        interval_seconds=settings.redemption_session_sweep_interval_seconds,
        limit=limit or settings.redemption_session_sweep_limit,
    )
    return await sweeper.run_once()


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.limit))
    logger.success("Redemption session sweep completed", expired=summary.get("expired", 0))
    return 0


if __name__ == "__main__":
    sys.exit(main())
