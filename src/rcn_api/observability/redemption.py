from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class RedemptionSnapshot:
    sessions: Dict[str, int]
    consumptions: Dict[str, int]
    no_shows: Dict[str, int]
    disputes: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "sessions": dict(self.sessions),
            "consumptions": dict(self.consumptions),
            "no_shows": dict(self.no_shows),
            "disputes": dict(self.disputes),
        }


class RedemptionObservabilityStore:
    """Collect redemption and no-show telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._sessions: Dict[str, int] = defaultdict(int)
        self._consumptions: Dict[str, int] = defaultdict(int)
        self._no_shows: Dict[str, int] = defaultdict(int)
        self._disputes: Dict[str, int] = defaultdict(int)

    def record_session_transition(self, status: str, count: int = 1) -> None:
        with self._lock:
            self._sessions[status] += count

    def record_consumption(self, outcome: str, *, cross_shop: bool | None = None) -> None:
        with self._lock:
            self._consumptions[outcome] += 1
            if cross_shop is not None:
                scope = "cross_shop" if cross_shop else "home_shop"
                self._consumptions[f"scope:{scope}"] += 1

    def record_no_show(self, tier: str) -> None:
        with self._lock:
            self._no_shows["total"] += 1
            self._no_shows[f"tier:{tier}"] += 1

    def record_dispute(self, outcome: str) -> None:
        with self._lock:
            self._disputes[outcome] += 1

    def snapshot(self) -> RedemptionSnapshot:
        with self._lock:
            return RedemptionSnapshot(
                sessions=dict(self._sessions),
                consumptions=dict(self._consumptions),
                no_shows=dict(self._no_shows),
                disputes=dict(self._disputes),
            )

    def reset(self) -> None:
        with self._lock:
            self._sessions.clear()
            self._consumptions.clear()
            self._no_shows.clear()
            self._disputes.clear()


_STORE = RedemptionObservabilityStore()


def get_redemption_store() -> RedemptionObservabilityStore:
    return _STORE


__all__ = ["get_redemption_store", "RedemptionObservabilityStore", "RedemptionSnapshot"]
