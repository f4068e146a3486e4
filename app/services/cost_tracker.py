"""Per-session provider cost accounting."""

from __future__ import annotations

import threading
from typing import Dict

import structlog

logger = structlog.get_logger(__name__)


class CostTracker:
    """Accumulates the USD cost of every provider attempt in one session.

    Provider calls report from concurrent tasks (and possibly worker
    threads), so every mutation happens under a lock. Once closed the tracker
    stops accepting observations; late reports from cancelled calls are
    dropped.
    """

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self._lock = threading.Lock()
        self._by_provider: Dict[str, float] = {}
        self._observations: Dict[str, int] = {}
        self._closed = False

    def record(self, provider: str, cost_usd: float) -> bool:
        """Add one attempt's cost. Returns ``False`` if the tracker is closed."""
        if cost_usd < 0:
            raise ValueError("cost_usd cannot be negative")
        with self._lock:
            if self._closed:
                dropped = True
            else:
                dropped = False
                self._by_provider[provider] = self._by_provider.get(provider, 0.0) + cost_usd
                self._observations[provider] = self._observations.get(provider, 0) + 1
        if dropped:
            logger.info(
                "cost_observation_dropped",
                session_id=self.session_id,
                provider=provider,
                cost_usd=cost_usd,
            )
            return False
        return True

    @property
    def total(self) -> float:
        with self._lock:
            return round(sum(self._by_provider.values()), 6)

    @property
    def observation_count(self) -> int:
        with self._lock:
            return sum(self._observations.values())

    @property
    def closed(self) -> bool:
        return self._closed

    def by_provider(self) -> Dict[str, float]:
        with self._lock:
            return {provider: round(cost, 6) for provider, cost in self._by_provider.items()}

    def close(self) -> None:
        """Freeze the totals."""
        with self._lock:
            self._closed = True

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            return {
                "session_id": self.session_id,
                "total": round(sum(self._by_provider.values()), 6),
                "by_provider": dict(self._by_provider),
                "observations": dict(self._observations),
                "closed": self._closed,
            }
