"""Provider availability tracking.

Combines static configuration (which providers have credentials, which are
switched off) with a circuit breaker per provider that is fed by every call
attempt. Implements the availability source consumed by the gate.
"""

from __future__ import annotations

from threading import RLock
from typing import Dict, Iterable, Optional

import structlog

from competitoragents.providers.models import ErrorKind, ProviderResult

from ..core.resilience import CircuitBreaker, CircuitBreakerState
from .gate import ProviderStatus

logger = structlog.get_logger(__name__)

# Failures that say nothing about the provider's health.
_IGNORED_KINDS = frozenset({ErrorKind.GATE_DENIED, ErrorKind.CANCELLED})


class ProviderHealthRegistry:
    """Thread-safe provider status map with runtime toggles."""

    def __init__(
        self,
        configured: Iterable[str],
        *,
        known: Iterable[str] = (),
        disabled: Iterable[str] = (),
        global_enabled: bool = True,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        half_open_successes: int = 1,
    ) -> None:
        self._lock = RLock()
        self._configured = list(dict.fromkeys(configured))
        self._known = [p for p in dict.fromkeys(known) if p not in self._configured]
        self._disabled = set(disabled)
        self._global_enabled = global_enabled
        self._breakers: Dict[str, CircuitBreaker] = {
            provider: CircuitBreaker(
                failure_threshold=failure_threshold,
                recovery_timeout=recovery_timeout,
                half_open_success_threshold=half_open_successes,
                name=provider,
            )
            for provider in self._configured
        }

    def get_provider_status(self) -> Dict[str, ProviderStatus]:
        """Snapshot of every known provider's availability."""
        with self._lock:
            statuses: Dict[str, ProviderStatus] = {}
            for provider in self._configured:
                statuses[provider] = self._status_for(provider)
            for provider in self._known:
                statuses[provider] = ProviderStatus(active=False, status="not_configured")
            return statuses

    def _status_for(self, provider: str) -> ProviderStatus:
        if provider in self._disabled:
            return ProviderStatus(active=False, status="disabled")
        breaker = self._breakers[provider]
        if not breaker.allows_request():
            return ProviderStatus(active=False, status="circuit_open")
        if breaker.state == CircuitBreakerState.HALF_OPEN:
            return ProviderStatus(active=True, status="recovering")
        return ProviderStatus(active=True, status="healthy")

    def is_global_analysis_enabled(self) -> bool:
        with self._lock:
            return self._global_enabled

    def set_global_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._global_enabled = enabled
        logger.info("global_analysis_toggled", enabled=enabled)

    def set_provider_enabled(self, provider: str, enabled: bool) -> None:
        with self._lock:
            if provider not in self._breakers:
                raise KeyError(provider)
            if enabled:
                self._disabled.discard(provider)
            else:
                self._disabled.add(provider)
        logger.info("provider_toggled", provider=provider, enabled=enabled)

    def record_result(self, result: ProviderResult) -> None:
        """Feed one attempt's outcome into the provider's breaker."""
        breaker = self.breaker(result.provider)
        if breaker is None or result.error_kind in _IGNORED_KINDS:
            return
        if result.succeeded:
            breaker.record_success()
        else:
            breaker.record_failure()

    def breaker(self, provider: str) -> Optional[CircuitBreaker]:
        with self._lock:
            return self._breakers.get(provider)
