"""Resilience utilities: provider retries with exponential backoff and circuit breakers."""

from __future__ import annotations

import asyncio
import random
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, FrozenSet, Optional

import structlog

from competitoragents.providers.base import CostObserver
from competitoragents.providers.models import TRANSIENT_ERROR_KINDS, ErrorKind, ProviderResult

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class RetryPolicy:
    """Configuration for retrying provider calls with exponential backoff."""

    max_attempts: int = 3
    initial_backoff: float = 0.5
    max_backoff: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.1
    max_total_wait: Optional[float] = 60.0
    retryable_kinds: FrozenSet[ErrorKind] = field(default_factory=lambda: TRANSIENT_ERROR_KINDS)

    def backoff(self, attempt: int) -> float:
        """Calculate the backoff delay for a given attempt (1-indexed)."""
        base = self.initial_backoff * (self.multiplier ** max(attempt - 1, 0))
        delay = min(base, self.max_backoff)
        if self.jitter > 0:
            delay += random.uniform(0, self.jitter)
        return delay

    def is_retryable(self, kind: Optional[ErrorKind]) -> bool:
        return kind is not None and kind in self.retryable_kinds


class CircuitBreakerState(str, Enum):
    """Finite state machine for a circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Tracks consecutive failures of one provider and trips when it is unstable."""

    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        half_open_success_threshold: int = 1,
        name: str | None = None,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_success_threshold = max(1, half_open_success_threshold)
        self.name = name or "provider"

        self.state: CircuitBreakerState = CircuitBreakerState.CLOSED
        self._consecutive_failures = 0
        self._half_open_successes = 0
        self._opened_at: float | None = None
        self._lock = threading.Lock()

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def allows_request(self) -> bool:
        """Determine whether a call is permitted at this time."""
        with self._lock:
            if self.state == CircuitBreakerState.OPEN:
                if self._opened_at is None:
                    return False
                if (time.monotonic() - self._opened_at) >= self.recovery_timeout:
                    self.state = CircuitBreakerState.HALF_OPEN
                    self._half_open_successes = 0
                    return True
                return False
            return True

    def record_success(self) -> None:
        """Reset counters on success and potentially close the breaker."""
        with self._lock:
            self._consecutive_failures = 0
            if self.state == CircuitBreakerState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.half_open_success_threshold:
                    self._close()
            elif self.state == CircuitBreakerState.OPEN:
                self._close()

    def record_failure(self) -> None:
        """Increment failure counters and open the breaker if needed."""
        with self._lock:
            if self.state == CircuitBreakerState.HALF_OPEN:
                self._open()
                return

            self._consecutive_failures += 1
            if self._consecutive_failures >= self.failure_threshold:
                self._open()

    def _open(self) -> None:
        self.state = CircuitBreakerState.OPEN
        self._opened_at = time.monotonic()
        self._consecutive_failures = 0
        self._half_open_successes = 0
        logger.warning("circuit_breaker_opened", provider=self.name)

    def _close(self) -> None:
        self.state = CircuitBreakerState.CLOSED
        self._opened_at = None
        self._consecutive_failures = 0
        self._half_open_successes = 0
        logger.info("circuit_breaker_closed", provider=self.name)


ProviderCall = Callable[[int], Awaitable[ProviderResult]]


async def call_with_retry(
    call: ProviderCall,
    *,
    provider: str,
    target: str,
    retry_policy: RetryPolicy,
    attempt_timeout: Optional[float] = None,
    on_attempt: Optional[Callable[[ProviderResult], None]] = None,
    cost_observer: Optional[CostObserver] = None,
) -> ProviderResult:
    """Run ``call`` until it succeeds, fails permanently or the budget runs out.

    ``call`` receives the 1-indexed attempt number and returns a
    ``ProviderResult``. Each attempt is bounded by ``attempt_timeout``; an
    expired attempt becomes a ``timeout`` failure and, since the adapter was
    cancelled before it could report, a zero-cost observation is sent to
    ``cost_observer`` on its behalf. The returned result carries the number
    of attempts consumed and the summed cost of all of them. This function
    never raises for provider failures.
    """
    attempts = max(1, retry_policy.max_attempts)
    waited = 0.0
    spent = 0.0
    result: ProviderResult | None = None

    for attempt in range(1, attempts + 1):
        try:
            if attempt_timeout is not None:
                result = await asyncio.wait_for(call(attempt), timeout=attempt_timeout)
            else:
                result = await call(attempt)
        except asyncio.TimeoutError:
            if cost_observer is not None:
                cost_observer.record(provider, 0.0)
            result = ProviderResult.failure(
                provider,
                target,
                ErrorKind.TIMEOUT,
                f"Attempt exceeded {attempt_timeout:.1f}s",
                attempt=attempt,
            )
        spent += result.cost_usd
        result = result.model_copy(update={"attempt": attempt, "cost_usd": round(spent, 6)})

        if on_attempt is not None:
            on_attempt(result)

        if result.succeeded or not retry_policy.is_retryable(result.error_kind):
            return result
        if attempt >= attempts:
            break

        delay = retry_policy.backoff(attempt)
        if retry_policy.max_total_wait is not None and waited + delay > retry_policy.max_total_wait:
            logger.info(
                "retry_wait_budget_exhausted",
                provider=provider,
                target=target,
                attempt=attempt,
                waited=round(waited, 3),
            )
            break

        logger.warning(
            "provider_attempt_retrying",
            provider=provider,
            target=target,
            attempt=attempt,
            max_attempts=attempts,
            kind=result.error_kind.value if result.error_kind else None,
            delay=round(delay, 3),
        )
        await asyncio.sleep(delay)
        waited += delay

    assert result is not None
    return result


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerState",
    "ProviderCall",
    "RetryPolicy",
    "call_with_retry",
]
