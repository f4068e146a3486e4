"""Unit tests for retry and circuit breaker utilities."""

from __future__ import annotations

import asyncio

import pytest

from app.core.resilience import CircuitBreaker, CircuitBreakerState, RetryPolicy, call_with_retry
from app.services.cost_tracker import CostTracker
from competitoragents.providers.models import ErrorKind, ProviderResult


def _policy(**overrides) -> RetryPolicy:
    settings = dict(
        max_attempts=3,
        initial_backoff=0.001,
        max_backoff=0.001,
        multiplier=1.0,
        jitter=0.0,
        max_total_wait=1.0,
    )
    settings.update(overrides)
    return RetryPolicy(**settings)


def _failure(kind: ErrorKind) -> ProviderResult:
    return ProviderResult.failure("openai", "Acme Corp", kind, f"{kind.value} failure")


def _success() -> ProviderResult:
    return ProviderResult(provider="openai", target="Acme Corp", fields={"industry": "SaaS"})


def test_backoff_grows_exponentially_and_is_capped() -> None:
    policy = RetryPolicy(initial_backoff=0.5, max_backoff=3.0, multiplier=2.0, jitter=0.0)

    assert policy.backoff(1) == pytest.approx(0.5)
    assert policy.backoff(2) == pytest.approx(1.0)
    assert policy.backoff(3) == pytest.approx(2.0)
    assert policy.backoff(4) == pytest.approx(3.0)


def test_retryable_kinds() -> None:
    policy = RetryPolicy()

    for kind in (ErrorKind.RATE_LIMITED, ErrorKind.TIMEOUT, ErrorKind.NETWORK):
        assert policy.is_retryable(kind)
    for kind in (
        ErrorKind.UNAUTHORIZED,
        ErrorKind.INVALID_RESPONSE,
        ErrorKind.UNKNOWN,
        ErrorKind.GATE_DENIED,
    ):
        assert not policy.is_retryable(kind)


@pytest.mark.asyncio
async def test_call_with_retry_recovers() -> None:
    attempts = []

    async def flaky(attempt: int) -> ProviderResult:
        attempts.append(attempt)
        return _failure(ErrorKind.RATE_LIMITED) if attempt < 3 else _success()

    result = await call_with_retry(
        flaky, provider="openai", target="Acme Corp", retry_policy=_policy()
    )

    assert result.succeeded
    assert result.attempt == 3
    assert attempts == [1, 2, 3]


@pytest.mark.asyncio
async def test_call_with_retry_exhausts_and_returns_last_failure() -> None:
    async def always_timeout(attempt: int) -> ProviderResult:
        return _failure(ErrorKind.TIMEOUT)

    result = await call_with_retry(
        always_timeout, provider="openai", target="Acme Corp", retry_policy=_policy()
    )

    assert not result.succeeded
    assert result.error_kind == ErrorKind.TIMEOUT
    assert result.attempt == 3


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried() -> None:
    calls = 0

    async def unauthorized(attempt: int) -> ProviderResult:
        nonlocal calls
        calls += 1
        return _failure(ErrorKind.UNAUTHORIZED)

    result = await call_with_retry(
        unauthorized, provider="openai", target="Acme Corp", retry_policy=_policy()
    )

    assert calls == 1
    assert result.error_kind == ErrorKind.UNAUTHORIZED
    assert result.attempt == 1


@pytest.mark.asyncio
async def test_attempt_timeout_becomes_timeout_failure() -> None:
    async def slow(attempt: int) -> ProviderResult:
        await asyncio.sleep(1.0)
        return _success()

    result = await call_with_retry(
        slow,
        provider="openai",
        target="Acme Corp",
        retry_policy=_policy(max_attempts=2),
        attempt_timeout=0.01,
    )

    assert result.error_kind == ErrorKind.TIMEOUT
    assert result.attempt == 2


@pytest.mark.asyncio
async def test_total_wait_budget_stops_retries() -> None:
    calls = 0

    async def rate_limited(attempt: int) -> ProviderResult:
        nonlocal calls
        calls += 1
        return _failure(ErrorKind.RATE_LIMITED)

    policy = _policy(max_attempts=5, initial_backoff=0.5, max_backoff=0.5, max_total_wait=0.1)
    result = await call_with_retry(
        rate_limited, provider="openai", target="Acme Corp", retry_policy=policy
    )

    assert calls == 1
    assert result.error_kind == ErrorKind.RATE_LIMITED


@pytest.mark.asyncio
async def test_on_attempt_sees_every_attempt() -> None:
    seen = []

    async def flaky(attempt: int) -> ProviderResult:
        return _failure(ErrorKind.NETWORK) if attempt == 1 else _success()

    await call_with_retry(
        flaky,
        provider="openai",
        target="Acme Corp",
        retry_policy=_policy(),
        on_attempt=seen.append,
    )

    assert [r.succeeded for r in seen] == [False, True]
    assert [r.attempt for r in seen] == [1, 2]


@pytest.mark.asyncio
async def test_result_cost_sums_every_attempt() -> None:
    async def flaky(attempt: int) -> ProviderResult:
        if attempt < 3:
            return ProviderResult.failure(
                "openai", "Acme Corp", ErrorKind.RATE_LIMITED, "slow down", cost_usd=0.002
            )
        return ProviderResult(
            provider="openai", target="Acme Corp", fields={"industry": "SaaS"}, cost_usd=0.01
        )

    result = await call_with_retry(
        flaky, provider="openai", target="Acme Corp", retry_policy=_policy()
    )

    assert result.succeeded
    assert result.cost_usd == pytest.approx(0.014)


@pytest.mark.asyncio
async def test_timed_out_attempts_are_reported_to_cost_observer() -> None:
    tracker = CostTracker("session-1")

    async def hangs(attempt: int) -> ProviderResult:
        await asyncio.sleep(1.0)
        return _success()

    result = await call_with_retry(
        hangs,
        provider="openai",
        target="Acme Corp",
        retry_policy=_policy(),
        attempt_timeout=0.01,
        cost_observer=tracker,
    )

    assert result.error_kind == ErrorKind.TIMEOUT
    assert result.cost_usd == 0.0
    assert tracker.observation_count == 3
    assert tracker.snapshot()["observations"] == {"openai": 3}


@pytest.mark.asyncio
async def test_circuit_breaker_trips_and_recovers() -> None:
    breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=0.05, name="test")

    breaker.record_failure()
    assert breaker.allows_request()
    breaker.record_failure()
    assert breaker.state == CircuitBreakerState.OPEN
    assert not breaker.allows_request()

    await asyncio.sleep(0.06)
    assert breaker.allows_request()
    assert breaker.state == CircuitBreakerState.HALF_OPEN

    breaker.record_success()
    assert breaker.state == CircuitBreakerState.CLOSED


def test_half_open_failure_reopens() -> None:
    breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0.0)

    breaker.record_failure()
    assert breaker.allows_request()
    breaker.record_failure()

    assert breaker.state == CircuitBreakerState.OPEN
