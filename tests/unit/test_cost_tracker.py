"""Unit tests for per-session cost accounting."""

from __future__ import annotations

import threading

import pytest

from app.services.cost_tracker import CostTracker


def test_accumulates_per_provider_and_total() -> None:
    tracker = CostTracker("session-1")

    tracker.record("openai", 0.01)
    tracker.record("openai", 0.02)
    tracker.record("perplexity", 0.005)

    assert tracker.total == pytest.approx(0.035)
    assert tracker.by_provider() == {"openai": pytest.approx(0.03), "perplexity": 0.005}
    assert tracker.observation_count == 3


def test_zero_cost_attempts_are_counted() -> None:
    tracker = CostTracker("session-1")

    tracker.record("anthropic", 0.0)

    assert tracker.total == 0.0
    assert tracker.observation_count == 1


def test_negative_cost_is_rejected() -> None:
    tracker = CostTracker("session-1")

    with pytest.raises(ValueError):
        tracker.record("openai", -0.01)


def test_closed_tracker_drops_observations() -> None:
    tracker = CostTracker("session-1")
    tracker.record("openai", 0.01)
    tracker.close()

    assert tracker.record("openai", 5.0) is False
    assert tracker.total == pytest.approx(0.01)
    assert tracker.snapshot()["closed"] is True


def test_concurrent_records_are_not_lost() -> None:
    tracker = CostTracker("session-1")

    def worker() -> None:
        for _ in range(1000):
            tracker.record("openai", 0.001)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert tracker.observation_count == 8000
    assert tracker.total == pytest.approx(8.0)
