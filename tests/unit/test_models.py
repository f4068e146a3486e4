"""Unit tests for session domain objects."""

from __future__ import annotations

import pytest

from app.core.errors import (
    SessionCancelledError,
    SessionStateError,
    SessionTotalFailureError,
    error_for_result,
    ProviderPermanentError,
    ProviderTransientError,
)
from app.services.models import (
    AggregatedResult,
    AnalysisSession,
    FailureReason,
    ProgressEventType,
    SessionStatus,
)
from competitoragents.providers.models import ErrorKind, ProviderResult


def test_forward_transitions_set_timestamps() -> None:
    session = AnalysisSession.new(["Acme Corp"], ["openai"])

    session.transition_to(SessionStatus.RUNNING)
    session.transition_to(SessionStatus.COMPLETED)

    assert session.started_at is not None
    assert session.completed_at >= session.started_at
    assert session.is_terminal


@pytest.mark.parametrize(
    ("path", "illegal"),
    [
        ((SessionStatus.RUNNING,), SessionStatus.PENDING),
        ((SessionStatus.RUNNING, SessionStatus.COMPLETED), SessionStatus.RUNNING),
        ((SessionStatus.RUNNING, SessionStatus.FAILED), SessionStatus.COMPLETED),
        ((), SessionStatus.COMPLETED),
    ],
)
def test_illegal_transitions(path, illegal) -> None:
    session = AnalysisSession.new(["Acme Corp"], ["openai"])
    for status in path:
        session.transition_to(status)

    with pytest.raises(SessionStateError):
        session.transition_to(illegal)


def test_pending_may_fail_directly() -> None:
    session = AnalysisSession.new(["Acme Corp"], ["openai"])

    session.transition_to(SessionStatus.FAILED)

    assert session.started_at is None
    assert session.completed_at is not None


def test_raise_for_outcome() -> None:
    session = AnalysisSession.new(["Acme Corp"], ["openai"])
    session.raise_for_outcome()

    session.status = SessionStatus.FAILED
    session.failure_reason = FailureReason.CANCELLED
    with pytest.raises(SessionCancelledError):
        session.raise_for_outcome()

    session.failure_reason = FailureReason.ALL_PROVIDERS_FAILED
    with pytest.raises(SessionTotalFailureError):
        session.raise_for_outcome()


def test_progress_and_serialization() -> None:
    session = AnalysisSession.new(["Acme Corp", "Globex"], ["openai"], idempotency_key="req-1")
    session.per_target_results["Acme Corp"] = AggregatedResult(target="Acme Corp", providers_used=["openai"])
    session.provider_results.append(
        ProviderResult(provider="openai", target="Acme Corp", fields={"industry": "SaaS"})
    )

    data = session.to_dict(include_provider_results=True)

    assert session.progress == 50.0
    assert data["status"] == "pending"
    assert data["active_providers"] == ["openai"]
    assert data["provider_results"][0]["fields"] == {"industry": "SaaS"}
    assert "provider_results" not in session.to_dict()
    assert session.summary()["completed_targets"] == ["Acme Corp"]


def test_aggregated_result_dict_round_trip() -> None:
    aggregated = AggregatedResult(
        target="Acme Corp",
        fields={"strengths": ["fast"]},
        field_provenance={"strengths": ["openai"]},
        data_quality_score=0.7,
        providers_used=["openai"],
        providers_failed=["gemini"],
        failure_kinds={"gemini": "timeout"},
    )

    assert AggregatedResult.from_dict(aggregated.to_dict()) == aggregated


def test_terminal_event_types() -> None:
    assert ProgressEventType.SESSION_FAILED.is_terminal
    assert not ProgressEventType.TARGET_COMPLETED.is_terminal


class TestProviderResult:
    def test_failure_must_not_carry_fields(self) -> None:
        with pytest.raises(ValueError):
            ProviderResult(provider="openai", target="Acme Corp", fields={"industry": "SaaS"}, error="boom")

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValueError):
            ProviderResult(provider="openai", target="Acme Corp", fields={"market_size": "huge"})

    def test_error_without_kind_defaults_to_unknown(self) -> None:
        result = ProviderResult(provider="openai", target="Acme Corp", error="boom")

        assert result.error_kind == ErrorKind.UNKNOWN
        assert not result.succeeded

    def test_confidence_and_cost_bounds(self) -> None:
        with pytest.raises(ValueError):
            ProviderResult(provider="openai", target="Acme Corp", confidence=1.5)
        with pytest.raises(ValueError):
            ProviderResult(provider="openai", target="Acme Corp", cost_usd=-0.1)

    def test_error_classification(self) -> None:
        transient = ProviderResult.failure("openai", "Acme Corp", ErrorKind.RATE_LIMITED, "429", attempt=3)
        permanent = ProviderResult.failure("openai", "Acme Corp", ErrorKind.UNAUTHORIZED, "401")
        ok = ProviderResult(provider="openai", target="Acme Corp")

        assert isinstance(error_for_result(transient), ProviderTransientError)
        assert error_for_result(transient).details["attempts"] == 3
        assert isinstance(error_for_result(permanent), ProviderPermanentError)
        assert error_for_result(ok) is None
