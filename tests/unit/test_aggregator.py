"""Unit tests for per-target result aggregation."""

from __future__ import annotations

import itertools

import pytest

from app.services.aggregator import AggregationPolicy, Aggregator
from competitoragents.providers.models import ErrorKind, ProviderResult
from competitoragents.providers.profiles import default_provider_profiles

TARGET = "Acme Corp"


def _ok(provider: str, confidence: float = 0.8, **fields) -> ProviderResult:
    return ProviderResult(provider=provider, target=TARGET, fields=fields, confidence=confidence)


def _failed(provider: str, kind: ErrorKind = ErrorKind.TIMEOUT, attempt: int = 3) -> ProviderResult:
    return ProviderResult.failure(provider, TARGET, kind, f"{provider} {kind.value}", attempt=attempt)


class TestListMerge:
    def test_priority_order_then_novel_items(self) -> None:
        results = [
            _ok("perplexity", confidence=0.6, strengths=["fast", "scalable"]),
            _ok("openai", confidence=0.9, strengths=["fast", "cheap"]),
        ]

        merged = Aggregator().merge(TARGET, results, ["openai", "perplexity"])

        assert merged.fields["strengths"] == ["fast", "cheap", "scalable"]
        assert merged.providers_used == ["openai", "perplexity"]
        assert merged.providers_failed == []
        assert merged.field_provenance["strengths"] == ["openai", "perplexity"]

    def test_failed_provider_contributes_nothing(self) -> None:
        results = [
            _ok("openai", confidence=0.9, strengths=["fast", "cheap"]),
            _failed("perplexity"),
        ]

        merged = Aggregator().merge(TARGET, results, ["openai", "perplexity"])

        assert merged.fields["strengths"] == ["fast", "cheap"]
        assert merged.providers_failed == ["perplexity"]
        assert merged.failure_kinds == {"perplexity": "timeout"}
        assert merged.succeeded

    def test_duplicates_are_case_insensitive_and_list_is_capped(self) -> None:
        aggregator = Aggregator(AggregationPolicy(max_list_length=3))
        results = [
            _ok("openai", strengths=["Fast", "Cheap"]),
            _ok("anthropic", strengths=["fast ", "cheap", "Reliable", "Global"]),
        ]

        merged = aggregator.merge(TARGET, results)

        assert merged.fields["strengths"] == ["Fast", "Cheap", "Reliable"]


class TestScalarMerge:
    def test_highest_confidence_wins(self) -> None:
        results = [
            _ok("openai", confidence=0.6, description="Widget maker"),
            _ok("anthropic", confidence=0.9, description="Enterprise widget platform"),
        ]

        merged = Aggregator().merge(TARGET, results)

        assert merged.fields["description"] == "Enterprise widget platform"
        assert merged.field_provenance["description"] == ["anthropic", "openai"]

    def test_fact_fields_prefer_search_providers_on_ties(self) -> None:
        results = [
            _ok("openai", confidence=0.8, industry="Software", description="From openai"),
            _ok("perplexity", confidence=0.8, industry="SaaS", description="From perplexity"),
        ]

        merged = Aggregator().merge(TARGET, results)

        assert merged.fields["industry"] == "SaaS"
        assert merged.fields["description"] == "From openai"

    def test_policy_from_profiles(self) -> None:
        policy = AggregationPolicy.from_profiles(default_provider_profiles())

        assert policy.qualitative_priority == ("openai", "anthropic", "gemini", "perplexity")
        assert policy.fact_priority == ("perplexity", "openai", "anthropic", "gemini")


class TestDedupe:
    def test_success_preferred_over_failure_for_same_provider(self) -> None:
        results = [_failed("openai", ErrorKind.RATE_LIMITED, attempt=1), _ok("openai", industry="SaaS")]

        merged = Aggregator().merge(TARGET, results, ["openai"])

        assert merged.providers_used == ["openai"]
        assert merged.providers_failed == []

    def test_result_for_other_target_is_rejected(self) -> None:
        stray = ProviderResult(provider="openai", target="Other Inc", fields={"industry": "SaaS"})

        with pytest.raises(ValueError):
            Aggregator().merge(TARGET, [stray])


class TestMissingProviders:
    def test_expected_provider_without_result_is_failed(self) -> None:
        merged = Aggregator().merge(
            TARGET,
            [_ok("openai", industry="SaaS")],
            ["openai", "gemini"],
            missing_kind=ErrorKind.CANCELLED,
        )

        assert merged.providers_failed == ["gemini"]
        assert merged.failure_kinds == {"gemini": "cancelled"}

    def test_no_success_means_zero_score_and_no_fields(self) -> None:
        merged = Aggregator().merge(
            TARGET, [_failed("openai"), _failed("perplexity", ErrorKind.UNAUTHORIZED, 1)]
        )

        assert merged.fields == {}
        assert merged.data_quality_score == 0.0
        assert not merged.succeeded
        assert merged.failure_kinds == {"openai": "timeout", "perplexity": "unauthorized"}


class TestQualityScore:
    def test_weighted_components(self) -> None:
        results = [
            _ok("openai", confidence=0.9, strengths=["fast"]),
            _ok("perplexity", confidence=0.6, strengths=["fast"]),
        ]

        merged = Aggregator().merge(TARGET, results, ["openai", "perplexity"])

        # full coverage, mean confidence 0.75, no cross-check field present
        assert merged.data_quality_score == pytest.approx(0.5 + 0.3 * 0.75)

    def test_partial_coverage_lowers_score(self) -> None:
        full = Aggregator().merge(
            TARGET,
            [_ok("openai", confidence=0.9, strengths=["a"]), _ok("anthropic", confidence=0.9, strengths=["b"])],
            ["openai", "anthropic"],
        )
        partial = Aggregator().merge(
            TARGET,
            [_ok("openai", confidence=0.9, strengths=["a"]), _failed("anthropic")],
            ["openai", "anthropic"],
        )

        assert 0.0 < partial.data_quality_score < full.data_quality_score

    def test_agreement_on_cross_check_fields(self) -> None:
        results = [
            _ok("openai", industry="SaaS", headquarters="Austin, TX"),
            _ok("anthropic", industry="saas", headquarters="Denver, CO"),
        ]

        merged = Aggregator().merge(TARGET, results)

        # industry agrees, headquarters does not, business_model missing
        expected = 0.5 * 1.0 + 0.3 * 0.8 + 0.2 * (1 / 3)
        assert merged.data_quality_score == pytest.approx(expected, abs=1e-4)

    def test_single_provider_gets_no_agreement(self) -> None:
        aggregator = Aggregator()

        assert aggregator._agreement([_ok("openai", industry="SaaS")]) == 0.0

    def test_score_is_monotonic_in_each_component(self) -> None:
        aggregator = Aggregator()
        base = dict(succeeded=1, selected=3, confidences=[0.5], agreement=0.0)

        def score(**changes) -> float:
            return aggregator.quality_score(**{**base, **changes})

        assert score(succeeded=2, confidences=[0.5, 0.5]) >= score()
        assert score(confidences=[0.9]) >= score()
        assert score(agreement=1.0) >= score()
        for value in (score(), score(succeeded=3, confidences=[1, 1, 1], agreement=1.0)):
            assert 0.0 <= value <= 1.0

    def test_invalid_weights_rejected(self) -> None:
        with pytest.raises(ValueError):
            AggregationPolicy(coverage_weight=0, confidence_weight=0, agreement_weight=0)
        with pytest.raises(ValueError):
            AggregationPolicy(coverage_weight=-1)


def test_merge_ignores_arrival_order() -> None:
    results = [
        _ok("openai", confidence=0.7, industry="Software", strengths=["fast", "cheap"]),
        _ok("anthropic", confidence=0.7, industry="SaaS", strengths=["reliable", "Fast"]),
        _ok("perplexity", confidence=0.9, industry="SaaS", weaknesses=["pricey"]),
        _failed("gemini"),
    ]
    expected_providers = ["openai", "anthropic", "perplexity", "gemini"]
    aggregator = Aggregator()

    outputs = [
        aggregator.merge(TARGET, list(order), expected_providers).to_dict()
        for order in itertools.permutations(results)
    ]

    assert all(output == outputs[0] for output in outputs)
