"""Merge per-provider results for one target into a single record.

The merge is a pure function of the *set* of results it receives: results are
put in a canonical order before any field is resolved, so arrival order never
changes the output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from competitoragents.providers.models import (
    FACT_FIELDS,
    CanonicalField,
    ErrorKind,
    ProviderResult,
)
from competitoragents.providers.profiles import ProviderCategory, ProviderProfile

from .models import AggregatedResult

DEFAULT_CROSS_CHECK_FIELDS: FrozenSet[CanonicalField] = frozenset(
    {CanonicalField.INDUSTRY, CanonicalField.BUSINESS_MODEL, CanonicalField.HEADQUARTERS}
)


@dataclass
class AggregationPolicy:
    """Tunable knobs of the merge.

    ``qualitative_priority`` orders providers for reasoning-heavy fields and
    ``fact_priority`` for fields in ``fact_fields``. Providers missing from a
    list rank after every listed provider.
    """

    qualitative_priority: Tuple[str, ...] = ("openai", "anthropic", "gemini", "perplexity")
    fact_priority: Tuple[str, ...] = ("perplexity", "openai", "anthropic", "gemini")
    fact_fields: FrozenSet[CanonicalField] = FACT_FIELDS
    cross_check_fields: FrozenSet[CanonicalField] = DEFAULT_CROSS_CHECK_FIELDS
    max_list_length: int = 10
    coverage_weight: float = 0.5
    confidence_weight: float = 0.3
    agreement_weight: float = 0.2
    default_confidence: float = 0.5

    def __post_init__(self) -> None:
        weights = (self.coverage_weight, self.confidence_weight, self.agreement_weight)
        if any(weight < 0 for weight in weights) or sum(weights) <= 0:
            raise ValueError("score weights must be non-negative and not all zero")
        if self.max_list_length < 1:
            raise ValueError("max_list_length must be >= 1")

    @classmethod
    def from_profiles(cls, profiles: Mapping[str, ProviderProfile], **overrides: Any) -> "AggregationPolicy":
        """Reasoning providers lead qualitative fields, search providers lead facts."""
        ordered = sorted(profiles.values(), key=lambda p: (p.priority, p.provider_id))
        reasoning = [p.provider_id for p in ordered if p.category == ProviderCategory.REASONING]
        search = [p.provider_id for p in ordered if p.category == ProviderCategory.SEARCH]
        overrides.setdefault("qualitative_priority", tuple(reasoning + search))
        overrides.setdefault("fact_priority", tuple(search + reasoning))
        return cls(**overrides)

    def priority_for(self, canonical: CanonicalField) -> Tuple[str, ...]:
        return self.fact_priority if canonical in self.fact_fields else self.qualitative_priority

    def rank(self, provider: str, canonical: CanonicalField) -> int:
        order = self.priority_for(canonical)
        return order.index(provider) if provider in order else len(order)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def _comparable(value: Any) -> str:
    return str(value).strip().casefold()


class Aggregator:
    """Resolves conflicting provider answers field by field."""

    def __init__(self, policy: Optional[AggregationPolicy] = None) -> None:
        self.policy = policy or AggregationPolicy()

    def merge(
        self,
        target: str,
        results: Iterable[ProviderResult],
        expected_providers: Sequence[str] = (),
        *,
        missing_kind: ErrorKind = ErrorKind.TIMEOUT,
    ) -> AggregatedResult:
        """Aggregate every result received for ``target``.

        Args:
            target: Company name the results belong to
            results: Provider results in any order
            expected_providers: Providers dispatched for the target; those
                without a result are recorded as failed with ``missing_kind``
            missing_kind: Error kind recorded for providers that never answered
        """
        by_provider = self._dedupe(target, results)
        successful = [r for r in by_provider.values() if r.succeeded]

        failure_kinds: Dict[str, str] = {}
        for provider, result in by_provider.items():
            if not result.succeeded:
                kind = result.error_kind or ErrorKind.UNKNOWN
                failure_kinds[provider] = kind.value
        for provider in expected_providers:
            if provider not in by_provider:
                failure_kinds[provider] = missing_kind.value

        fields: Dict[str, Any] = {}
        provenance: Dict[str, List[str]] = {}
        for canonical in CanonicalField:
            contributors = [r for r in successful if not _is_empty(r.fields.get(canonical.value))]
            if not contributors:
                continue
            if canonical.is_list:
                value, ordered = self._merge_list(canonical, contributors)
            else:
                value, ordered = self._merge_scalar(canonical, contributors)
            fields[canonical.value] = value
            provenance[canonical.value] = [r.provider for r in ordered]

        selected = set(expected_providers) | set(by_provider)
        providers_used = self._order_providers(r.provider for r in successful)
        providers_failed = self._order_providers(failure_kinds)

        score = self.quality_score(
            succeeded=len(successful),
            selected=len(selected),
            confidences=[
                r.confidence if r.confidence is not None else self.policy.default_confidence
                for r in successful
            ],
            agreement=self._agreement(successful),
        )

        return AggregatedResult(
            target=target,
            fields=fields,
            field_provenance=provenance,
            data_quality_score=score,
            providers_used=providers_used,
            providers_failed=providers_failed,
            failure_kinds={p: failure_kinds[p] for p in providers_failed},
        )

    def quality_score(
        self,
        *,
        succeeded: int,
        selected: int,
        confidences: Sequence[float],
        agreement: float,
    ) -> float:
        """Weighted average of coverage, confidence and agreement, in [0, 1].

        Each component is non-decreasing in its input and the weights are
        non-negative, so the score never drops when coverage, confidence or
        agreement improve.
        """
        if succeeded <= 0:
            return 0.0
        policy = self.policy
        coverage = min(succeeded / max(selected, succeeded, 1), 1.0)
        avg_confidence = sum(confidences) / len(confidences) if confidences else 0.0
        total_weight = policy.coverage_weight + policy.confidence_weight + policy.agreement_weight
        score = (
            policy.coverage_weight * coverage
            + policy.confidence_weight * min(max(avg_confidence, 0.0), 1.0)
            + policy.agreement_weight * min(max(agreement, 0.0), 1.0)
        ) / total_weight
        return round(min(max(score, 0.0), 1.0), 4)

    def _dedupe(self, target: str, results: Iterable[ProviderResult]) -> Dict[str, ProviderResult]:
        chosen: Dict[str, ProviderResult] = {}
        for result in results:
            if result.target != target:
                raise ValueError(
                    f"Result for '{result.target}' passed to aggregation of '{target}'"
                )
            current = chosen.get(result.provider)
            if current is None or self._preference(result) > self._preference(current):
                chosen[result.provider] = result
        return dict(sorted(chosen.items()))

    @staticmethod
    def _preference(result: ProviderResult) -> Tuple[int, float, int]:
        return (1 if result.succeeded else 0, result.confidence or 0.0, -result.attempt)

    def _merge_scalar(
        self, canonical: CanonicalField, contributors: List[ProviderResult]
    ) -> Tuple[Any, List[ProviderResult]]:
        ordered = sorted(
            contributors,
            key=lambda r: (
                -(r.confidence if r.confidence is not None else self.policy.default_confidence),
                self.policy.rank(r.provider, canonical),
                r.provider,
            ),
        )
        return ordered[0].fields[canonical.value], ordered

    def _merge_list(
        self, canonical: CanonicalField, contributors: List[ProviderResult]
    ) -> Tuple[List[Any], List[ProviderResult]]:
        ordered = sorted(
            contributors,
            key=lambda r: (
                self.policy.rank(r.provider, canonical),
                -(r.confidence if r.confidence is not None else self.policy.default_confidence),
                r.provider,
            ),
        )
        merged: List[Any] = []
        seen = set()
        for result in ordered:
            value = result.fields[canonical.value]
            items = value if isinstance(value, (list, tuple)) else [value]
            for item in items:
                if _is_empty(item):
                    continue
                key = _comparable(item)
                if key in seen:
                    continue
                seen.add(key)
                merged.append(item)
                if len(merged) >= self.policy.max_list_length:
                    return merged, ordered
        return merged, ordered

    def _agreement(self, successful: List[ProviderResult]) -> float:
        """Share of cross-check fields on which at least two providers agree.

        A field with fewer than two agreeing providers contributes zero, so a
        single-provider result always carries the full penalty. The
        denominator is fixed, so extra results can only raise the share.
        """
        checks = self.policy.cross_check_fields
        if not checks:
            return 0.0
        agreed = 0
        for canonical in checks:
            values = [
                _comparable(r.fields[canonical.value])
                for r in successful
                if not _is_empty(r.fields.get(canonical.value))
            ]
            if values and max(values.count(value) for value in set(values)) >= 2:
                agreed += 1
        return agreed / len(checks)

    def _order_providers(self, providers: Iterable[str]) -> List[str]:
        unique = set(providers)
        return sorted(
            unique,
            key=lambda p: (self.policy.rank(p, CanonicalField.DESCRIPTION), p),
        )
