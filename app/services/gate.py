"""Admission control for analysis sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Collection, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import structlog

logger = structlog.get_logger(__name__)

GLOBAL_DISABLED_REASON = "global analysis disabled"
NO_PROVIDERS_REASON = "no providers selected"
NO_ACTIVE_PROVIDERS_REASON = "no active providers among selection"


@dataclass(frozen=True)
class ProviderStatus:
    """Live availability of one provider."""

    active: bool
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {"active": self.active, "status": self.status}


class ProviderStatusSource(Protocol):
    """External collaborator reporting provider availability."""

    def get_provider_status(self) -> Mapping[str, ProviderStatus]: ...

    def is_global_analysis_enabled(self) -> bool: ...


@dataclass(frozen=True)
class GateDecision:
    """Result of evaluating the gate for one request."""

    allowed: bool
    reasons: Tuple[str, ...] = ()
    provider_status: Mapping[str, ProviderStatus] = field(default_factory=dict)
    projected_cost_usd: Optional[float] = None

    @property
    def active_providers(self) -> List[str]:
        """Requested providers that may be dispatched, in request order."""
        return [provider for provider, status in self.provider_status.items() if status.active]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reasons": list(self.reasons),
            "provider_status": {
                provider: status.to_dict() for provider, status in self.provider_status.items()
            },
            "projected_cost_usd": self.projected_cost_usd,
        }


class GateEvaluator:
    """Decides whether an analysis may start and which providers it may use.

    The evaluator holds no mutable state; it reads a snapshot of the
    availability source on every call and is safe to share between tasks.
    """

    def __init__(
        self,
        source: ProviderStatusSource,
        *,
        max_projected_cost_usd: Optional[float] = None,
        cost_estimates: Optional[Mapping[str, float]] = None,
        default_cost_estimate: float = 0.02,
    ) -> None:
        self.source = source
        self.max_projected_cost_usd = max_projected_cost_usd
        self.cost_estimates = dict(cost_estimates or {})
        self.default_cost_estimate = default_cost_estimate

    def evaluate(
        self,
        providers: Sequence[str],
        *,
        target_count: int = 1,
        available: Optional[Collection[str]] = None,
    ) -> GateDecision:
        """Evaluate the gate for ``providers``.

        Args:
            providers: Provider ids the caller selected, in preference order
            target_count: Number of targets, used for the cost projection
            available: Provider ids that have an adapter; others are reported
                as ``not_configured``
        """
        snapshot = dict(self.source.get_provider_status())
        reasons: List[str] = []

        if not self.source.is_global_analysis_enabled():
            reasons.append(GLOBAL_DISABLED_REASON)

        provider_status: Dict[str, ProviderStatus] = {}
        for provider in providers:
            status = snapshot.get(provider)
            if status is None:
                status = ProviderStatus(active=False, status="unknown")
            elif available is not None and provider not in available:
                status = ProviderStatus(active=False, status="not_configured")
            provider_status[provider] = status

        if not providers:
            reasons.append(NO_PROVIDERS_REASON)
        elif not any(status.active for status in provider_status.values()):
            reasons.append(NO_ACTIVE_PROVIDERS_REASON)

        projected: Optional[float] = None
        if self.max_projected_cost_usd is not None:
            active = [p for p, s in provider_status.items() if s.active]
            projected = round(
                sum(self.cost_estimates.get(p, self.default_cost_estimate) for p in active)
                * max(target_count, 0),
                4,
            )
            if projected > self.max_projected_cost_usd:
                reasons.append(
                    f"projected cost ${projected:.2f} exceeds budget "
                    f"${self.max_projected_cost_usd:.2f}"
                )

        decision = GateDecision(
            allowed=not reasons,
            reasons=tuple(reasons),
            provider_status=provider_status,
            projected_cost_usd=projected,
        )
        if not decision.allowed:
            logger.info("analysis_gate_denied", reasons=list(decision.reasons))
        return decision

    def check_provider(self, provider: str) -> Tuple[bool, str]:
        """Re-check a single provider right before dispatching a call."""
        if not self.source.is_global_analysis_enabled():
            return False, GLOBAL_DISABLED_REASON
        status = self.source.get_provider_status().get(provider)
        if status is None:
            return False, "unknown"
        return status.active, status.status
