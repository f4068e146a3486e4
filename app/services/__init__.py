"""Service layer: orchestration, aggregation, gating, progress and storage."""

from .aggregator import AggregationPolicy, Aggregator
from .cost_tracker import CostTracker
from .gate import GateDecision, GateEvaluator, ProviderStatus
from .models import (
    AggregatedResult,
    AnalysisSession,
    FailureReason,
    ProgressEvent,
    ProgressEventType,
    SessionStatus,
)
from .orchestrator import AnalysisOrchestrator, OrchestratorConfig, StartAnalysisResult
from .progress import ProgressPublisher, Subscription
from .provider_health import ProviderHealthRegistry
from .session_store import InMemorySessionStore, SessionStore

__all__ = [
    "AggregatedResult",
    "AggregationPolicy",
    "Aggregator",
    "AnalysisOrchestrator",
    "AnalysisSession",
    "CostTracker",
    "FailureReason",
    "GateDecision",
    "GateEvaluator",
    "InMemorySessionStore",
    "OrchestratorConfig",
    "ProgressEvent",
    "ProgressEventType",
    "ProgressPublisher",
    "ProviderHealthRegistry",
    "ProviderStatus",
    "SessionStatus",
    "SessionStore",
    "StartAnalysisResult",
    "Subscription",
]
