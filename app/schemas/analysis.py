"""Request and response schemas for the analysis API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from competitoragents.providers.models import ProviderResult

from ..core.errors import CompetitorAgentsError, error_for_result
from ..services.gate import GateDecision
from ..services.models import AnalysisSession


class StartAnalysisRequest(BaseModel):
    """Request body required to start a competitor analysis."""

    targets: List[str] = Field(..., min_length=1, description="Company names to analyze")
    providers: List[str] = Field(..., description="Provider ids to fan out to, in preference order")
    idempotency_key: Optional[str] = Field(
        default=None,
        max_length=128,
        description="Repeating a request with the same key returns the original session",
    )
    context: Dict[str, Any] = Field(
        default_factory=dict,
        description="Extra prompt context such as industry or region",
    )

    @field_validator("providers")
    @classmethod
    def normalize_providers(cls, value: List[str]) -> List[str]:
        return [provider.strip().lower() for provider in value if provider and provider.strip()]


class ProviderStatusModel(BaseModel):
    active: bool
    status: str


class GateDecisionModel(BaseModel):
    """Admission decision for one request."""

    allowed: bool
    reasons: List[str] = Field(default_factory=list)
    provider_status: Dict[str, ProviderStatusModel] = Field(default_factory=dict)
    projected_cost_usd: Optional[float] = None

    @classmethod
    def from_decision(cls, decision: GateDecision) -> "GateDecisionModel":
        return cls(**decision.to_dict())


class StartAnalysisResponse(BaseModel):
    """Metadata returned when an analysis has been scheduled."""

    session_id: str
    status: str
    created: bool = Field(..., description="False when an idempotent repeat matched a session")
    gate_decision: GateDecisionModel
    stream_endpoint: str


class ProviderFailure(BaseModel):
    """Why one provider produced no data for one target."""

    provider: str
    target: str
    kind: str
    code: str
    message: str
    attempts: int

    @classmethod
    def from_result(cls, result: ProviderResult) -> "ProviderFailure":
        error = error_for_result(result)
        return cls(
            provider=result.provider,
            target=result.target,
            kind=result.error_kind.value if result.error_kind else "unknown",
            code=error.code if error else "provider_error",
            message=result.error or "",
            attempts=result.attempt,
        )


class AggregatedResultModel(BaseModel):
    target: str
    fields: Dict[str, Any] = Field(default_factory=dict)
    field_provenance: Dict[str, List[str]] = Field(default_factory=dict)
    data_quality_score: float = Field(..., ge=0.0, le=1.0)
    providers_used: List[str] = Field(default_factory=list)
    providers_failed: List[str] = Field(default_factory=list)
    failure_kinds: Dict[str, str] = Field(default_factory=dict)


class AnalysisSessionSummary(BaseModel):
    """Lightweight view used in listings."""

    id: str
    targets: List[str]
    status: str
    progress: float
    cost_total: float
    failure_reason: Optional[str] = None
    created_at: str
    completed_at: Optional[str] = None

    @classmethod
    def from_session(cls, session: AnalysisSession) -> "AnalysisSessionSummary":
        data = session.to_dict()
        return cls(
            id=data["id"],
            targets=data["targets"],
            status=data["status"],
            progress=data["progress"],
            cost_total=data["cost_total"],
            failure_reason=data["failure_reason"],
            created_at=data["created_at"],
            completed_at=data["completed_at"],
        )


class AnalysisSessionDetail(BaseModel):
    """Full status view of one session."""

    id: str
    targets: List[str]
    selected_providers: List[str]
    active_providers: List[str]
    status: str
    progress: float
    per_target_results: Dict[str, AggregatedResultModel] = Field(default_factory=dict)
    provider_failures: List[ProviderFailure] = Field(default_factory=list)
    cost_total: float
    cost_by_provider: Dict[str, float] = Field(default_factory=dict)
    created_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    failure_reason: Optional[str] = None
    error: Optional[Dict[str, Any]] = Field(
        default=None, description="Structured error for sessions that ended in failed"
    )

    @classmethod
    def from_session(cls, session: AnalysisSession) -> "AnalysisSessionDetail":
        data = session.to_dict()
        data.pop("idempotency_key", None)
        error: Optional[Dict[str, Any]] = None
        try:
            session.raise_for_outcome()
        except CompetitorAgentsError as exc:
            error = exc.to_dict()
        return cls(
            **data,
            provider_failures=[
                ProviderFailure.from_result(result)
                for result in session.provider_results
                if not result.succeeded
            ],
            error=error,
        )


class AnalysisSessionListResponse(BaseModel):
    sessions: List[AnalysisSessionSummary] = Field(default_factory=list)
    total: int = Field(..., description="Total number of sessions in result")
    skip: int = Field(..., description="Number of records skipped")
    limit: int = Field(..., description="Maximum records returned")


class ProgressEventModel(BaseModel):
    session_id: str
    type: str
    sequence: int
    status: Optional[str] = None
    progress: float = 0.0
    target: Optional[str] = None
    provider: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str


class SessionEventsHistoryResponse(BaseModel):
    """Recent events buffered for a session."""

    session_id: str = Field(..., description="The session identifier")
    events: List[ProgressEventModel] = Field(
        default_factory=list, description="Buffered events ordered from oldest to newest"
    )
    count: int = Field(..., description="Number of events in the buffer")


class ProviderStatusResponse(BaseModel):
    global_analysis_enabled: bool
    providers: Dict[str, ProviderStatusModel] = Field(default_factory=dict)


class ProviderToggleRequest(BaseModel):
    enabled: bool


class GlobalToggleRequest(BaseModel):
    enabled: bool
