"""Pydantic schemas for the HTTP API."""

from .analysis import (
    AggregatedResultModel,
    AnalysisSessionDetail,
    AnalysisSessionListResponse,
    AnalysisSessionSummary,
    GateDecisionModel,
    GlobalToggleRequest,
    ProgressEventModel,
    ProviderFailure,
    ProviderStatusResponse,
    ProviderToggleRequest,
    SessionEventsHistoryResponse,
    StartAnalysisRequest,
    StartAnalysisResponse,
)

__all__ = [
    "AggregatedResultModel",
    "AnalysisSessionDetail",
    "AnalysisSessionListResponse",
    "AnalysisSessionSummary",
    "GateDecisionModel",
    "GlobalToggleRequest",
    "ProgressEventModel",
    "ProviderFailure",
    "ProviderStatusResponse",
    "ProviderToggleRequest",
    "SessionEventsHistoryResponse",
    "StartAnalysisRequest",
    "StartAnalysisResponse",
]
