"""Database models for the competitor-analysis service."""

from __future__ import annotations

from .aggregated_result import AggregatedResultRecord
from .analysis_session import AnalysisSessionRecord
from .provider_result import ProviderResultRecord

__all__ = [
    "AggregatedResultRecord",
    "AnalysisSessionRecord",
    "ProviderResultRecord",
]
