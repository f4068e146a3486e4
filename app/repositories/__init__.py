"""Repository layer for database operations."""

from __future__ import annotations

from .aggregated_result import AggregatedResultRepository
from .analysis_session import AnalysisSessionRepository
from .base import BaseRepository
from .provider_result import ProviderResultRepository

__all__ = [
    "AggregatedResultRepository",
    "AnalysisSessionRepository",
    "BaseRepository",
    "ProviderResultRepository",
]
