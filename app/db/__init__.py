"""Database package for the competitor-analysis service."""

from __future__ import annotations

from .models import AggregatedResultRecord, AnalysisSessionRecord, ProviderResultRecord
from .session import DatabaseManager, init_db

__all__ = [
    "AggregatedResultRecord",
    "AnalysisSessionRecord",
    "DatabaseManager",
    "ProviderResultRecord",
    "init_db",
]
