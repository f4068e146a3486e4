"""Analysis session table."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, Index
from sqlmodel import Field, SQLModel


class AnalysisSessionRecord(SQLModel, table=True):
    """One competitor-analysis request.

    Per-provider and per-target results live in their own tables; this row
    carries the request, the lifecycle status and the cost totals.
    """

    __tablename__ = "analysis_sessions"

    id: str = Field(primary_key=True, max_length=36)  # UUID string
    status: str = Field(default="pending", max_length=20, index=True)  # pending, running, completed, failed
    failure_reason: Optional[str] = Field(default=None, max_length=40)
    idempotency_key: Optional[str] = Field(default=None, max_length=128, unique=True)

    # Request
    targets: list = Field(default_factory=list, sa_column=Column(JSON))
    selected_providers: list = Field(default_factory=list, sa_column=Column(JSON))
    active_providers: list = Field(default_factory=list, sa_column=Column(JSON))

    # Cost
    cost_total: float = Field(default=0.0)
    cost_by_provider: dict = Field(default_factory=dict, sa_column=Column(JSON))

    # Timestamps
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )

    __table_args__ = (Index("idx_analysis_sessions_created", "created_at"),)
