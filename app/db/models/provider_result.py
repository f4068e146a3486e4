"""Per-provider result table."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class ProviderResultRecord(SQLModel, table=True):
    """Final outcome of one provider for one target, after retries."""

    __tablename__ = "provider_results"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    session_id: str = Field(max_length=36, index=True, foreign_key="analysis_sessions.id")
    target: str = Field(max_length=255)
    provider: str = Field(max_length=50)

    fields: dict = Field(default_factory=dict, sa_column=Column(JSON))
    confidence: Optional[float] = Field(default=None)
    cost_usd: float = Field(default=0.0)
    error: Optional[str] = Field(default=None)
    error_kind: Optional[str] = Field(default=None, max_length=30)
    attempt: int = Field(default=1)
    model: Optional[str] = Field(default=None, max_length=100)
    latency_ms: Optional[float] = Field(default=None)
    recorded_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))

    __table_args__ = (
        UniqueConstraint("session_id", "target", "provider", name="uq_provider_results_triple"),
    )
