"""Per-target aggregated result table."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


class AggregatedResultRecord(SQLModel, table=True):
    """Merged record for one target of a session."""

    __tablename__ = "aggregated_results"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    session_id: str = Field(max_length=36, index=True, foreign_key="analysis_sessions.id")
    target: str = Field(max_length=255)

    fields: dict = Field(default_factory=dict, sa_column=Column(JSON))
    field_provenance: dict = Field(default_factory=dict, sa_column=Column(JSON))
    data_quality_score: float = Field(default=0.0)
    providers_used: list = Field(default_factory=list, sa_column=Column(JSON))
    providers_failed: list = Field(default_factory=list, sa_column=Column(JSON))
    failure_kinds: dict = Field(default_factory=dict, sa_column=Column(JSON))

    __table_args__ = (
        UniqueConstraint("session_id", "target", name="uq_aggregated_results_target"),
    )
