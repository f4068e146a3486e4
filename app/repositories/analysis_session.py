"""Repository for analysis session operations."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models.aggregated_result import AggregatedResultRecord
from ..db.models.analysis_session import AnalysisSessionRecord
from ..db.models.provider_result import ProviderResultRecord
from .base import BaseRepository


class AnalysisSessionRepository(BaseRepository[AnalysisSessionRecord]):
    """Repository for analysis session CRUD operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(AnalysisSessionRecord, session)

    async def get_by_id(self, session_id: str) -> Optional[AnalysisSessionRecord]:
        """Get an analysis session by UUID string."""
        return await self.session.get(self.model, session_id)

    async def get_by_idempotency_key(self, key: str) -> Optional[AnalysisSessionRecord]:
        statement = select(self.model).where(self.model.idempotency_key == key)
        result = await self.session.execute(statement)
        return result.scalars().first()

    async def get_recent(
        self, *, skip: int = 0, limit: int = 50, status: Optional[str] = None
    ) -> List[AnalysisSessionRecord]:
        """Get recent analysis sessions ordered by creation date.

        Args:
            skip: Number of records to skip for pagination
            limit: Maximum number of records to return
            status: Optional status filter (pending, running, completed, failed)

        Returns:
            List of analysis sessions ordered by created_at descending
        """
        statement = select(self.model).order_by(desc(self.model.created_at))

        if status:
            statement = statement.where(self.model.status == status)

        statement = statement.offset(skip).limit(limit)
        result = await self.session.execute(statement)
        return list(result.scalars().all())

    async def delete_finished_before(self, cutoff: datetime) -> int:
        """Delete terminal sessions (and their results) completed before ``cutoff``.

        Returns:
            Number of sessions deleted
        """
        statement = select(self.model.id).where(
            self.model.status.in_(("completed", "failed")),
            self.model.completed_at < cutoff,
        )
        ids = list((await self.session.execute(statement)).scalars().all())
        if not ids:
            return 0
        await self.session.execute(
            delete(ProviderResultRecord).where(ProviderResultRecord.session_id.in_(ids))
        )
        await self.session.execute(
            delete(AggregatedResultRecord).where(AggregatedResultRecord.session_id.in_(ids))
        )
        await self.session.execute(delete(self.model).where(self.model.id.in_(ids)))
        await self.session.commit()
        return len(ids)
