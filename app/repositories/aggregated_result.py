"""Repository for per-target aggregated results."""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models.aggregated_result import AggregatedResultRecord
from .base import BaseRepository


class AggregatedResultRepository(BaseRepository[AggregatedResultRecord]):
    """Repository for aggregated result rows."""

    def __init__(self, session: AsyncSession):
        super().__init__(AggregatedResultRecord, session)

    async def get_by_session(self, session_id: str) -> List[AggregatedResultRecord]:
        statement = select(self.model).where(self.model.session_id == session_id)
        result = await self.session.execute(statement)
        return list(result.scalars().all())

    async def get_for_target(
        self, session_id: str, target: str
    ) -> Optional[AggregatedResultRecord]:
        statement = select(self.model).where(
            self.model.session_id == session_id, self.model.target == target
        )
        result = await self.session.execute(statement)
        return result.scalars().first()
