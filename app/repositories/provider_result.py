"""Repository for per-provider results."""

from __future__ import annotations

from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models.provider_result import ProviderResultRecord
from .base import BaseRepository


class ProviderResultRepository(BaseRepository[ProviderResultRecord]):
    """Repository for provider result rows."""

    def __init__(self, session: AsyncSession):
        super().__init__(ProviderResultRecord, session)

    async def get_by_session(self, session_id: str) -> List[ProviderResultRecord]:
        """All results of a session in the order they were recorded."""
        statement = (
            select(self.model)
            .where(self.model.session_id == session_id)
            .order_by(self.model.recorded_at)
        )
        result = await self.session.execute(statement)
        return list(result.scalars().all())
