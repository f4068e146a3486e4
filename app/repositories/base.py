"""Shared persistence helpers for the analysis repositories."""

from __future__ import annotations

from typing import Any, Generic, Type, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

RecordType = TypeVar("RecordType", bound=SQLModel)


class BaseRepository(Generic[RecordType]):
    """Commit-per-call writes against one record type."""

    def __init__(self, model: Type[RecordType], session: AsyncSession):
        self.model = model
        self.session = session

    async def create(self, record: RecordType) -> RecordType:
        """Insert ``record`` and return it refreshed from the database.

        Constraint violations surface as :class:`sqlalchemy.exc.IntegrityError`
        so callers can translate duplicates into domain errors.
        """
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return record

    async def update(self, *, db_obj: RecordType, obj_in: dict[str, Any]) -> RecordType:
        """Apply ``obj_in`` to known columns of ``db_obj`` and commit."""
        for column, value in obj_in.items():
            if hasattr(db_obj, column):
                setattr(db_obj, column, value)

        self.session.add(db_obj)
        await self.session.commit()
        await self.session.refresh(db_obj)
        return db_obj
