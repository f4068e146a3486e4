"""Session store backed by the relational database."""

from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from competitoragents.providers.models import ErrorKind, ProviderResult

from ..core.errors import ResourceNotFoundError, SessionStateError
from ..db.models import AggregatedResultRecord, AnalysisSessionRecord, ProviderResultRecord
from ..db.session import DatabaseManager
from ..repositories import (
    AggregatedResultRepository,
    AnalysisSessionRepository,
    ProviderResultRepository,
)
from .models import AggregatedResult, AnalysisSession, FailureReason, SessionStatus, utcnow

logger = structlog.get_logger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite returns naive datetimes even for timezone-aware columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlSessionStore:
    """Durable :class:`~app.services.session_store.SessionStore`.

    Uniqueness of ``(session, target, provider)`` and of idempotency keys is
    enforced by database constraints, so concurrent writers cannot create
    duplicates.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def create_session(self, session: AnalysisSession) -> AnalysisSession:
        async with self._db.session_factory() as db_session:
            repo = AnalysisSessionRepository(db_session)
            if session.idempotency_key:
                existing = await repo.get_by_idempotency_key(session.idempotency_key)
                if existing is not None:
                    return await self._load(db_session, existing)
            try:
                await repo.create(self._to_record(session))
            except IntegrityError:
                await db_session.rollback()
                if session.idempotency_key:
                    existing = await repo.get_by_idempotency_key(session.idempotency_key)
                    if existing is not None:
                        return await self._load(db_session, existing)
                raise SessionStateError(
                    f"Analysis session {session.id} already exists",
                    details={"session_id": session.id},
                )
        return copy.deepcopy(session)

    async def mark_running(self, session_id: str, started_at: datetime) -> None:
        async with self._db.session_factory() as db_session:
            repo = AnalysisSessionRepository(db_session)
            record = await self._require(repo, session_id)
            self._check_transition(record, SessionStatus.RUNNING)
            await repo.update(
                db_obj=record,
                obj_in={"status": SessionStatus.RUNNING.value, "started_at": started_at},
            )

    async def append_result(
        self,
        session_id: str,
        result: ProviderResult,
        *,
        cost_total: float,
        cost_by_provider: Dict[str, float],
    ) -> bool:
        async with self._db.session_factory() as db_session:
            record = await self._require(AnalysisSessionRepository(db_session), session_id)
            db_session.add(
                ProviderResultRecord(
                    session_id=session_id,
                    target=result.target,
                    provider=result.provider,
                    fields=dict(result.fields),
                    confidence=result.confidence,
                    cost_usd=result.cost_usd,
                    error=result.error,
                    error_kind=result.error_kind.value if result.error_kind else None,
                    attempt=result.attempt,
                    model=result.model,
                    latency_ms=result.latency_ms,
                    recorded_at=utcnow(),
                )
            )
            record.cost_total = cost_total
            record.cost_by_provider = dict(cost_by_provider)
            db_session.add(record)
            try:
                await db_session.commit()
            except IntegrityError:
                await db_session.rollback()
                logger.info(
                    "duplicate_provider_result_rejected",
                    session_id=session_id,
                    target=result.target,
                    provider=result.provider,
                )
                return False
        return True

    async def append_aggregate(self, session_id: str, aggregated: AggregatedResult) -> None:
        async with self._db.session_factory() as db_session:
            await self._require(AnalysisSessionRepository(db_session), session_id)
            repo = AggregatedResultRepository(db_session)
            values = aggregated.to_dict()
            values.pop("target")
            existing = await repo.get_for_target(session_id, aggregated.target)
            if existing is not None:
                await repo.update(db_obj=existing, obj_in=values)
            else:
                await repo.create(
                    AggregatedResultRecord(session_id=session_id, target=aggregated.target, **values)
                )

    async def finalize_session(
        self,
        session_id: str,
        status: SessionStatus,
        *,
        completed_at: datetime,
        failure_reason: Optional[FailureReason],
        cost_total: float,
        cost_by_provider: Dict[str, float],
    ) -> AnalysisSession:
        async with self._db.session_factory() as db_session:
            repo = AnalysisSessionRepository(db_session)
            record = await self._require(repo, session_id)
            self._check_transition(record, status)
            record = await repo.update(
                db_obj=record,
                obj_in={
                    "status": status.value,
                    "completed_at": completed_at,
                    "failure_reason": failure_reason.value if failure_reason else None,
                    "cost_total": cost_total,
                    "cost_by_provider": dict(cost_by_provider),
                },
            )
            return await self._load(db_session, record)

    async def get_session(self, session_id: str) -> Optional[AnalysisSession]:
        async with self._db.session_factory() as db_session:
            record = await AnalysisSessionRepository(db_session).get_by_id(session_id)
            if record is None:
                return None
            return await self._load(db_session, record)

    async def list_sessions(
        self, *, skip: int = 0, limit: int = 50, status: Optional[SessionStatus] = None
    ) -> List[AnalysisSession]:
        async with self._db.session_factory() as db_session:
            records = await AnalysisSessionRepository(db_session).get_recent(
                skip=skip, limit=limit, status=status.value if status else None
            )
            return [await self._load(db_session, record) for record in records]

    async def prune(self, *, retention_days: int) -> int:
        """Delete finished sessions older than the retention window."""
        cutoff = utcnow() - timedelta(days=retention_days)
        async with self._db.session_factory() as db_session:
            deleted = await AnalysisSessionRepository(db_session).delete_finished_before(cutoff)
        if deleted:
            logger.info("analysis_sessions_pruned", deleted=deleted, retention_days=retention_days)
        return deleted

    # ----- conversion ---------------------------------------------------------------

    @staticmethod
    async def _require(repo: AnalysisSessionRepository, session_id: str) -> AnalysisSessionRecord:
        record = await repo.get_by_id(session_id)
        if record is None:
            raise ResourceNotFoundError(
                f"Analysis session {session_id} not found", details={"session_id": session_id}
            )
        return record

    @staticmethod
    def _check_transition(record: AnalysisSessionRecord, status: SessionStatus) -> None:
        current = SessionStatus(record.status)
        if not current.can_transition_to(status):
            raise SessionStateError(
                f"Cannot move session from {current.value} to {status.value}",
                details={"session_id": record.id},
            )

    @staticmethod
    def _to_record(session: AnalysisSession) -> AnalysisSessionRecord:
        return AnalysisSessionRecord(
            id=session.id,
            status=session.status.value,
            failure_reason=session.failure_reason.value if session.failure_reason else None,
            idempotency_key=session.idempotency_key,
            targets=list(session.targets),
            selected_providers=list(session.selected_providers),
            active_providers=list(session.active_providers),
            cost_total=session.cost_total,
            cost_by_provider=dict(session.cost_by_provider),
            created_at=session.created_at,
            started_at=session.started_at,
            completed_at=session.completed_at,
        )

    async def _load(self, db_session: AsyncSession, record: AnalysisSessionRecord) -> AnalysisSession:
        result_rows = await ProviderResultRepository(db_session).get_by_session(record.id)
        aggregate_rows = await AggregatedResultRepository(db_session).get_by_session(record.id)
        return AnalysisSession(
            id=record.id,
            targets=list(record.targets or []),
            selected_providers=list(record.selected_providers or []),
            active_providers=list(record.active_providers or []),
            status=SessionStatus(record.status),
            per_target_results={
                row.target: AggregatedResult(
                    target=row.target,
                    fields=dict(row.fields or {}),
                    field_provenance=dict(row.field_provenance or {}),
                    data_quality_score=row.data_quality_score,
                    providers_used=list(row.providers_used or []),
                    providers_failed=list(row.providers_failed or []),
                    failure_kinds=dict(row.failure_kinds or {}),
                )
                for row in aggregate_rows
            },
            provider_results=[
                ProviderResult(
                    provider=row.provider,
                    target=row.target,
                    fields=dict(row.fields or {}),
                    confidence=row.confidence,
                    cost_usd=row.cost_usd,
                    error=row.error,
                    error_kind=ErrorKind(row.error_kind) if row.error_kind else None,
                    attempt=row.attempt,
                    model=row.model,
                    latency_ms=row.latency_ms,
                )
                for row in result_rows
            ],
            cost_total=record.cost_total,
            cost_by_provider=dict(record.cost_by_provider or {}),
            created_at=_aware(record.created_at),
            started_at=_aware(record.started_at),
            completed_at=_aware(record.completed_at),
            failure_reason=FailureReason(record.failure_reason) if record.failure_reason else None,
            idempotency_key=record.idempotency_key,
        )
