"""Session persistence contract and the process-lifetime implementation."""

from __future__ import annotations

import copy
from datetime import datetime
from threading import RLock
from typing import Dict, List, Optional, Protocol

import structlog

from competitoragents.providers.models import ProviderResult

from ..core.errors import ResourceNotFoundError, SessionStateError
from .models import AggregatedResult, AnalysisSession, FailureReason, SessionStatus

logger = structlog.get_logger(__name__)


class SessionStore(Protocol):
    """Storage operations the orchestrator relies on."""

    async def create_session(self, session: AnalysisSession) -> AnalysisSession:
        """Persist a new session.

        When ``session.idempotency_key`` matches an existing session, that
        session is returned unchanged and nothing is written.
        """
        ...

    async def mark_running(self, session_id: str, started_at: datetime) -> None: ...

    async def append_result(
        self,
        session_id: str,
        result: ProviderResult,
        *,
        cost_total: float,
        cost_by_provider: Dict[str, float],
    ) -> bool:
        """Record a provider result; ``False`` if the triple already exists."""
        ...

    async def append_aggregate(self, session_id: str, aggregated: AggregatedResult) -> None: ...

    async def finalize_session(
        self,
        session_id: str,
        status: SessionStatus,
        *,
        completed_at: datetime,
        failure_reason: Optional[FailureReason],
        cost_total: float,
        cost_by_provider: Dict[str, float],
    ) -> AnalysisSession: ...

    async def get_session(self, session_id: str) -> Optional[AnalysisSession]: ...

    async def list_sessions(
        self, *, skip: int = 0, limit: int = 50, status: Optional[SessionStatus] = None
    ) -> List[AnalysisSession]: ...


class InMemorySessionStore:
    """Thread-safe in-process store.

    Keeps at most ``max_sessions`` sessions; when the limit is exceeded the
    oldest terminal sessions are evicted. Active sessions are never evicted.
    Returned sessions are copies, so callers cannot mutate stored state.
    """

    def __init__(self, *, max_sessions: int = 1000) -> None:
        self._lock = RLock()
        self._sessions: Dict[str, AnalysisSession] = {}
        self._idempotency: Dict[str, str] = {}
        self.max_sessions = max_sessions

    def _require(self, session_id: str) -> AnalysisSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise ResourceNotFoundError(
                f"Analysis session {session_id} not found", details={"session_id": session_id}
            )
        return session

    async def create_session(self, session: AnalysisSession) -> AnalysisSession:
        with self._lock:
            if session.idempotency_key:
                existing_id = self._idempotency.get(session.idempotency_key)
                if existing_id is not None and existing_id in self._sessions:
                    return copy.deepcopy(self._sessions[existing_id])
            if session.id in self._sessions:
                raise SessionStateError(
                    f"Analysis session {session.id} already exists",
                    details={"session_id": session.id},
                )
            self._sessions[session.id] = copy.deepcopy(session)
            if session.idempotency_key:
                self._idempotency[session.idempotency_key] = session.id
            self._evict()
            return copy.deepcopy(session)

    async def mark_running(self, session_id: str, started_at: datetime) -> None:
        with self._lock:
            self._require(session_id).transition_to(SessionStatus.RUNNING, at=started_at)

    async def append_result(
        self,
        session_id: str,
        result: ProviderResult,
        *,
        cost_total: float,
        cost_by_provider: Dict[str, float],
    ) -> bool:
        with self._lock:
            session = self._require(session_id)
            for existing in session.provider_results:
                if existing.target == result.target and existing.provider == result.provider:
                    return False
            session.provider_results.append(result)
            session.cost_total = cost_total
            session.cost_by_provider = dict(cost_by_provider)
            return True

    async def append_aggregate(self, session_id: str, aggregated: AggregatedResult) -> None:
        with self._lock:
            session = self._require(session_id)
            session.per_target_results[aggregated.target] = copy.deepcopy(aggregated)

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
        with self._lock:
            session = self._require(session_id)
            session.transition_to(status, at=completed_at)
            session.failure_reason = failure_reason
            session.cost_total = cost_total
            session.cost_by_provider = dict(cost_by_provider)
            self._evict()
            return copy.deepcopy(session)

    async def get_session(self, session_id: str) -> Optional[AnalysisSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            return copy.deepcopy(session) if session is not None else None

    async def list_sessions(
        self, *, skip: int = 0, limit: int = 50, status: Optional[SessionStatus] = None
    ) -> List[AnalysisSession]:
        with self._lock:
            sessions = sorted(self._sessions.values(), key=lambda s: s.created_at, reverse=True)
            if status is not None:
                sessions = [s for s in sessions if s.status == status]
            return [copy.deepcopy(s) for s in sessions[skip : skip + limit]]

    def _evict(self) -> None:
        overflow = len(self._sessions) - self.max_sessions
        if overflow <= 0:
            return
        terminal = sorted(
            (s for s in self._sessions.values() if s.is_terminal),
            key=lambda s: s.completed_at or s.created_at,
        )
        for session in terminal[:overflow]:
            del self._sessions[session.id]
            if session.idempotency_key:
                self._idempotency.pop(session.idempotency_key, None)
            logger.info("session_evicted", session_id=session.id)
