"""Domain objects for analysis sessions and their progress events."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from competitoragents.providers.models import ProviderResult

from ..core.errors import SessionCancelledError, SessionStateError, SessionTotalFailureError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    """Lifecycle of an analysis session."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)

    def can_transition_to(self, new_status: "SessionStatus") -> bool:
        return new_status in _ALLOWED_TRANSITIONS[self]


# pending -> failed covers cancellation before the first dispatch.
_ALLOWED_TRANSITIONS: Dict[SessionStatus, frozenset] = {
    SessionStatus.PENDING: frozenset({SessionStatus.RUNNING, SessionStatus.FAILED}),
    SessionStatus.RUNNING: frozenset({SessionStatus.COMPLETED, SessionStatus.FAILED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.FAILED: frozenset(),
}


class FailureReason(str, Enum):
    """Why a session ended in ``failed``."""

    CANCELLED = "cancelled"
    ALL_PROVIDERS_FAILED = "all_providers_failed"


@dataclass
class AggregatedResult:
    """Merged view of every provider's answer for one target."""

    target: str
    fields: Dict[str, Any] = field(default_factory=dict)
    field_provenance: Dict[str, List[str]] = field(default_factory=dict)
    data_quality_score: float = 0.0
    providers_used: List[str] = field(default_factory=list)
    providers_failed: List[str] = field(default_factory=list)
    failure_kinds: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return bool(self.providers_used)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "fields": self.fields,
            "field_provenance": self.field_provenance,
            "data_quality_score": self.data_quality_score,
            "providers_used": list(self.providers_used),
            "providers_failed": list(self.providers_failed),
            "failure_kinds": dict(self.failure_kinds),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AggregatedResult":
        return cls(
            target=data["target"],
            fields=dict(data.get("fields") or {}),
            field_provenance={k: list(v) for k, v in (data.get("field_provenance") or {}).items()},
            data_quality_score=float(data.get("data_quality_score", 0.0)),
            providers_used=list(data.get("providers_used") or []),
            providers_failed=list(data.get("providers_failed") or []),
            failure_kinds=dict(data.get("failure_kinds") or {}),
        )


@dataclass
class AnalysisSession:
    """One end-to-end analysis request and everything it produced."""

    id: str
    targets: List[str]
    selected_providers: List[str]
    active_providers: List[str] = field(default_factory=list)
    status: SessionStatus = SessionStatus.PENDING
    per_target_results: Dict[str, AggregatedResult] = field(default_factory=dict)
    provider_results: List[ProviderResult] = field(default_factory=list)
    cost_total: float = 0.0
    cost_by_provider: Dict[str, float] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failure_reason: Optional[FailureReason] = None
    idempotency_key: Optional[str] = None

    @classmethod
    def new(
        cls,
        targets: List[str],
        selected_providers: List[str],
        *,
        active_providers: Optional[List[str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> "AnalysisSession":
        return cls(
            id=str(uuid.uuid4()),
            targets=list(targets),
            selected_providers=list(selected_providers),
            active_providers=list(active_providers or selected_providers),
            idempotency_key=idempotency_key,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def progress(self) -> float:
        """Percentage of targets that have an aggregated result."""
        if not self.targets:
            return 0.0
        resolved = sum(1 for target in self.targets if target in self.per_target_results)
        return round(resolved / len(self.targets) * 100, 1)

    def transition_to(self, new_status: SessionStatus, *, at: Optional[datetime] = None) -> None:
        """Move the session forward through its state machine.

        Raises:
            SessionStateError: If the transition would move backwards or
                leave a terminal state
        """
        if not self.status.can_transition_to(new_status):
            raise SessionStateError(
                f"Cannot move session from {self.status.value} to {new_status.value}",
                details={"session_id": self.id},
            )
        self.status = new_status
        if new_status == SessionStatus.RUNNING:
            self.started_at = at or utcnow()
        elif new_status.is_terminal:
            self.completed_at = at or utcnow()

    def raise_for_outcome(self) -> None:
        """Raise the taxonomy error for a failed session; no-op otherwise."""
        if self.status != SessionStatus.FAILED:
            return
        details = {"session_id": self.id, "targets": list(self.targets)}
        if self.failure_reason == FailureReason.CANCELLED:
            raise SessionCancelledError(details=details)
        raise SessionTotalFailureError(details=details)

    def summary(self) -> Dict[str, Any]:
        """Small state snapshot used for progress streams."""
        return {
            "session_id": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "total_targets": len(self.targets),
            "completed_targets": [t for t in self.targets if t in self.per_target_results],
            "cost_total": round(self.cost_total, 6),
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
        }

    def to_dict(self, *, include_provider_results: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "targets": list(self.targets),
            "selected_providers": list(self.selected_providers),
            "active_providers": list(self.active_providers),
            "status": self.status.value,
            "progress": self.progress,
            "per_target_results": {
                target: result.to_dict() for target, result in self.per_target_results.items()
            },
            "cost_total": round(self.cost_total, 6),
            "cost_by_provider": {k: round(v, 6) for k, v in self.cost_by_provider.items()},
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "idempotency_key": self.idempotency_key,
        }
        if include_provider_results:
            data["provider_results"] = [r.model_dump(mode="json") for r in self.provider_results]
        return data


class ProgressEventType(str, Enum):
    """Kinds of events delivered to progress subscribers."""

    SNAPSHOT = "snapshot"
    SESSION_CREATED = "session_created"
    SESSION_STARTED = "session_started"
    PROVIDER_RESULT = "provider_result"
    TARGET_COMPLETED = "target_completed"
    SESSION_COMPLETED = "session_completed"
    SESSION_FAILED = "session_failed"
    EVENTS_DROPPED = "events_dropped"

    @property
    def is_terminal(self) -> bool:
        return self in (ProgressEventType.SESSION_COMPLETED, ProgressEventType.SESSION_FAILED)


@dataclass
class ProgressEvent:
    """One entry in a session's progress stream."""

    session_id: str
    type: ProgressEventType
    status: Optional[str] = None
    progress: float = 0.0
    target: Optional[str] = None
    provider: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    sequence: int = 0
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "type": self.type.value,
            "sequence": self.sequence,
            "status": self.status,
            "progress": self.progress,
            "target": self.target,
            "provider": self.provider,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }
