"""Competitor-analysis orchestration.

The orchestrator admits a request through the gate, fans provider calls out
for every (target, provider) pair, wraps each call in the retry policy and
the session's cost tracker, aggregates per target as soon as the target's
calls settle, and drives the session through
``pending -> running -> {completed | failed}``. A session becomes
``running`` when its first provider call is dispatched, and a call's target
timeout is measured from its own dispatch.

Each session is owned by one background task. Writes to the session go
through that session's ``asyncio.Lock``; sessions never share a lock.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

import structlog

from competitoragents.providers.base import BaseProviderAdapter, ProviderCallContext
from competitoragents.providers.models import ErrorKind, ProviderResult
from competitoragents.providers.profiles import ProviderProfile, default_provider_profiles

from ..core.context import bind_session_context
from ..core.errors import ResourceNotFoundError, ValidationError
from ..core.resilience import RetryPolicy, call_with_retry
from .aggregator import AggregationPolicy, Aggregator
from .cost_tracker import CostTracker
from .gate import GateDecision, GateEvaluator, ProviderStatusSource
from .models import (
    AnalysisSession,
    FailureReason,
    ProgressEvent,
    ProgressEventType,
    SessionStatus,
    utcnow,
)
from .progress import ProgressPublisher
from .provider_health import ProviderHealthRegistry
from .session_store import SessionStore

logger = structlog.get_logger(__name__)


@dataclass
class OrchestratorConfig:
    """Explicit configuration handed to the orchestrator at construction."""

    max_in_flight: int = 4
    attempt_timeout: Optional[float] = 60.0
    target_timeout: Optional[float] = 180.0
    session_timeout: Optional[float] = 900.0
    cancel_grace_period: float = 10.0
    max_targets: int = 25
    max_retained_runs: int = 256
    max_projected_cost_usd: Optional[float] = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    aggregation: AggregationPolicy = field(default_factory=AggregationPolicy)
    profiles: Dict[str, ProviderProfile] = field(default_factory=default_provider_profiles)
    prompt_context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")


@dataclass(frozen=True)
class StartAnalysisResult:
    """What ``start_analysis`` hands back to the caller."""

    session_id: Optional[str]
    gate_decision: GateDecision
    created: bool = False

    @property
    def accepted(self) -> bool:
        return self.session_id is not None


@dataclass(eq=False)
class _SessionRun:
    session: AnalysisSession
    cost_tracker: CostTracker
    semaphore: asyncio.Semaphore
    prompt_context: Dict[str, Any]
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    results: Dict[str, Dict[str, ProviderResult]] = field(default_factory=dict)
    resolved: Set[str] = field(default_factory=set)
    tasks: Set[asyncio.Task] = field(default_factory=set)
    cancel_requested: asyncio.Event = field(default_factory=asyncio.Event)
    finished: asyncio.Event = field(default_factory=asyncio.Event)
    runner: Optional[asyncio.Task] = None
    finalized: bool = False


class AnalysisOrchestrator:
    """Runs multi-provider competitor analyses."""

    def __init__(
        self,
        adapters: Mapping[str, BaseProviderAdapter],
        *,
        status_source: ProviderStatusSource,
        store: SessionStore,
        publisher: ProgressPublisher,
        config: Optional[OrchestratorConfig] = None,
        aggregator: Optional[Aggregator] = None,
        health: Optional[ProviderHealthRegistry] = None,
    ) -> None:
        self.config = config or OrchestratorConfig()
        self._adapters: Dict[str, BaseProviderAdapter] = dict(adapters)
        self.gate = GateEvaluator(
            status_source,
            max_projected_cost_usd=self.config.max_projected_cost_usd,
            cost_estimates={
                provider_id: profile.estimated_cost_per_call
                for provider_id, profile in self.config.profiles.items()
            },
        )
        self.aggregator = aggregator or Aggregator(self.config.aggregation)
        self.store = store
        self.publisher = publisher
        self.health = health
        self._runs: "OrderedDict[str, _SessionRun]" = OrderedDict()

    @property
    def providers(self) -> List[str]:
        return list(self._adapters)

    # ----- caller-facing operations -------------------------------------------------

    async def start_analysis(
        self,
        targets: Sequence[str],
        providers: Sequence[str],
        *,
        idempotency_key: Optional[str] = None,
        prompt_context: Optional[Dict[str, Any]] = None,
    ) -> StartAnalysisResult:
        """Admit and launch an analysis.

        Returns the new session id together with the gate decision. When the
        gate denies the request no session is created and ``session_id`` is
        ``None``. Repeating a request with the same ``idempotency_key``
        returns the original session without starting another run.

        Raises:
            ValidationError: If no usable target is given
        """
        cleaned_targets = self._normalize_targets(targets)
        requested = list(dict.fromkeys(p.strip() for p in providers if p and p.strip()))

        decision = self.gate.evaluate(
            requested,
            target_count=len(cleaned_targets),
            available=self._adapters.keys(),
        )
        if not decision.allowed:
            return StartAnalysisResult(session_id=None, gate_decision=decision)

        session = AnalysisSession.new(
            cleaned_targets,
            requested,
            active_providers=decision.active_providers,
            idempotency_key=idempotency_key,
        )
        stored = await self.store.create_session(session)
        if stored.id != session.id:
            logger.info("analysis_request_deduplicated", session_id=stored.id)
            return StartAnalysisResult(session_id=stored.id, gate_decision=decision)

        run = _SessionRun(
            session=session,
            cost_tracker=CostTracker(session.id),
            semaphore=asyncio.Semaphore(self.config.max_in_flight),
            prompt_context={**self.config.prompt_context, **(prompt_context or {})},
        )
        self._runs[session.id] = run
        self._prune_runs()

        self.publisher.open(session.id, snapshot=session.summary())
        self._publish(
            run,
            ProgressEventType.SESSION_CREATED,
            data={"targets": session.targets, "providers": session.active_providers},
        )
        run.runner = asyncio.create_task(
            self._run_session(run), name=f"analysis-session-{session.id}"
        )
        logger.info(
            "analysis_session_started",
            session_id=session.id,
            targets=len(session.targets),
            providers=session.active_providers,
        )
        return StartAnalysisResult(session_id=session.id, gate_decision=decision, created=True)

    async def get_session_status(self, session_id: str) -> AnalysisSession:
        """Return the stored view of a session.

        Raises:
            ResourceNotFoundError: If the session does not exist
        """
        session = await self.store.get_session(session_id)
        if session is None:
            raise ResourceNotFoundError(
                f"Analysis session {session_id} not found", details={"session_id": session_id}
            )
        return session

    async def list_sessions(
        self, *, skip: int = 0, limit: int = 50, status: Optional[SessionStatus] = None
    ) -> List[AnalysisSession]:
        return await self.store.list_sessions(skip=skip, limit=limit, status=status)

    async def cancel(self, session_id: str) -> AnalysisSession:
        """Cancel a running session and wait (bounded) for it to settle.

        Cancelling a finished session is a no-op.
        """
        run = self._runs.get(session_id)
        if run is None:
            return await self.get_session_status(session_id)

        if not run.finalized and not run.cancel_requested.is_set():
            logger.info("analysis_cancel_requested", session_id=session_id)
            run.cost_tracker.close()
            run.cancel_requested.set()

        try:
            await asyncio.wait_for(run.finished.wait(), timeout=self.config.cancel_grace_period)
        except asyncio.TimeoutError:
            logger.warning("analysis_cancel_slow", session_id=session_id)
        return await self.get_session_status(session_id)

    async def wait_for_session(
        self, session_id: str, timeout: Optional[float] = None
    ) -> AnalysisSession:
        """Block until the session reaches a terminal state."""
        run = self._runs.get(session_id)
        if run is not None:
            await asyncio.wait_for(run.finished.wait(), timeout=timeout)
        return await self.get_session_status(session_id)

    def cost_tracker(self, session_id: str) -> Optional[CostTracker]:
        run = self._runs.get(session_id)
        return run.cost_tracker if run else None

    async def shutdown(self) -> None:
        """Cancel every active session."""
        active = [run for run in self._runs.values() if not run.finished.is_set()]
        for run in active:
            run.cost_tracker.close()
            run.cancel_requested.set()
        if active:
            await asyncio.gather(
                *(run.finished.wait() for run in active), return_exceptions=True
            )

    # ----- session lifecycle --------------------------------------------------------

    async def _run_session(self, run: _SessionRun) -> None:
        bind_session_context(run.session.id)
        execute = asyncio.create_task(self._execute(run))
        run.tasks.add(execute)
        cancel_wait = asyncio.create_task(run.cancel_requested.wait())
        try:
            done, _ = await asyncio.wait(
                {execute, cancel_wait},
                timeout=self.config.session_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if execute in done:
                error = execute.exception()
                if error is not None:
                    logger.error("analysis_session_crashed", error=repr(error), exc_info=error)
                    await self._stop_outstanding(run)
                    await self._resolve_remaining(run, ErrorKind.UNKNOWN)
            elif cancel_wait in done:
                await self._stop_outstanding(run)
            else:
                logger.warning("analysis_session_timed_out", timeout=self.config.session_timeout)
                await self._stop_outstanding(run)
                await self._resolve_remaining(run, ErrorKind.TIMEOUT)
            await self._finalize(run)
        except asyncio.CancelledError:
            run.cost_tracker.close()
            run.cancel_requested.set()
            await self._stop_outstanding(run)
            await self._finalize(run)
            raise
        finally:
            cancel_wait.cancel()
            run.finished.set()

    async def _execute(self, run: _SessionRun) -> None:
        target_tasks = []
        for target in run.session.targets:
            task = asyncio.create_task(self._resolve_target(run, target))
            run.tasks.add(task)
            target_tasks.append(task)
        await asyncio.gather(*target_tasks)

    async def _mark_running(self, run: _SessionRun) -> None:
        """Enter ``running`` on the first provider dispatch of the session."""
        session = run.session
        async with run.lock:
            if session.status != SessionStatus.PENDING or run.finalized:
                return
            started_at = utcnow()
            session.transition_to(SessionStatus.RUNNING, at=started_at)
            await self.store.mark_running(session.id, started_at)
            self._publish(run, ProgressEventType.SESSION_STARTED)

    async def _resolve_target(self, run: _SessionRun, target: str) -> None:
        calls = []
        for provider in run.session.active_providers:
            task = asyncio.create_task(self._call_provider(run, target, provider))
            run.tasks.add(task)
            calls.append(task)
        if calls:
            await asyncio.wait(calls)
        await self._aggregate_target(run, target, missing_kind=ErrorKind.TIMEOUT)

    async def _call_provider(self, run: _SessionRun, target: str, provider: str) -> None:
        # Calls queued behind the in-flight limit are bounded only by the
        # session timeout; the target timeout starts at dispatch.
        async with run.semaphore:
            allowed, status = self.gate.check_provider(provider)
            if not allowed:
                logger.info("provider_skipped", provider=provider, target=target, status=status)
                result = ProviderResult.failure(
                    provider,
                    target,
                    ErrorKind.GATE_DENIED,
                    f"Provider unavailable at dispatch: {status}",
                    attempt=0,
                )
            else:
                await self._mark_running(run)
                result = await self._invoke_within_target_timeout(run, target, provider)
        await self._record_result(run, result)

    async def _invoke_within_target_timeout(
        self, run: _SessionRun, target: str, provider: str
    ) -> ProviderResult:
        timeout = self.config.target_timeout
        try:
            return await asyncio.wait_for(
                self._invoke_with_retry(run, target, provider), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.warning("target_wait_timed_out", target=target, provider=provider, timeout=timeout)
            # Any attempt still in flight was cancelled before the adapter could report it.
            run.cost_tracker.record(provider, 0.0)
            return ProviderResult.failure(
                provider, target, ErrorKind.TIMEOUT, f"No response within {timeout:.1f}s"
            )

    async def _invoke_with_retry(
        self, run: _SessionRun, target: str, provider: str
    ) -> ProviderResult:
        adapter = self._adapters[provider]

        def attempt_call(attempt: int):
            return adapter.invoke(
                target,
                ProviderCallContext(
                    session_id=run.session.id,
                    attempt=attempt,
                    prompt_context=run.prompt_context,
                    cost_observer=run.cost_tracker,
                ),
            )

        try:
            return await call_with_retry(
                attempt_call,
                provider=provider,
                target=target,
                retry_policy=self.config.retry_policy,
                attempt_timeout=self.config.attempt_timeout,
                on_attempt=self.health.record_result if self.health else None,
                cost_observer=run.cost_tracker,
            )
        except Exception as exc:
            # Adapter misconfiguration or a bug must not take the session down.
            logger.exception("provider_invocation_error", provider=provider, target=target)
            return ProviderResult.failure(provider, target, ErrorKind.UNKNOWN, str(exc) or repr(exc))

    async def _record_result(self, run: _SessionRun, result: ProviderResult) -> None:
        async with run.lock:
            if run.cancel_requested.is_set() or run.finalized or result.target in run.resolved:
                logger.debug(
                    "provider_result_discarded", provider=result.provider, target=result.target
                )
                return
            per_target = run.results.setdefault(result.target, {})
            if result.provider in per_target:
                logger.warning(
                    "duplicate_provider_result_ignored",
                    provider=result.provider,
                    target=result.target,
                )
                return
            per_target[result.provider] = result

            session = run.session
            session.provider_results.append(result)
            session.cost_total = run.cost_tracker.total
            session.cost_by_provider = run.cost_tracker.by_provider()
            await self.store.append_result(
                session.id,
                result,
                cost_total=session.cost_total,
                cost_by_provider=session.cost_by_provider,
            )
            self._publish(
                run,
                ProgressEventType.PROVIDER_RESULT,
                target=result.target,
                provider=result.provider,
                data={
                    "succeeded": result.succeeded,
                    "error_kind": result.error_kind.value if result.error_kind else None,
                    "attempt": result.attempt,
                    "cost_usd": result.cost_usd,
                },
            )

    async def _aggregate_target(
        self, run: _SessionRun, target: str, *, missing_kind: ErrorKind
    ) -> None:
        async with run.lock:
            if run.finalized or run.cancel_requested.is_set() or target in run.resolved:
                return
            aggregated = self.aggregator.merge(
                target,
                run.results.get(target, {}).values(),
                run.session.active_providers,
                missing_kind=missing_kind,
            )
            run.resolved.add(target)
            run.session.per_target_results[target] = aggregated
            await self.store.append_aggregate(run.session.id, aggregated)
            self._publish(
                run,
                ProgressEventType.TARGET_COMPLETED,
                target=target,
                data={
                    "data_quality_score": aggregated.data_quality_score,
                    "providers_used": aggregated.providers_used,
                    "providers_failed": aggregated.providers_failed,
                },
            )
        logger.info(
            "target_aggregated",
            target=target,
            data_quality_score=aggregated.data_quality_score,
            providers_used=aggregated.providers_used,
            providers_failed=aggregated.providers_failed,
        )

    async def _resolve_remaining(self, run: _SessionRun, kind: ErrorKind) -> None:
        for target in run.session.targets:
            await self._aggregate_target(run, target, missing_kind=kind)

    async def _stop_outstanding(self, run: _SessionRun) -> None:
        current = asyncio.current_task()
        while True:
            pending = [task for task in run.tasks if not task.done() and task is not current]
            if not pending:
                return
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def _finalize(self, run: _SessionRun) -> None:
        session = run.session
        async with run.lock:
            if run.finalized:
                return
            run.finalized = True
            run.cost_tracker.close()

            if run.cancel_requested.is_set():
                status, reason = SessionStatus.FAILED, FailureReason.CANCELLED
            elif any(result.succeeded for result in session.per_target_results.values()):
                status, reason = SessionStatus.COMPLETED, None
            else:
                status, reason = SessionStatus.FAILED, FailureReason.ALL_PROVIDERS_FAILED

            completed_at = utcnow()
            session.transition_to(status, at=completed_at)
            session.failure_reason = reason
            session.cost_total = run.cost_tracker.total
            session.cost_by_provider = run.cost_tracker.by_provider()
            try:
                await self.store.finalize_session(
                    session.id,
                    status,
                    completed_at=completed_at,
                    failure_reason=reason,
                    cost_total=session.cost_total,
                    cost_by_provider=session.cost_by_provider,
                )
            except Exception:
                logger.exception("session_finalize_persist_failed")

            self._publish(
                run,
                ProgressEventType.SESSION_COMPLETED
                if status == SessionStatus.COMPLETED
                else ProgressEventType.SESSION_FAILED,
                data={
                    "failure_reason": reason.value if reason else None,
                    "cost_total": session.cost_total,
                    "completed_at": completed_at.isoformat(),
                },
            )
        self.publisher.close(session.id)
        logger.info(
            "analysis_session_finished",
            status=status.value,
            failure_reason=reason.value if reason else None,
            cost_total=session.cost_total,
        )

    # ----- helpers ------------------------------------------------------------------

    def _publish(
        self,
        run: _SessionRun,
        event_type: ProgressEventType,
        *,
        target: Optional[str] = None,
        provider: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        session = run.session
        self.publisher.publish(
            session.id,
            ProgressEvent(
                session_id=session.id,
                type=event_type,
                status=session.status.value,
                progress=session.progress,
                target=target,
                provider=provider,
                data=data or {},
            ),
            snapshot=session.summary(),
        )

    def _normalize_targets(self, targets: Sequence[str]) -> List[str]:
        if isinstance(targets, str):
            targets = [targets]
        cleaned: List[str] = []
        seen: Set[str] = set()
        for target in targets:
            name = " ".join(str(target).split())
            if not name or name.casefold() in seen:
                continue
            seen.add(name.casefold())
            cleaned.append(name)
        if not cleaned:
            raise ValidationError("At least one target company name is required.")
        if len(cleaned) > self.config.max_targets:
            raise ValidationError(
                f"At most {self.config.max_targets} targets can be analyzed per session.",
                details={"targets": len(cleaned)},
            )
        return cleaned

    def _prune_runs(self) -> None:
        overflow = len(self._runs) - self.config.max_retained_runs
        if overflow <= 0:
            return
        for session_id in [sid for sid, run in self._runs.items() if run.finished.is_set()][:overflow]:
            del self._runs[session_id]
            self.publisher.discard(session_id)
