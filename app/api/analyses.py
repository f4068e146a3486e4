"""Analysis session routes."""

from __future__ import annotations

import json
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sse_starlette.sse import EventSourceResponse

from ..core.errors import GateDeniedError
from ..dependencies import get_orchestrator, get_publisher
from ..schemas.analysis import (
    AnalysisSessionDetail,
    AnalysisSessionListResponse,
    AnalysisSessionSummary,
    GateDecisionModel,
    ProgressEventModel,
    SessionEventsHistoryResponse,
    StartAnalysisRequest,
    StartAnalysisResponse,
)
from ..services.export import ExportFormat, export_session
from ..services.models import SessionStatus
from ..services.orchestrator import AnalysisOrchestrator
from ..services.progress import ProgressPublisher, Subscription

router = APIRouter()


@router.post("", response_model=StartAnalysisResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_analysis(
    request: StartAnalysisRequest,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
) -> StartAnalysisResponse:
    """Schedule a competitor analysis.

    Responds 403 with the gate's reasons when analysis is not permitted.
    """
    result = await orchestrator.start_analysis(
        request.targets,
        request.providers,
        idempotency_key=request.idempotency_key,
        prompt_context=request.context,
    )
    decision = result.gate_decision
    if not result.accepted:
        raise GateDeniedError(
            decision.reasons,
            provider_status={p: s.to_dict() for p, s in decision.provider_status.items()},
        )

    session = await orchestrator.get_session_status(result.session_id)
    return StartAnalysisResponse(
        session_id=session.id,
        status=session.status.value,
        created=result.created,
        gate_decision=GateDecisionModel.from_decision(decision),
        stream_endpoint=f"/analyses/{session.id}/events",
    )


@router.get("", response_model=AnalysisSessionListResponse)
async def list_analyses(
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(50, ge=1, le=100, description="Maximum number of records to return"),
    status: Optional[SessionStatus] = Query(None, description="Filter by status"),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
) -> AnalysisSessionListResponse:
    """List analysis sessions, newest first."""
    sessions = await orchestrator.list_sessions(skip=skip, limit=limit, status=status)
    summaries = [AnalysisSessionSummary.from_session(session) for session in sessions]
    return AnalysisSessionListResponse(
        sessions=summaries,
        total=len(summaries),
        skip=skip,
        limit=limit,
    )


@router.get("/{session_id}", response_model=AnalysisSessionDetail)
async def get_analysis(
    session_id: str,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
) -> AnalysisSessionDetail:
    session = await orchestrator.get_session_status(session_id)
    return AnalysisSessionDetail.from_session(session)


@router.post("/{session_id}/cancel", response_model=AnalysisSessionDetail)
async def cancel_analysis(
    session_id: str,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
) -> AnalysisSessionDetail:
    """Cancel a running analysis; a no-op for finished ones."""
    session = await orchestrator.cancel(session_id)
    return AnalysisSessionDetail.from_session(session)


async def _progress_stream(
    request: Request,
    publisher: ProgressPublisher,
    subscription: Subscription,
) -> AsyncGenerator[dict, None]:
    try:
        async for event in subscription:
            if await request.is_disconnected():
                break
            yield {
                "event": event.type.value,
                "id": str(event.sequence),
                "data": json.dumps(event.to_dict()),
            }
    finally:
        publisher.unsubscribe(subscription)


@router.get("/{session_id}/events")
async def stream_analysis_events(
    session_id: str,
    request: Request,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
    publisher: ProgressPublisher = Depends(get_publisher),
) -> EventSourceResponse:
    """Server-Sent Events stream of a session's progress.

    The first event is a ``snapshot`` of the current state; the stream ends
    after the session's terminal event.
    """
    session = await orchestrator.get_session_status(session_id)
    subscription = publisher.subscribe(session_id, snapshot=session.summary())
    return EventSourceResponse(_progress_stream(request, publisher, subscription))


@router.get("/{session_id}/events-history", response_model=SessionEventsHistoryResponse)
async def analysis_recent_events(
    session_id: str,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
    publisher: ProgressPublisher = Depends(get_publisher),
) -> SessionEventsHistoryResponse:
    """Retrieve the buffered events of a session, including finished ones."""
    await orchestrator.get_session_status(session_id)
    events = [ProgressEventModel(**event) for event in publisher.get_recent_events(session_id)]
    return SessionEventsHistoryResponse(session_id=session_id, events=events, count=len(events))


@router.get("/{session_id}/export")
async def export_analysis(
    session_id: str,
    format: ExportFormat = Query(ExportFormat.JSON, description="json or csv"),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
) -> Response:
    session = await orchestrator.get_session_status(session_id)
    return Response(
        content=export_session(session, format),
        media_type=format.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="analysis_{session_id}.{format.value}"'
        },
    )
