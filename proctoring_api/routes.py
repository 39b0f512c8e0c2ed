from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from .database import Database
from .event_service import EventQuery, EventService, RequestOrigin
from .report import anomaly_count, compute_integrity_score, session_duration, summarize_events
from .schemas import (
    EndSessionRequest,
    EndSessionResponse,
    EventListResponse,
    LogBatchRequest,
    LogBatchResponse,
    LogEventRequest,
    LogEventResponse,
    SessionListResponse,
    SessionSummaryResponse,
    SessionWithEventsResponse,
    StartSessionRequest,
    StartSessionResponse,
)
from .session_service import SessionService
from .stores import EventStore, SessionStore

router = APIRouter(prefix="/api")


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_session_service(db: Database = Depends(get_database)) -> SessionService:
    return SessionService(SessionStore(db), EventStore(db))


def get_event_service(db: Database = Depends(get_database)) -> EventService:
    return EventService(SessionStore(db), EventStore(db))


def request_origin(request: Request) -> RequestOrigin:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.client.host if request.client else None
    return RequestOrigin(ip=ip, user_agent=request.headers.get("user-agent"))


# Sessions

@router.post("/session", response_model=StartSessionResponse, status_code=201)
@router.post("/session/start", response_model=StartSessionResponse, status_code=201)
async def start_session(
    payload: StartSessionRequest,
    service: SessionService = Depends(get_session_service),
):
    session = await service.start(payload.candidate_name, payload.exam_id, payload.metadata)
    return StartSessionResponse(session_id=session.session_id)


@router.post("/session/end", response_model=EndSessionResponse)
async def end_session(
    payload: EndSessionRequest,
    service: SessionService = Depends(get_session_service),
):
    session = await service.end(payload.session_id, payload.end_reason, payload.metadata)
    return EndSessionResponse(session_id=session.session_id, duration=session.duration)


@router.get("/session/{session_id}", response_model=SessionWithEventsResponse)
async def get_session(session_id: str, service: SessionService = Depends(get_session_service)):
    session, events = await service.get(session_id)
    return SessionWithEventsResponse(session=session, events=events)


@router.get("/session/{session_id}/summary", response_model=SessionSummaryResponse)
async def get_session_summary(session_id: str, service: SessionService = Depends(get_session_service)):
    session, events = await service.get(session_id)
    counts = summarize_events(events)
    return SessionSummaryResponse(
        session_id=session.session_id,
        candidate_name=session.candidate_name,
        status=session.status.value,
        duration_seconds=session_duration(session),
        event_counts=counts,
        anomaly_count=anomaly_count(counts),
        integrity_score=compute_integrity_score(counts),
    )


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    status: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    service: SessionService = Depends(get_session_service),
):
    sessions, total = await service.list_sessions(status, limit, offset)
    return SessionListResponse(count=len(sessions), total=total, sessions=sessions)


# Events

@router.post("/events", response_model=LogEventResponse, status_code=201)
async def log_event(
    payload: LogEventRequest,
    request: Request,
    service: EventService = Depends(get_event_service),
):
    event = await service.log_one(
        payload.session_id,
        payload.model_dump(exclude={"session_id"}),
        request_origin(request),
    )
    return LogEventResponse(event_id=event.id, timestamp=event.timestamp)


@router.post("/events/batch", response_model=LogBatchResponse, status_code=201)
async def log_events_batch(
    payload: LogBatchRequest,
    request: Request,
    service: EventService = Depends(get_event_service),
):
    events = payload.events
    if events is not None:
        events = [e.model_dump() for e in events]
    saved = await service.log_batch(payload.session_id, events, request_origin(request))
    return LogBatchResponse(count=len(saved), event_ids=[e.id for e in saved])


@router.get("/events/session/{session_id}", response_model=EventListResponse)
async def get_session_events(
    session_id: str,
    limit: int = 100,
    offset: int = 0,
    type: Optional[List[str]] = Query(None),
    severity: Optional[List[str]] = Query(None),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    sort_by: str = Query("timestamp", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    service: EventService = Depends(get_event_service),
):
    page = await service.query_by_session(
        session_id,
        EventQuery(
            type=type,
            severity=severity,
            start_date=start_date,
            end_date=end_date,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
            offset=offset,
        ),
    )
    return EventListResponse(
        count=len(page.events),
        total=page.total,
        has_more=page.has_more,
        events=page.events,
    )
