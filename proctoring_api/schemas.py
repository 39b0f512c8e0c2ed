from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, Field, field_serializer

from .models import CamelModel, Event, Session, with_utc


class StartSessionRequest(CamelModel):
    candidate_name: Optional[str] = None
    exam_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class StartSessionResponse(CamelModel):
    success: bool = True
    session_id: str
    message: str = "Session started successfully"


class EndSessionRequest(CamelModel):
    session_id: Optional[str] = None
    end_reason: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class EndSessionResponse(CamelModel):
    success: bool = True
    message: str = "Session ended successfully"
    session_id: str
    duration: float


class SessionWithEventsResponse(CamelModel):
    success: bool = True
    session: Session
    events: List[Event]


class SessionListResponse(CamelModel):
    success: bool = True
    count: int
    total: int
    sessions: List[Session]


class EventPayload(CamelModel):
    type: Optional[str] = None
    # "detail" and "ts" are the field names older clients send
    details: Optional[Dict[str, Any]] = Field(
        None, validation_alias=AliasChoices("details", "detail")
    )
    timestamp: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("timestamp", "ts")
    )
    severity: Optional[str] = None
    source: Optional[str] = None
    screenshot: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class LogEventRequest(EventPayload):
    session_id: Optional[str] = None


class LogEventResponse(CamelModel):
    success: bool = True
    event_id: str
    timestamp: datetime

    @field_serializer("timestamp", when_used="json")
    def _utc_timestamp(self, value: datetime) -> datetime:
        return with_utc(value)


class LogBatchRequest(CamelModel):
    session_id: Optional[str] = None
    events: Optional[List[EventPayload]] = None


class LogBatchResponse(CamelModel):
    success: bool = True
    count: int
    event_ids: List[str]


class EventListResponse(CamelModel):
    success: bool = True
    count: int
    total: int
    has_more: bool
    events: List[Event]


class SessionSummaryResponse(CamelModel):
    success: bool = True
    session_id: str
    candidate_name: str
    status: str
    duration_seconds: float
    event_counts: Dict[str, int]
    anomaly_count: int
    integrity_score: int


class ErrorResponse(CamelModel):
    success: bool = False
    error: str
    detail: Optional[str] = None
