import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import NotFoundError, ProctoringError, ValidationError
from .models import Event, EventSource, EventType, Severity, as_utc, parse_details, utcnow
from .stores import EventStore, SessionStore

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
SORTABLE_FIELDS = {"timestamp", "type", "severity", "source"}

_datetime = TypeAdapter(datetime)


@dataclass(frozen=True)
class RequestOrigin:
    ip: Optional[str] = None
    user_agent: Optional[str] = None

    def as_metadata(self) -> Dict[str, Any]:
        return {"ip": self.ip, "userAgent": self.user_agent}


@dataclass
class EventQuery:
    type: Union[None, str, Sequence[str]] = None
    severity: Union[None, str, Sequence[str]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    sort_by: str = "timestamp"
    sort_order: str = "desc"
    limit: int = DEFAULT_LIMIT
    offset: int = 0


@dataclass
class EventPage:
    events: List[Event]
    total: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.events) < self.total


def _enum_value(enum_cls, value, field: str):
    if value is None or value == "":
        return None
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value}") from None


def _as_list(value: Union[None, str, Sequence[str]]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    return [part.strip() for v in value for part in v.split(",") if part.strip()]


def _membership(values: Iterable[str], enum_cls, field: str):
    members = [_enum_value(enum_cls, v, field).value for v in values]
    if not members:
        return None
    if len(members) == 1:
        return members[0]
    return {"$in": members}


class EventService:
    """Appends events to a session's log and reads them back.

    Events are accepted for any existing session, whatever its status, so that
    detections still in flight when a session ends are kept.
    """

    def __init__(self, sessions: SessionStore, events: EventStore) -> None:
        self.sessions = sessions
        self.events = events

    def build_event(
        self,
        session_id: str,
        payload: Dict[str, Any],
        origin: Optional[RequestOrigin] = None,
        extra_metadata: Optional[Dict[str, Any]] = None,
    ) -> Event:
        """Validate one raw event payload and fill in server-side defaults."""
        raw_type = payload.get("type")
        if not raw_type:
            raise ValidationError("Event type is required")
        event_type = _enum_value(EventType, raw_type, "event type")
        severity = _enum_value(Severity, payload.get("severity"), "severity") or Severity.INFO
        source = _enum_value(EventSource, payload.get("source"), "source") or EventSource.SYSTEM

        details = payload.get("details")
        if details is not None and not isinstance(details, dict):
            raise ValidationError("details must be an object")
        try:
            details = parse_details(event_type, details)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid details for {event_type.value} event", detail=str(e)) from e

        metadata = payload.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object")
        metadata = dict(metadata)
        if origin is not None:
            metadata.update(origin.as_metadata())
        if extra_metadata:
            metadata.update(extra_metadata)

        timestamp = payload.get("timestamp")
        if timestamp is not None and not isinstance(timestamp, datetime):
            try:
                timestamp = _datetime.validate_python(timestamp)
            except PydanticValidationError:
                raise ValidationError("timestamp must be a date-time") from None

        return Event(
            id=str(uuid.uuid4()),
            session_id=session_id,
            type=event_type,
            timestamp=as_utc(timestamp) if timestamp else utcnow(),
            severity=severity,
            source=source,
            details=details,
            screenshot=payload.get("screenshot"),
            metadata=metadata,
        )

    async def _require_session(self, session_id: str) -> None:
        if not await self.sessions.exists(session_id):
            raise NotFoundError("Session not found")

    async def _link(self, session_id: str, events: Sequence[Event]) -> None:
        # the events are already stored; a failed back-reference is only logged
        try:
            await self.sessions.record_activity(
                session_id, [e.id for e in events], max(e.timestamp for e in events)
            )
        except ProctoringError as e:
            logger.error(
                "Stored %d event(s) but could not link them to session %s: %s",
                len(events), session_id, e.message,
            )

    async def log_one(
        self,
        session_id: Optional[str],
        payload: Dict[str, Any],
        origin: Optional[RequestOrigin] = None,
    ) -> Event:
        if not session_id:
            raise ValidationError("Session ID and event type are required")
        if not payload.get("type"):
            raise ValidationError("Session ID and event type are required")
        event = self.build_event(session_id, payload, origin)

        await self._require_session(session_id)
        await self.events.insert(event)
        await self._link(session_id, [event])
        logger.debug("Logged %s event %s for session %s", event.type.value, event.id, session_id)
        return event

    async def log_batch(
        self,
        session_id: Optional[str],
        payloads: Any,
        origin: Optional[RequestOrigin] = None,
    ) -> List[Event]:
        if not session_id:
            raise ValidationError("Session ID is required")
        if not isinstance(payloads, list) or not payloads:
            raise ValidationError("events must be a non-empty array")
        events = []
        for index, payload in enumerate(payloads):
            if not isinstance(payload, dict):
                raise ValidationError(f"Event at index {index} must be an object")
            try:
                events.append(self.build_event(session_id, payload, origin, {"batch": True}))
            except ValidationError as e:
                raise ValidationError(f"Event at index {index}: {e.message}", detail=e.detail) from e

        await self._require_session(session_id)
        await self.events.insert_many(events)
        await self._link(session_id, events)
        logger.info("Logged batch of %d events for session %s", len(events), session_id)
        return events

    def _build_filter(self, session_id: str, query: EventQuery) -> Dict[str, Any]:
        mongo_filter: Dict[str, Any] = {"sessionId": session_id}

        type_match = _membership(_as_list(query.type), EventType, "event type")
        if type_match is not None:
            mongo_filter["type"] = type_match
        severity_match = _membership(_as_list(query.severity), Severity, "severity")
        if severity_match is not None:
            mongo_filter["severity"] = severity_match

        time_range: Dict[str, datetime] = {}
        if query.start_date is not None:
            time_range["$gte"] = as_utc(query.start_date)
        if query.end_date is not None:
            time_range["$lte"] = as_utc(query.end_date)
        if time_range:
            mongo_filter["timestamp"] = time_range
        return mongo_filter

    def _sort(self, query: EventQuery) -> List[Tuple[str, int]]:
        if query.sort_by not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by {query.sort_by}")
        order = query.sort_order.lower()
        if order not in ("asc", "desc"):
            raise ValidationError("sortOrder must be asc or desc")
        direction = 1 if order == "asc" else -1
        return [(query.sort_by, direction), ("_id", direction)]

    async def query_by_session(self, session_id: str, query: Optional[EventQuery] = None) -> EventPage:
        query = query or EventQuery()
        if query.limit < 1 or query.offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")
        mongo_filter = self._build_filter(session_id, query)
        sort = self._sort(query)

        events = await self.events.find(mongo_filter, sort=sort, skip=query.offset, limit=query.limit)
        total = await self.events.count(mongo_filter)
        return EventPage(events=events, total=total, offset=query.offset)
