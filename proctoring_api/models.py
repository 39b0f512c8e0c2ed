from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_EXAM_ID = "default-exam"


def utcnow() -> datetime:
    # Mongo keeps millisecond precision
    now = datetime.now(timezone.utc)
    return now.replace(tzinfo=None, microsecond=now.microsecond // 1000 * 1000)


def as_utc(value: datetime) -> datetime:
    """Mongo hands back naive UTC datetimes; keep every stored value that way."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def with_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to a stored naive value so JSON carries the offset."""
    if value is not None and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    TERMINATED = "terminated"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self is not SessionStatus.ACTIVE


class EventType(str, Enum):
    # Session lifecycle
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    SESSION_PAUSE = "session_pause"
    SESSION_RESUME = "session_resume"
    # Face detection
    NO_FACE = "no_face"
    MULTIPLE_FACES = "multiple_faces"
    FACE_DETECTED = "face_detected"
    FACE_LOST = "face_lost"
    # Object detection
    SUSPICIOUS_OBJECT = "suspicious_object"
    FORBIDDEN_OBJECT = "forbidden_object"
    # User actions
    TAB_SWITCH = "tab_switch"
    WINDOW_RESIZE = "window_resize"
    COPY_PASTE = "copy_paste"
    PRINT_SCREEN = "print_screen"
    # System
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    CUSTOM = "custom"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class EventSource(str, Enum):
    SYSTEM = "system"
    FACE_DETECTION = "face_detection"
    OBJECT_DETECTION = "object_detection"
    USER_ACTION = "user_action"
    API = "api"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Session(CamelModel):
    session_id: str
    candidate_name: str
    exam_id: str = DEFAULT_EXAM_ID
    status: SessionStatus = SessionStatus.ACTIVE
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    duration: float = 0
    last_activity: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    events: List[str] = Field(default_factory=list)

    @field_validator("status", mode="before")
    @classmethod
    def _legacy_status(cls, value):
        # older documents were written with a two-state active/ended status
        if value == "ended":
            return SessionStatus.COMPLETED
        return value

    @field_serializer("start_time", "end_time", "last_activity", when_used="json")
    def _utc_times(self, value: Optional[datetime]) -> Optional[datetime]:
        return with_utc(value)

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump(by_alias=True, mode="python")
        doc["status"] = self.status.value
        doc["_id"] = self.session_id
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Session":
        data = {k: v for k, v in doc.items() if k != "_id"}
        return cls.model_validate(data)


class Event(CamelModel):
    id: str
    session_id: str
    type: EventType
    timestamp: datetime = Field(default_factory=utcnow)
    severity: Severity = Severity.INFO
    source: EventSource = EventSource.SYSTEM
    details: Dict[str, Any] = Field(default_factory=dict)
    screenshot: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_serializer("timestamp", when_used="json")
    def _utc_timestamp(self, value: datetime) -> datetime:
        return with_utc(value)

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump(by_alias=True, mode="python", exclude={"id"})
        doc["type"] = self.type.value
        doc["severity"] = self.severity.value
        doc["source"] = self.source.value
        doc["_id"] = self.id
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Event":
        data = {k: v for k, v in doc.items() if k != "_id"}
        data["id"] = str(doc["_id"])
        return cls.model_validate(data)


# Typed detail payloads. Keys not declared here are kept as-is.

class DetailPayload(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class MultipleFacesDetails(DetailPayload):
    count: Optional[int] = None


class ObjectDetails(DetailPayload):
    object: Optional[str] = None
    confidence: Optional[float] = None
    bbox: Optional[List[float]] = None


class SessionStartDetails(DetailPayload):
    candidate_name: Optional[str] = None
    exam_id: Optional[str] = None


class SessionEndDetails(DetailPayload):
    duration: Optional[float] = None
    end_reason: Optional[str] = None


DETAIL_MODELS: Dict[EventType, Type[DetailPayload]] = {
    EventType.MULTIPLE_FACES: MultipleFacesDetails,
    EventType.SUSPICIOUS_OBJECT: ObjectDetails,
    EventType.FORBIDDEN_OBJECT: ObjectDetails,
    EventType.SESSION_START: SessionStartDetails,
    EventType.SESSION_END: SessionEndDetails,
}


def parse_details(event_type: EventType, details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Check ``details`` against the payload shape known for ``event_type``.

    Raises pydantic's ValidationError when a known field has the wrong type.
    Types without a declared shape pass through untouched.
    """
    details = dict(details or {})
    model = DETAIL_MODELS.get(event_type)
    if model is None:
        return details
    return model.model_validate(details).model_dump(by_alias=True, exclude_unset=True)
