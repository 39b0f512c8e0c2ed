import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from .errors import NotFoundError, ProctoringError, ValidationError
from .models import (
    DEFAULT_EXAM_ID,
    Event,
    EventSource,
    EventType,
    Session,
    SessionStatus,
    utcnow,
)
from .stores import EventStore, SessionStore

logger = logging.getLogger(__name__)


class SessionService:
    """Session lifecycle: start, end and lookup.

    The session write is the primary operation. The ``session_start`` and
    ``session_end`` events that accompany it are best-effort: a failure to
    write them is logged and the lifecycle call still succeeds.
    """

    def __init__(self, sessions: SessionStore, events: EventStore) -> None:
        self.sessions = sessions
        self.events = events

    async def start(
        self,
        candidate_name: Optional[str],
        exam_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Session:
        if not candidate_name or not str(candidate_name).strip():
            raise ValidationError("Candidate name is required")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object")

        session = Session(
            session_id=str(uuid.uuid4()),
            candidate_name=str(candidate_name).strip(),
            exam_id=exam_id or DEFAULT_EXAM_ID,
            status=SessionStatus.ACTIVE,
            metadata=metadata or {},
        )
        await self.sessions.insert(session)
        logger.info("Session %s started for %s", session.session_id, session.candidate_name)

        await self.log_lifecycle_event(
            session.session_id,
            EventType.SESSION_START,
            {"candidateName": session.candidate_name, "examId": session.exam_id},
            timestamp=session.start_time,
        )
        return session

    async def end(
        self,
        session_id: Optional[str],
        end_reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        status: SessionStatus = SessionStatus.COMPLETED,
    ) -> Session:
        if not session_id:
            raise ValidationError("Session ID is required")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object")
        if not status.terminal:
            raise ValidationError("A session can only end in a terminal status")

        end_metadata = dict(metadata or {})
        if end_reason:
            end_metadata["endReason"] = end_reason

        session = await self.sessions.end_active(session_id, status, utcnow(), end_metadata)
        if session is None:
            raise NotFoundError("Active session not found")

        logger.info("Session %s ended after %.1fs", session_id, session.duration)

        details: Dict[str, Any] = {"duration": session.duration}
        if end_reason:
            details["endReason"] = end_reason
        await self.log_lifecycle_event(
            session_id, EventType.SESSION_END, details, timestamp=session.end_time
        )
        return session

    async def get(self, session_id: str) -> Tuple[Session, List[Event]]:
        session = await self.sessions.find(session_id)
        if session is None:
            raise NotFoundError("Session not found")
        events = await self.events.find(
            {"sessionId": session_id},
            sort=[("timestamp", -1), ("_id", -1)],
        )
        return session, events

    async def list_sessions(
        self,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[Session], int]:
        status_filter = None
        if status:
            try:
                status_filter = SessionStatus(status)
            except ValueError:
                raise ValidationError(f"Invalid session status: {status}") from None
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")
        return await self.sessions.list_sessions(status_filter, limit, offset)

    async def log_lifecycle_event(
        self,
        session_id: str,
        event_type: EventType,
        details: Dict[str, Any],
        timestamp=None,
    ) -> Optional[str]:
        """Write a lifecycle event without letting its failure escape.

        Returns the new event id, or None if the write failed.
        """
        event = Event(
            id=str(uuid.uuid4()),
            session_id=session_id,
            type=event_type,
            timestamp=timestamp or utcnow(),
            source=EventSource.SYSTEM,
            details=details,
        )
        try:
            await self.events.insert(event)
        except ProctoringError as e:
            logger.error(
                "Could not record %s event for session %s: %s",
                event_type.value, session_id, e.message,
            )
            return None
        try:
            await self.sessions.record_activity(session_id, [event.id], event.timestamp)
        except ProctoringError as e:
            logger.error("Could not link event %s to session %s: %s", event.id, session_id, e.message)
        return event.id
