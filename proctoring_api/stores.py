import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pymongo import ReturnDocument  # type: ignore
from pymongo.errors import PyMongoError  # type: ignore

from .database import Database
from .errors import StoreError
from .models import Event, Session, SessionStatus

logger = logging.getLogger(__name__)


class SessionStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def insert(self, session: Session) -> None:
        try:
            await self.db.sessions.insert_one(session.to_document())
        except PyMongoError as e:
            logger.exception("Failed to insert session %s", session.session_id)
            raise StoreError("Failed to save session", detail=str(e)) from e

    async def find(self, session_id: str) -> Optional[Session]:
        try:
            doc = await self.db.sessions.find_one({"sessionId": session_id})
        except PyMongoError as e:
            logger.exception("Failed to load session %s", session_id)
            raise StoreError("Failed to load session", detail=str(e)) from e
        return Session.from_document(doc) if doc else None

    async def exists(self, session_id: str) -> bool:
        try:
            doc = await self.db.sessions.find_one({"sessionId": session_id}, {"_id": 1})
        except PyMongoError as e:
            logger.exception("Failed to look up session %s", session_id)
            raise StoreError("Failed to load session", detail=str(e)) from e
        return doc is not None

    async def list_sessions(
        self,
        status: Optional[SessionStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[Session], int]:
        query: Dict[str, Any] = {}
        if status is not None:
            query["status"] = status.value
        try:
            cursor = self.db.sessions.find(query).sort("startTime", -1).skip(offset).limit(limit)
            sessions = [Session.from_document(doc) async for doc in cursor]
            total = await self.db.sessions.count_documents(query)
        except PyMongoError as e:
            logger.exception("Failed to list sessions")
            raise StoreError("Failed to list sessions", detail=str(e)) from e
        return sessions, total

    async def end_active(
        self,
        session_id: str,
        status: SessionStatus,
        end_time: datetime,
        metadata: Dict[str, Any],
    ) -> Optional[Session]:
        """Move an active session to ``status`` in one conditional write.

        The duration is part of that same write, computed from the stored
        start time (which never changes). Returns the updated session, or None
        when no *active* session with that id exists. A second concurrent
        caller therefore gets None.
        """
        active = {"sessionId": session_id, "status": SessionStatus.ACTIVE.value}
        try:
            current = await self.db.sessions.find_one(active, {"startTime": 1})
        except PyMongoError as e:
            logger.exception("Failed to load session %s", session_id)
            raise StoreError("Failed to end session", detail=str(e)) from e
        if current is None:
            return None

        update: Dict[str, Any] = {
            "status": status.value,
            "endTime": end_time,
            "duration": (end_time - current["startTime"]).total_seconds(),
        }
        for key, value in metadata.items():
            update[f"metadata.{key}"] = value
        try:
            doc = await self.db.sessions.find_one_and_update(
                active,
                {"$set": update},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            logger.exception("Failed to end session %s", session_id)
            raise StoreError("Failed to end session", detail=str(e)) from e
        return Session.from_document(doc) if doc else None

    async def record_activity(self, session_id: str, event_ids: Sequence[str], at: datetime) -> None:
        try:
            await self.db.sessions.update_one(
                {"sessionId": session_id},
                {
                    "$set": {"lastActivity": at},
                    "$push": {"events": {"$each": list(event_ids)}},
                },
            )
        except PyMongoError as e:
            raise StoreError("Failed to link events to session", detail=str(e)) from e


class EventStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def insert(self, event: Event) -> None:
        try:
            await self.db.events.insert_one(event.to_document())
        except PyMongoError as e:
            logger.exception("Failed to insert %s event for session %s", event.type.value, event.session_id)
            raise StoreError("Failed to save event", detail=str(e)) from e

    async def insert_many(self, events: Sequence[Event]) -> None:
        try:
            await self.db.events.insert_many([event.to_document() for event in events])
        except PyMongoError as e:
            logger.exception("Failed to insert batch of %d events", len(events))
            raise StoreError("Failed to save events", detail=str(e)) from e

    async def find(
        self,
        query: Dict[str, Any],
        sort: Optional[List[Tuple[str, int]]] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[Event]:
        try:
            cursor = self.db.events.find(query)
            if sort:
                cursor = cursor.sort(sort)
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return [Event.from_document(doc) async for doc in cursor]
        except PyMongoError as e:
            logger.exception("Failed to query events")
            raise StoreError("Failed to fetch events", detail=str(e)) from e

    async def count(self, query: Dict[str, Any]) -> int:
        try:
            return await self.db.events.count_documents(query)
        except PyMongoError as e:
            logger.exception("Failed to count events")
            raise StoreError("Failed to fetch events", detail=str(e)) from e
