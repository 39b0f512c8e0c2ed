import logging
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorClient  # type: ignore
from pymongo import ASCENDING, DESCENDING  # type: ignore

logger = logging.getLogger(__name__)


class Database:
    """Owns the Mongo client for the lifetime of the process.

    ``connect`` and ``close`` are each effective once; the collections are only
    reachable between the two calls. A pre-built client (for example an
    in-memory one) can be handed in instead of a connection string.
    """

    def __init__(self, url: str, name: str, client: Optional[Any] = None) -> None:
        self.url = url
        self.name = name
        self._client = client
        self._owns_client = client is None
        self._db = None
        self._closed = False

    async def connect(self) -> "Database":
        if self._db is not None:
            return self
        if self._closed:
            raise RuntimeError("Database has already been closed")
        if self._client is None:
            self._client = AsyncIOMotorClient(self.url)
        self._db = self._client[self.name]
        logger.info("Connected to MongoDB database %s", self.name)
        return self

    async def ensure_indexes(self) -> None:
        await self.sessions.create_index([("sessionId", ASCENDING)], unique=True)
        await self.sessions.create_index([("startTime", DESCENDING)])
        await self.events.create_index([("sessionId", ASCENDING)])
        await self.events.create_index([("timestamp", DESCENDING)])

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._client is not None and self._owns_client:
            self._client.close()
        self._db = None
        logger.info("MongoDB connection closed")

    @property
    def connected(self) -> bool:
        return self._db is not None

    def _collection(self, name: str):
        if self._db is None:
            raise RuntimeError("Database is not connected")
        return self._db[name]

    @property
    def sessions(self):
        return self._collection("sessions")

    @property
    def events(self):
        return self._collection("events")
