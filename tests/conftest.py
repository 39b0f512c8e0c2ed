"""
Pytest configuration: the app and services run against an in-memory Mongo.
"""
import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from proctoring_api.config import Settings
from proctoring_api.database import Database
from proctoring_api.event_service import EventService
from proctoring_api.main import create_app
from proctoring_api.session_service import SessionService
from proctoring_api.stores import EventStore, SessionStore


@pytest.fixture
def settings():
    return Settings(database_name="proctoring_test")


@pytest.fixture
def database(settings):
    return Database(settings.mongodb_url, settings.database_name, client=AsyncMongoMockClient())


@pytest.fixture
def client(settings, database):
    """FastAPI test client; entering it runs the lifespan (connect + indexes)."""
    app = create_app(settings, database)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
async def db(database):
    await database.connect()
    await database.ensure_indexes()
    yield database
    await database.close()


@pytest.fixture
def session_store(db):
    return SessionStore(db)


@pytest.fixture
def event_store(db):
    return EventStore(db)


@pytest.fixture
def session_service(session_store, event_store):
    return SessionService(session_store, event_store)


@pytest.fixture
def event_service(session_store, event_store):
    return EventService(session_store, event_store)


@pytest.fixture
def started_session(client):
    """Session id of a freshly started session."""
    response = client.post("/api/session/start", json={"candidateName": "Alice"})
    assert response.status_code == 201
    return response.json()["sessionId"]
