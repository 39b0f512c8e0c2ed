"""
Tests for the session endpoints
"""
import uuid
from datetime import datetime

from fastapi.testclient import TestClient

from proctoring_api.config import Settings
from proctoring_api.main import create_app


class TestStartSession:

    def test_start_returns_fresh_uuid(self, client):
        first = client.post('/api/session/start', json={'candidateName': 'Alice'})
        second = client.post('/api/session/start', json={'candidateName': 'Alice'})

        assert first.status_code == 201
        data = first.json()
        assert data['success'] is True
        assert data['message'] == 'Session started successfully'
        assert str(uuid.UUID(data['sessionId'])) == data['sessionId']
        assert second.json()['sessionId'] != data['sessionId']

    def test_short_route_alias(self, client):
        response = client.post('/api/session', json={'candidateName': 'Bob', 'examId': 'exam-123'})

        assert response.status_code == 201
        session = client.get(f"/api/session/{response.json()['sessionId']}").json()['session']
        assert session['examId'] == 'exam-123'

    def test_missing_candidate_name(self, client):
        response = client.post('/api/session/start', json={})

        assert response.status_code == 400
        assert response.json() == {'success': False, 'error': 'Candidate name is required'}

    def test_defaults_and_metadata(self, client, started_session):
        session = client.get(f'/api/session/{started_session}').json()['session']

        assert session['status'] == 'active'
        assert session['examId'] == 'default-exam'
        assert session['endTime'] is None
        assert session['candidateName'] == 'Alice'

    def test_start_logs_session_start_event(self, client, started_session):
        events = client.get(f'/api/session/{started_session}').json()['events']

        assert [e['type'] for e in events] == ['session_start']
        assert events[0]['details'] == {'candidateName': 'Alice', 'examId': 'default-exam'}


class TestEndSession:

    def test_end_session(self, client, started_session):
        response = client.post('/api/session/end', json={
            'sessionId': started_session,
            'endReason': 'user_ended',
            'metadata': {'eventCount': 4},
        })

        assert response.status_code == 200
        assert response.json()['success'] is True
        assert response.json()['sessionId'] == started_session

        session = client.get(f'/api/session/{started_session}').json()['session']
        assert session['status'] == 'completed'
        assert session['endTime'].endswith('Z')
        assert datetime.fromisoformat(session['endTime'][:-1]) >= datetime.fromisoformat(session['startTime'][:-1])
        assert session['metadata']['endReason'] == 'user_ended'
        assert session['metadata']['eventCount'] == 4

    def test_end_merges_metadata(self, client):
        session_id = client.post('/api/session/start', json={
            'candidateName': 'Alice',
            'metadata': {'browser': 'firefox'},
        }).json()['sessionId']

        client.post('/api/session/end', json={'sessionId': session_id, 'metadata': {'status': 'Focused'}})

        metadata = client.get(f'/api/session/{session_id}').json()['session']['metadata']
        assert metadata == {'browser': 'firefox', 'status': 'Focused'}

    def test_end_requires_session_id(self, client):
        response = client.post('/api/session/end', json={})

        assert response.status_code == 400

    def test_end_unknown_session(self, client):
        response = client.post('/api/session/end', json={'sessionId': 'does-not-exist'})

        assert response.status_code == 404
        assert response.json()['success'] is False

    def test_end_twice_is_not_found(self, client, started_session):
        first = client.post('/api/session/end', json={'sessionId': started_session})
        second = client.post('/api/session/end', json={'sessionId': started_session})

        assert first.status_code == 200
        assert second.status_code == 404

    def test_duration_is_stable(self, client, started_session):
        client.post('/api/session/end', json={'sessionId': started_session})

        reads = [client.get(f'/api/session/{started_session}').json()['session'] for _ in range(2)]
        assert reads[0]['duration'] == reads[1]['duration']
        assert reads[0]['duration'] >= 0


class TestGetSession:

    def test_unknown_session(self, client):
        response = client.get('/api/session/nope')

        assert response.status_code == 404
        assert response.json()['error'] == 'Session not found'

    def test_full_lifecycle(self, client):
        session_id = client.post('/api/session/start', json={'candidateName': 'Alice'}).json()['sessionId']
        logged = client.post('/api/events', json={'sessionId': session_id, 'type': 'no_face'})
        ended = client.post('/api/session/end', json={'sessionId': session_id})

        assert logged.status_code == 201
        assert ended.status_code == 200

        data = client.get(f'/api/session/{session_id}').json()
        assert data['session']['status'] in ('completed', 'terminated', 'error')
        assert len(data['events']) == 3
        assert {e['type'] for e in data['events']} == {'session_start', 'no_face', 'session_end'}
        assert len(data['session']['events']) == 3

        filtered = client.get(f'/api/events/session/{session_id}', params={'type': 'no_face'}).json()
        assert filtered['count'] == 1

    def test_events_most_recent_first(self, client, started_session):
        client.post('/api/events', json={
            'sessionId': started_session, 'type': 'tab_switch', 'timestamp': '2030-01-01T00:00:00Z',
        })

        events = client.get(f'/api/session/{started_session}').json()['events']
        assert events[0]['type'] == 'tab_switch'


class TestListSessions:

    def test_list_and_filter_by_status(self, client):
        ids = [
            client.post('/api/session/start', json={'candidateName': name}).json()['sessionId']
            for name in ('A', 'B', 'C')
        ]
        client.post('/api/session/end', json={'sessionId': ids[0]})

        everything = client.get('/api/sessions').json()
        active = client.get('/api/sessions', params={'status': 'active'}).json()

        assert everything['total'] == 3
        assert active['total'] == 2
        assert ids[0] not in {s['sessionId'] for s in active['sessions']}

    def test_invalid_status(self, client):
        assert client.get('/api/sessions', params={'status': 'paused'}).status_code == 400


class TestSessionSummary:

    def test_summary_counts_and_score(self, client, started_session):
        client.post('/api/events', json={'sessionId': started_session, 'type': 'no_face'})
        client.post('/api/events', json={'sessionId': started_session, 'type': 'multiple_faces'})

        data = client.get(f'/api/session/{started_session}/summary').json()

        assert data['eventCounts'] == {'session_start': 1, 'no_face': 1, 'multiple_faces': 1}
        assert data['anomalyCount'] == 2
        assert data['integrityScore'] == 85
        assert data['status'] == 'active'


class TestErrorDetail:

    def test_store_detail_hidden_in_production(self, database, monkeypatch):
        from proctoring_api.errors import StoreError
        from proctoring_api.stores import SessionStore

        async def broken_insert(self, session):
            raise StoreError('Failed to save session', detail='mongodb://secret@host')

        monkeypatch.setattr(SessionStore, 'insert', broken_insert)
        app = create_app(Settings(app_env='production', static_dir='/nonexistent'), database)
        with TestClient(app) as client:
            response = client.post('/api/session/start', json={'candidateName': 'Alice'})

        assert response.status_code == 500
        assert response.json() == {'success': False, 'error': 'Failed to save session'}


class TestFrontend:

    def test_unknown_paths_fall_back_to_index(self, database, tmp_path):
        (tmp_path / 'index.html').write_text('<div id="root"></div>')
        (tmp_path / 'app.js').write_text('console.log(1)')
        app = create_app(Settings(app_env='production', static_dir=str(tmp_path)), database)

        with TestClient(app) as client:
            deep_link = client.get('/session/abc/review')
            asset = client.get('/app.js')
            api = client.get('/api/session/missing')

        assert deep_link.status_code == 200
        assert 'id="root"' in deep_link.text
        assert asset.text == 'console.log(1)'
        assert api.status_code == 404
        assert api.json()['error'] == 'Session not found'

    def test_not_served_in_development(self, database, tmp_path):
        (tmp_path / 'index.html').write_text('<div id="root"></div>')
        app = create_app(Settings(app_env='development', static_dir=str(tmp_path)), database)

        with TestClient(app) as client:
            assert client.get('/session/abc/review').status_code == 404
