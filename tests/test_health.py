"""
Tests for the health endpoint and error envelope
"""


class TestHealthEndpoints:

    def test_health_check(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.json() == {'status': 'ok'}

    def test_malformed_body_is_a_400(self, client):
        response = client.post(
            '/api/session/start',
            content='not json',
            headers={'Content-Type': 'application/json'},
        )

        assert response.status_code == 400
        assert response.json()['success'] is False
