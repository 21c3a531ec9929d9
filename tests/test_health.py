"""Health endpoint tests."""

from fastapi.testclient import TestClient

from convoflow.api.app import app

client = TestClient(app)


def test_health_returns_ok_status():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
