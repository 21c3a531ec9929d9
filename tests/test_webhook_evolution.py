"""Evolution webhook endpoint tests."""

import pytest
from fastapi.testclient import TestClient

from convoflow.api.dependencies import get_pipeline
from convoflow.api.factory import create_app

from conftest import API_KEY, update_payload, upsert_payload


@pytest.fixture
def client(pipeline):
    app = create_app()
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    return TestClient(app)


def _post(client, body, api_key=API_KEY):
    headers = {"X-Api-Key": api_key} if api_key else {}
    return client.post("/webhooks/evolution", json=body, headers=headers)


def test_probe(client):
    response = client.get("/webhooks/evolution")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


class TestAuth:
    def test_missing_key_is_401(self, client, store):
        response = _post(client, upsert_payload(), api_key=None)
        assert response.status_code == 401
        assert response.json() == {"ok": False, "error": "unauthorized"}
        assert store.deliveries == {}

    def test_unknown_key_is_401(self, client, store):
        response = _post(client, upsert_payload(), api_key="nope")
        assert response.status_code == 401
        assert store.deliveries == {}

    def test_inactive_key_is_401(self, client, store):
        store.add_api_key("revoked", "ws_other", is_active=False)
        assert _post(client, upsert_payload(), api_key="revoked").status_code == 401

    def test_key_lookup_failure_is_500(self, client, store, monkeypatch):
        def broken(api_key):
            raise RuntimeError("db down")

        monkeypatch.setattr(store, "workspace_for_api_key", broken)
        response = _post(client, upsert_payload())
        assert response.status_code == 500
        assert response.json()["ok"] is False


class TestBody:
    def test_invalid_json_is_422(self, client, store):
        response = client.post(
            "/webhooks/evolution",
            content=b"{not json",
            headers={"X-Api-Key": API_KEY, "Content-Type": "application/json"},
        )
        assert response.status_code == 422
        assert response.json() == {"ok": False, "error": "invalid json"}
        assert store.deliveries == {}

    def test_array_body_is_422(self, client, store):
        response = _post(client, [1, 2, 3])
        assert response.status_code == 422
        assert store.deliveries == {}


class TestProcessing:
    def test_message_then_status(self, client, store):
        response = _post(client, upsert_payload())
        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["messageId"] in store.messages

        response = _post(client, update_payload(status="DELIVERY_ACK"))
        assert response.status_code == 200
        assert response.json() == {"ok": True, "updated": False, "status": "delivered"}

    def test_redelivery_is_idempotent(self, client, store):
        _post(client, upsert_payload())
        response = _post(client, upsert_payload())
        assert response.status_code == 200
        assert response.json() == {"ok": True, "idempotent": True}
        assert len(store.messages) == 1

    def test_unknown_instance_message_is_422(self, client):
        response = _post(client, upsert_payload(instance="ghost"))
        assert response.status_code == 422
        assert response.json()["ignored"] is True

    def test_processing_failure_is_500(self, client, store):
        store.fail_on.add("insert_message")
        response = _post(client, upsert_payload())
        assert response.status_code == 500
        assert response.json() == {"ok": False, "error": "internal error"}
        assert next(iter(store.deliveries.values()))["status"] == "failed"

    def test_delivery_insert_failure_is_500(self, client, store):
        store.fail_on.add("insert_delivery")
        response = _post(client, upsert_payload())
        assert response.status_code == 500
        assert store.messages == {}

    def test_api_key_not_persisted_with_delivery(self, client, store):
        _post(client, upsert_payload())
        headers = next(iter(store.deliveries.values()))["headers"]
        assert "x-api-key" not in headers
        assert API_KEY not in headers.values()
