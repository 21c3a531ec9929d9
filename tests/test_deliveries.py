"""Tests for the delivery store."""

import pytest

from convoflow.ingest.deliveries import mark_delivery, record_delivery, safe_headers

from conftest import WORKSPACE_ID


def _record(store, key="evolution:messages.upsert:inst:WA-1", workspace_id=WORKSPACE_ID):
    return record_delivery(
        store,
        workspace_id=workspace_id,
        provider="evolution",
        event_type="messages.upsert",
        instance_name="inst",
        delivery_key=key,
        payload={"event": "messages.upsert"},
        headers={"Content-Type": "application/json", "X-Api-Key": "secret"},
    )


class TestRecordDelivery:
    def test_first_delivery_is_received(self, store):
        receipt = _record(store)
        assert receipt.is_duplicate is False
        row = store.deliveries[receipt.delivery_id]
        assert row["status"] == "received"

    def test_same_key_is_duplicate(self, store):
        _record(store)
        receipt = _record(store)
        assert receipt.is_duplicate is True
        assert receipt.delivery_id is None
        assert len(store.deliveries) == 1

    def test_same_key_other_workspace_is_new(self, store):
        _record(store)
        receipt = _record(store, workspace_id="ws_other")
        assert receipt.is_duplicate is False
        assert len(store.deliveries) == 2

    def test_credentials_not_persisted(self, store):
        receipt = _record(store)
        headers = store.deliveries[receipt.delivery_id]["headers"]
        assert "x-api-key" not in headers
        assert headers["content-type"] == "application/json"

    def test_insert_failure_propagates(self, store):
        store.fail_on.add("insert_delivery")
        with pytest.raises(RuntimeError):
            _record(store)


class TestMarkDelivery:
    def test_sets_terminal_status(self, store):
        receipt = _record(store)
        mark_delivery(store, receipt.delivery_id, "failed", "boom")
        row = store.deliveries[receipt.delivery_id]
        assert row["status"] == "failed"
        assert row["error_message"] == "boom"
        assert row["processed_at"] is not None

    def test_failure_is_swallowed(self, store):
        receipt = _record(store)
        store.fail_on.add("mark_delivery")
        mark_delivery(store, receipt.delivery_id, "processed")
        assert store.deliveries[receipt.delivery_id]["status"] == "received"

    def test_no_delivery_id_is_noop(self, store):
        mark_delivery(store, None, "processed")


def test_safe_headers_drops_auth():
    headers = safe_headers({"Authorization": "Bearer x", "apikey": "k", "User-Agent": "evo"})
    assert headers == {"user-agent": "evo"}
