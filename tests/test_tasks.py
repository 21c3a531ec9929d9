"""Tests for tasks subsystem."""

import threading

import pytest

from convoflow.observability.correlation import get_correlation_id, reset_correlation_id, set_correlation_id
from convoflow.tasks.client import TasksClient


class TestTasksClientInline:
    def test_enqueue_executes_handler(self):
        client = TasksClient(backend="inline")
        executed = []

        result = client.enqueue("task-1", executed.append, {"key": "value"})

        assert result is True
        assert executed == [{"key": "value"}]

    def test_same_task_id_while_running_is_noop(self):
        client = TasksClient(backend="inline")
        executed = []
        nested = []

        def handler(payload: dict) -> None:
            executed.append(payload)
            nested.append((client.in_flight("same-id"), client.enqueue("same-id", executed.append, {"x": 2})))

        assert client.enqueue("same-id", handler, {"x": 1}) is True
        assert executed == [{"x": 1}]
        assert nested == [(True, False)]
        assert client.in_flight("same-id") is False

    def test_handler_exception_does_not_propagate(self):
        client = TasksClient(backend="inline")

        def boom(payload: dict) -> None:
            raise RuntimeError("handler failed")

        assert client.enqueue("task-1", boom, {}) is True

    def test_finished_task_id_can_run_again(self):
        client = TasksClient(backend="inline")
        executed = []
        assert client.enqueue("t", executed.append, {}) is True
        assert client.enqueue("t", executed.append, {}) is True
        assert len(executed) == 2

    def test_failed_task_can_be_retried(self):
        client = TasksClient(backend="inline")
        attempts = []

        def flaky(payload: dict) -> None:
            attempts.append(payload)
            if len(attempts) == 1:
                raise TimeoutError("provider timeout")

        assert client.enqueue("avatar:c-1", flaky, {}) is True
        assert client.enqueue("avatar:c-1", flaky, {}) is True
        assert len(attempts) == 2

    def test_backend_from_env(self, monkeypatch):
        monkeypatch.setenv("TASKS_BACKEND", "thread")
        client = TasksClient()
        assert client.backend == "thread"
        client.shutdown()

    def test_unknown_backend_raises(self):
        with pytest.raises(ValueError, match="Unknown TASKS_BACKEND"):
            TasksClient(backend="cloud_tasks")


class TestTasksClientThread:
    def test_runs_on_pool_and_carries_correlation_id(self):
        client = TasksClient(backend="thread", max_workers=2, max_pending=10)
        seen = []
        done = threading.Event()

        def handler(payload: dict) -> None:
            seen.append((payload["n"], get_correlation_id(), threading.current_thread().name))
            done.set()

        token = set_correlation_id("cid-123")
        try:
            assert client.enqueue("t-1", handler, {"n": 1}) is True
        finally:
            reset_correlation_id(token)

        assert done.wait(5)
        client.shutdown()
        assert seen[0][0] == 1
        assert seen[0][1] == "cid-123"
        assert seen[0][2].startswith("convoflow-task")

    def test_saturated_pool_drops_tasks(self):
        client = TasksClient(backend="thread", max_workers=1, max_pending=1)
        release = threading.Event()
        started = threading.Event()

        def blocking(payload: dict) -> None:
            started.set()
            release.wait(5)

        assert client.enqueue("t-1", blocking, {}) is True
        assert started.wait(5)
        assert client.enqueue("t-2", blocking, {}) is False
        assert client.in_flight("t-2") is False

        release.set()
        client.shutdown()
        assert client.pending() == 0

    def test_same_task_id_rejected_only_while_in_flight(self):
        client = TasksClient(backend="thread", max_workers=1, max_pending=10)
        release = threading.Event()
        started = threading.Event()

        def blocking(payload: dict) -> None:
            started.set()
            release.wait(5)

        assert client.enqueue("media:m-1", blocking, {}) is True
        assert started.wait(5)
        assert client.enqueue("media:m-1", blocking, {}) is False

        release.set()
        client.shutdown()
        assert client.in_flight("media:m-1") is False
        assert client.enqueue("media:m-1", lambda payload: None, {}) is True
        client.shutdown()

    def test_completed_ids_are_not_retained(self):
        client = TasksClient(backend="thread", max_workers=4, max_pending=5000)
        for n in range(500):
            assert client.enqueue(f"t-{n}", lambda payload: None, {}) is True
        client.shutdown()

        assert client.pending() == 0
        assert not any(client.in_flight(f"t-{n}") for n in range(500))
