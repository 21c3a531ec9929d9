"""Tasks client with idempotent, bounded enqueue.

Side-channel work (media download, avatar re-hosting) runs off the request
path. Backend selectable via TASKS_BACKEND env var:
- inline (default): executes handler immediately (for dev/tests)
- thread: executes on a bounded ThreadPoolExecutor
"""

from __future__ import annotations

import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Protocol

from convoflow.observability.correlation import get_correlation_id, reset_correlation_id, set_correlation_id
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_MAX_WORKERS = 4
DEFAULT_MAX_PENDING = 100


class TaskHandler(Protocol):
    """Protocol for task handlers."""

    def __call__(self, payload: dict) -> None:
        """Execute task with given payload."""
        ...


class TasksClient:
    """Tasks client with idempotent enqueue by task_id.

    Backend:
    - "inline": executes handler immediately, in the caller's thread
    - "thread": submits to a ThreadPoolExecutor; at most max_pending tasks
      may be queued or running, extra tasks are dropped (enqueue -> False)

    Handler exceptions are logged and never propagate to the enqueuer.
    A task_id is held only while its task is queued or running: a second
    enqueue of the same id in that window is a no-op, and once the task
    finishes (success or failure) the id may be enqueued again.
    """

    def __init__(
        self,
        backend: str | None = None,
        max_workers: int | None = None,
        max_pending: int | None = None,
    ) -> None:
        self._backend = backend or os.environ.get("TASKS_BACKEND", "inline")
        if self._backend not in ("inline", "thread"):
            raise ValueError(f"Unknown TASKS_BACKEND: {self._backend}")

        self._max_workers = max_workers or int(
            os.environ.get("TASKS_MAX_WORKERS", DEFAULT_MAX_WORKERS)
        )
        self._max_pending = max_pending or int(
            os.environ.get("TASKS_MAX_PENDING", DEFAULT_MAX_PENDING)
        )

        self._inflight_ids: set[str] = set()
        self._pending = 0
        self._lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None

    @property
    def backend(self) -> str:
        return self._backend

    def enqueue(
        self,
        task_id: str,
        handler: Callable[[dict], None],
        payload: dict,
    ) -> bool:
        """Enqueue task for execution.

        Idempotent by task_id while the task is in flight: if the same task_id
        is still queued or running, returns False without running it twice.

        Args:
            task_id: Unique identifier for idempotency.
            handler: Callable that processes the payload.
            payload: Task data (must not contain PII).

        Returns:
            True if task was accepted, False if duplicate or pool saturated.
        """
        with self._lock:
            if task_id in self._inflight_ids:
                return False
            if self._backend == "thread" and self._pending >= self._max_pending:
                logger.warning(
                    "task dropped, pool saturated",
                    extra={"extra_fields": safe_log_context(task_id=task_id, pending=self._pending)},
                )
                return False
            self._inflight_ids.add(task_id)
            if self._backend == "thread":
                self._pending += 1

        if self._backend == "inline":
            self._run(task_id, handler, payload, get_correlation_id())
            return True

        future = self._get_executor().submit(
            self._run, task_id, handler, payload, get_correlation_id()
        )
        future.add_done_callback(self._task_done)
        return True

    def _run(
        self,
        task_id: str,
        handler: Callable[[dict], None],
        payload: dict,
        correlation_id: str | None,
    ) -> None:
        token = set_correlation_id(correlation_id) if correlation_id else None
        try:
            handler(payload)
        except Exception:
            logger.exception(
                "task failed",
                extra={"extra_fields": safe_log_context(task_id=task_id)},
            )
        finally:
            self._finish(task_id)
            if token is not None:
                reset_correlation_id(token)

    def _finish(self, task_id: str) -> None:
        with self._lock:
            self._inflight_ids.discard(task_id)

    def _task_done(self, _future: Future) -> None:
        with self._lock:
            self._pending -= 1

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix="convoflow-task",
                )
            return self._executor

    def in_flight(self, task_id: str) -> bool:
        """Check if task_id is queued or running."""
        return task_id in self._inflight_ids

    def pending(self) -> int:
        """Number of thread-backend tasks queued or running."""
        return self._pending

    def shutdown(self, wait: bool = True) -> None:
        """Stop the pool (thread backend); waits for running tasks by default."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
