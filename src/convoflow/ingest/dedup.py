"""Bounded, TTL-windowed dedup cache for the socket path."""

from __future__ import annotations

import os
import threading
import time
from collections import OrderedDict
from typing import Callable

DEFAULT_TTL_SECONDS = 60.0
DEFAULT_MAX_ENTRIES = 1000


class RealtimeDedupCache:
    """Remembers recently processed socket event ids.

    Entries live in an insertion-ordered mapping id -> processed-at. Expired
    entries are popped from the head on every call, and overflow evicts the
    oldest, so each operation is amortized O(1).

    Both the client event id and the provider external id are tracked, so an
    event re-sent with a new client id but the same provider message is still
    caught.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0 or max_entries <= 0:
            raise ValueError("ttl_seconds and max_entries must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, float] = OrderedDict()
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls) -> "RealtimeDedupCache":
        return cls(
            ttl_seconds=float(os.environ.get("SOCKET_DEDUP_TTL_SECONDS", DEFAULT_TTL_SECONDS)),
            max_entries=int(os.environ.get("SOCKET_DEDUP_MAX_ENTRIES", DEFAULT_MAX_ENTRIES)),
        )

    def __len__(self) -> int:
        with self._lock:
            self._expire(self._clock())
            return len(self._entries)

    def _expire(self, now: float) -> None:
        while self._entries:
            key, seen_at = next(iter(self._entries.items()))
            if now - seen_at < self.ttl_seconds:
                break
            self._entries.popitem(last=False)

    def is_duplicate(self, event_id: str, external_id: str | None = None) -> bool:
        with self._lock:
            self._expire(self._clock())
            return any(key in self._entries for key in _keys(event_id, external_id))

    def mark_processed(self, event_id: str, external_id: str | None = None) -> None:
        with self._lock:
            now = self._clock()
            self._expire(now)
            self._record(_keys(event_id, external_id), now)

    def claim(self, event_id: str, external_id: str | None = None) -> bool:
        """Atomically check and record an event.

        Returns True for the first caller; any concurrent or later caller with
        the same event id (or external id) inside the TTL gets False. A claim
        whose processing fails must be given back with release().
        """
        keys = _keys(event_id, external_id)
        with self._lock:
            now = self._clock()
            self._expire(now)
            if any(key in self._entries for key in keys):
                return False
            self._record(keys, now)
            return True

    def release(self, event_id: str, external_id: str | None = None) -> None:
        with self._lock:
            for key in _keys(event_id, external_id):
                self._entries.pop(key, None)

    def _record(self, keys: list[str], now: float) -> None:
        for key in keys:
            # re-marking moves the entry to the tail with a fresh timestamp
            self._entries.pop(key, None)
            self._entries[key] = now
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)


def _keys(event_id: str, external_id: str | None) -> list[str]:
    keys = [event_id]
    if external_id:
        keys.append(f"ext:{external_id}")
    return keys
