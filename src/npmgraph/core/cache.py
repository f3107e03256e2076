"""Time-bounded cache of registry responses, keyed by package name."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

DEFAULT_TTL = 600.0  # 10 minutes


@dataclass
class CacheEntry:
    """A cached value and the clock reading at which it was stored."""

    value: Any
    stored_at: float


class ResponseCache:
    """
    Key -> value store whose entries expire ``ttl`` seconds after insertion.

    Expired entries are dropped lazily on lookup. The clock is injectable so
    tests can move time without sleeping. All operations take an internal
    lock; one cache may be shared by overlapping graph builds.
    """

    def __init__(self, ttl: float = DEFAULT_TTL, *, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl!r}")
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def _is_valid(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.stored_at < self.ttl

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._is_valid(entry):
                return entry.value
            del self._entries[key]
            return None

    def set(self, key: str, value: Any) -> None:
        """Insert or overwrite ``key``, stamped with the current clock reading."""
        with self._lock:
            self._entries[key] = CacheEntry(value=value, stored_at=self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._entries.get(key)  # type: ignore[arg-type]
            return entry is not None and self._is_valid(entry)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
