"""
Thread-safe expiring key/value store with a cancellable background sweep.

Lookups treat expired entries as misses without deleting them; the sweep
thread (or an explicit ``remove_expired()`` call) removes them later.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """A cached value and the moment it stops being served."""

    value: V
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class TTLCache(Generic[V]):
    """Expiring map guarded by a single lock.

    The sweep runs every ``sweep_interval`` seconds (``ttl / 2`` when not
    given) on a daemon thread until ``close()`` is called.
    """

    def __init__(
        self,
        ttl: float,
        sweep_interval: float | None = None,
        *,
        clock: Callable[[], float] = time.time,
        name: str = "ttl-cache",
        auto_start: bool = True,
    ):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._ttl = float(ttl)
        self._sweep_interval = float(sweep_interval) if sweep_interval else self._ttl / 2
        self._clock = clock
        self._name = name
        self._entries: dict[Hashable, CacheEntry[V]] = {}
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_sweep_at: float | None = None
        self._swept_total = 0

        if auto_start:
            self.start()

    @property
    def ttl(self) -> float:
        return self._ttl

    @property
    def sweep_interval(self) -> float:
        return self._sweep_interval

    def get(self, key: Hashable) -> V | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(self._clock()):
                return None
            return entry.value

    def set(self, key: Hashable, value: V, ttl: float | None = None) -> None:
        expires_at = self._clock() + (self._ttl if ttl is None else ttl)
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=expires_at)

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries = {}

    def remove_expired(self) -> int:
        """Drop every entry whose expiry is at or before now."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._last_sweep_at = now
            self._swept_total += len(expired)
        if expired:
            logger.debug("%s: swept %d expired entries", self._name, len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        thread = threading.Thread(target=self._run_sweep, daemon=True, name=f"{self._name}-sweep")
        thread.start()
        self._thread = thread

    def _run_sweep(self) -> None:
        while not self._stop.wait(self._sweep_interval):
            try:
                self.remove_expired()
            except Exception:
                logger.exception("%s: sweep failed", self._name)

    def close(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=1.0)
            if thread.is_alive():
                logger.warning("%s: sweep thread did not stop within timeout", self._name)
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def stats(self) -> dict[str, Any]:
        with self._lock:
            now = self._clock()
            live = sum(1 for entry in self._entries.values() if not entry.is_expired(now))
            return {
                "name": self._name,
                "entries": len(self._entries),
                "liveEntries": live,
                "ttlSeconds": self._ttl,
                "sweepIntervalSeconds": self._sweep_interval,
                "sweepRunning": self.running,
                "lastSweepAt": self._last_sweep_at,
                "sweptTotal": self._swept_total,
            }

    def __enter__(self) -> TTLCache[V]:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
