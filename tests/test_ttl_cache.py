from __future__ import annotations

import threading
import time

import pytest

from linear_bridge.ttl_cache import CacheEntry, TTLCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _cache(clock: FakeClock, ttl: float = 60) -> TTLCache[str]:
    return TTLCache(ttl, clock=clock, auto_start=False)


def test_entry_expires_at_boundary():
    entry = CacheEntry("v", expires_at=10.0)
    assert not entry.is_expired(9.999)
    assert entry.is_expired(10.0)


def test_get_before_and_after_ttl():
    clock = FakeClock()
    cache = _cache(clock)
    cache.set("k", "v")

    clock.advance(59.9)
    assert cache.get("k") == "v"

    clock.advance(0.1)
    assert cache.get("k") is None


def test_expired_entry_stays_until_swept():
    clock = FakeClock()
    cache = _cache(clock)
    cache.set("a", "1")
    cache.set("b", "2", ttl=600)

    clock.advance(61)
    assert cache.get("a") is None
    assert len(cache) == 2

    assert cache.remove_expired() == 1
    assert len(cache) == 1
    assert "b" in cache


def test_set_overwrites_and_resets_expiry():
    clock = FakeClock()
    cache = _cache(clock)
    cache.set("k", "old")
    clock.advance(50)
    cache.set("k", "new")
    clock.advance(50)
    assert cache.get("k") == "new"


def test_delete_and_clear():
    cache = _cache(FakeClock())
    cache.set("a", "1")
    cache.set("b", "2")
    cache.delete("a")
    cache.delete("missing")
    assert cache.get("a") is None
    cache.clear()
    assert len(cache) == 0


def test_rejects_non_positive_ttl():
    with pytest.raises(ValueError):
        TTLCache(0, auto_start=False)


def test_default_sweep_interval_is_half_ttl():
    cache = TTLCache(300, auto_start=False)
    assert cache.sweep_interval == 150
    assert TTLCache(1800, 300, auto_start=False).sweep_interval == 300


def test_stats_counts_live_and_swept_entries():
    clock = FakeClock()
    cache = _cache(clock)
    cache.set("a", "1")
    cache.set("b", "2", ttl=600)
    clock.advance(61)

    stats = cache.stats()
    assert stats["entries"] == 2
    assert stats["liveEntries"] == 1
    assert stats["sweepRunning"] is False

    cache.remove_expired()
    stats = cache.stats()
    assert stats["sweptTotal"] == 1
    assert stats["lastSweepAt"] == clock.now


def test_background_sweep_removes_expired_entries_and_stops_on_close():
    cache: TTLCache[str] = TTLCache(0.05, sweep_interval=0.01)
    try:
        cache.set("k", "v")
        deadline = time.monotonic() + 2.0
        while len(cache) and time.monotonic() < deadline:
            time.sleep(0.01)
        assert len(cache) == 0
        assert cache.running
    finally:
        cache.close()
    assert not cache.running


def test_close_is_idempotent_and_context_manager_closes():
    with TTLCache(60, sweep_interval=0.01) as cache:
        assert cache.running
    assert not cache.running
    cache.close()
    assert not cache.running


def test_concurrent_writers_and_readers():
    cache: TTLCache[int] = TTLCache(60, auto_start=False)

    def writer(offset: int) -> None:
        for i in range(200):
            cache.set(f"{offset}-{i}", i)
            cache.get(f"{offset}-{i}")

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(cache) == 8 * 200
