"""
tests/test_cache_store.py -- Unit tests for the SQLite key-value cache (cache/store.py).

Covers:
  - get/set with and without TTL, expiry against the injected clock
  - delete counts only live keys
  - expire resets a live key's TTL and refuses a missing one
  - incr starts at 1, counts up, and resets the TTL window
  - scan matches glob patterns and skips expired keys
  - purge_expired removes expired rows only
"""

from __future__ import annotations

from cache.store import TTLCache


def test_set_and_get(cache: TTLCache) -> None:
    cache.set("k", "v")
    assert cache.get("k") == "v"
    assert cache.get("missing") is None


def test_set_replaces_value_and_ttl(cache: TTLCache, clock) -> None:
    cache.set("k", "one", ttl_seconds=10)
    cache.set("k", "two")
    clock.advance(seconds=60)
    assert cache.get("k") == "two"


def test_key_expires_on_the_clock(cache: TTLCache, clock) -> None:
    cache.set("k", "v", ttl_seconds=10)
    clock.advance(seconds=9)
    assert cache.get("k") == "v"
    clock.advance(seconds=1)
    assert cache.get("k") is None


def test_delete_counts_live_keys(cache: TTLCache, clock) -> None:
    cache.set("a", "1")
    cache.set("b", "2", ttl_seconds=5)
    clock.advance(seconds=10)
    assert cache.delete("a", "b", "c") == 1
    assert cache.get("a") is None
    assert cache.delete() == 0


def test_expire_resets_ttl(cache: TTLCache, clock) -> None:
    cache.set("k", "v", ttl_seconds=10)
    clock.advance(seconds=8)
    assert cache.expire("k", 10) is True
    clock.advance(seconds=8)
    assert cache.get("k") == "v"


def test_expire_on_missing_key_is_false(cache: TTLCache, clock) -> None:
    assert cache.expire("nope", 10) is False
    cache.set("k", "v", ttl_seconds=1)
    clock.advance(seconds=2)
    assert cache.expire("k", 10) is False


def test_incr_counts_and_resets_window(cache: TTLCache, clock) -> None:
    assert cache.incr("n", ttl_seconds=100) == 1
    clock.advance(seconds=90)
    assert cache.incr("n", ttl_seconds=100) == 2
    clock.advance(seconds=90)
    assert cache.get("n") == "2"
    clock.advance(seconds=10)
    assert cache.get("n") is None
    assert cache.incr("n", ttl_seconds=100) == 1


def test_incr_without_ttl_keeps_existing_ttl(cache: TTLCache, clock) -> None:
    cache.set("n", "5", ttl_seconds=10)
    assert cache.incr("n") == 6
    clock.advance(seconds=10)
    assert cache.get("n") is None


def test_scan_matches_glob_and_skips_expired(cache: TTLCache, clock) -> None:
    cache.set("session:1:a", "x")
    cache.set("session:1:b", "x", ttl_seconds=5)
    cache.set("session:2:a", "x")
    cache.set("other", "x")
    clock.advance(seconds=6)
    assert sorted(cache.scan("session:1:*")) == ["session:1:a"]
    assert len(cache.scan("session:*")) == 2


def test_purge_expired(cache: TTLCache, clock) -> None:
    cache.set("keep", "x")
    cache.set("drop", "x", ttl_seconds=1)
    clock.advance(seconds=2)
    assert cache.purge_expired() == 1
    assert cache.get("keep") == "x"


def test_file_backed_cache_persists(tmp_path, clock) -> None:
    path = tmp_path / "kv.db"
    first = TTLCache(path, clock=clock)
    first.set("k", "v")
    first.close()
    second = TTLCache(path, clock=clock)
    assert second.get("k") == "v"
    second.close()
