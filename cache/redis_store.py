"""
cache/redis_store.py -- Redis backend for the key-value cache.

Thin wrapper so sessions and login-attempt counters can be shared across
worker processes. Redis enforces TTLs itself; nothing here tracks expiry.

Timeouts: socket and connect timeouts are set on the client (default 5 s).
A connection failure or timeout surfaces as StoreUnavailable; nothing is
retried here.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

from redis import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from core.errors import StoreUnavailable

logger = logging.getLogger("warden.cache.redis")


@contextmanager
def _guard(op: str) -> Iterator[None]:
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError) as exc:
        logger.error("Redis %s failed: %s", op, exc)
        raise StoreUnavailable("cache store unavailable") from exc


class RedisCache:
    """KeyValueCache over a redis.Redis client created with decode_responses=True."""

    def __init__(self, client: Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, redis_url: str, *, socket_timeout: float = 5.0) -> RedisCache:
        return cls(
            Redis.from_url(
                redis_url,
                decode_responses=True,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
        )

    def verify_connection(self) -> None:
        """Assert connectivity at startup before wiring dependent components."""
        with _guard("ping"):
            self.client.ping()

    def get(self, key: str) -> Optional[str]:
        with _guard("get"):
            return self.client.get(key)

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        with _guard("set"):
            self.client.set(key, value, ex=ttl_seconds)

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with _guard("delete"):
            return int(self.client.delete(*keys))

    def expire(self, key: str, ttl_seconds: int) -> bool:
        with _guard("expire"):
            return bool(self.client.expire(key, ttl_seconds))

    def incr(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        """INCR, plus EXPIRE in the same MULTI/EXEC when ttl_seconds is given."""
        with _guard("incr"):
            if ttl_seconds is None:
                return int(self.client.incr(key))
            pipe = self.client.pipeline(transaction=True)
            pipe.incr(key)
            pipe.expire(key, ttl_seconds)
            value, _ = pipe.execute()
            return int(value)

    def scan(self, pattern: str) -> list[str]:
        # SCAN rather than KEYS: KEYS blocks the server for the whole keyspace.
        with _guard("scan"):
            return list(self.client.scan_iter(match=pattern, count=500))

    def close(self) -> None:
        self.client.close()
