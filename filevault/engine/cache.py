"""
FileVault Redis Layer — Key/value wrapper with circuit breaker.

Used by the session store (auth_<token> → owner id, TTL-bounded). All data
held here is ephemeral: losing it only logs users out.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import redis

logger = logging.getLogger("filevault.engine.cache")


class RedisCache:
    """
    Redis wrapper with typed operations and circuit breaker.

    Read failures degrade to a miss (None / False) instead of raising, so a
    Redis outage turns every token into an anonymous request rather than an
    internal error.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "",
        default_ttl: int = 300,
        db: Optional[int] = None,
    ):
        self._redis_url = redis_url
        self._prefix = prefix
        self._default_ttl = default_ttl
        self._db = db
        self._client: Optional[redis.Redis] = None
        self._available = False

        # Circuit breaker state
        self._failure_count = 0
        self._failure_threshold = 5
        self._failure_window = 30  # seconds
        self._first_failure_time = 0.0
        self._circuit_open = False

    def connect(self) -> bool:
        """Initialize Redis connection."""
        try:
            kwargs = {}
            if self._db is not None:
                kwargs["db"] = self._db
            self._client = redis.Redis.from_url(
                self._redis_url,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
                retry_on_timeout=True,
                **kwargs,
            )
            self._client.ping()
            self._available = True
            self._circuit_open = False
            self._failure_count = 0
            logger.info(f"Redis connected ({self._prefix or 'no prefix'})")
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed: {e}")
            self._available = False
            return False

    def attach(self, client: redis.Redis) -> None:
        """Use an already-constructed client (shared pools, tests)."""
        self._client = client
        self._available = True
        self._circuit_open = False
        self._failure_count = 0

    def _check_circuit(self) -> bool:
        if self._circuit_open:
            # Try to recover after window
            if time.time() - self._first_failure_time > self._failure_window:
                self._circuit_open = False
                self._failure_count = 0
                return self.connect()
            return False
        return self._available

    def _record_failure(self) -> None:
        now = time.time()
        if self._failure_count == 0:
            self._first_failure_time = now

        self._failure_count += 1

        if self._failure_count >= self._failure_threshold:
            elapsed = now - self._first_failure_time
            if elapsed <= self._failure_window:
                self._circuit_open = True
                logger.error(
                    f"Redis circuit breaker OPEN: {self._failure_count} failures in {elapsed:.1f}s"
                )

    def _make_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    # ── Core Operations ──

    def get(self, key: str) -> Optional[str]:
        """Get a value. Returns None on miss or failure."""
        if not self._check_circuit():
            return None
        try:
            return self._client.get(self._make_key(key))
        except redis.RedisError as e:
            self._record_failure()
            logger.debug(f"Redis GET failed: {e}")
            return None

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        """Set a value with optional TTL. Returns False on failure."""
        if not self._check_circuit():
            return False
        try:
            self._client.set(self._make_key(key), value, ex=ttl or self._default_ttl)
            return True
        except redis.RedisError as e:
            self._record_failure()
            logger.debug(f"Redis SET failed: {e}")
            return False

    def delete(self, key: str) -> bool:
        if not self._check_circuit():
            return False
        try:
            self._client.delete(self._make_key(key))
            return True
        except redis.RedisError:
            self._record_failure()
            return False

    def exists(self, key: str) -> bool:
        if not self._check_circuit():
            return False
        try:
            return bool(self._client.exists(self._make_key(key)))
        except redis.RedisError:
            self._record_failure()
            return False

    # ── Health & Management ──

    def ping(self) -> bool:
        """Health check."""
        if not self._client:
            return False
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False

    def close(self) -> None:
        """Close the Redis connection and release resources."""
        if self._client is not None:
            try:
                self._client.close()
            except redis.RedisError as e:
                logger.debug(f"Redis close failed: {e}")
            self._client = None
        self._available = False
        self._circuit_open = False
        self._failure_count = 0

    @property
    def is_available(self) -> bool:
        return self._available and not self._circuit_open

    @property
    def is_circuit_open(self) -> bool:
        return self._circuit_open


def create_session_store(redis_url: str, prefix: str = "auth_", ttl: int = 86400, db: Optional[int] = None) -> RedisCache:
    """Create and connect the session store."""
    cache = RedisCache(redis_url=redis_url, prefix=prefix, default_ttl=ttl, db=db)
    cache.connect()
    return cache
