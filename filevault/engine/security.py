"""
FileVault Session Validation — Bearer token → owner id.

Tokens are opaque strings stored in Redis as ``auth_<token>`` with a bounded
TTL. Validation has no side effects; expiry is enforced by Redis.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from filevault.engine.cache import RedisCache
from filevault.engine.errors import VaultSessionError, VaultUpstreamError

logger = logging.getLogger("filevault.engine.security")


class SessionValidator:
    """
    Session lookup over a RedisCache whose prefix is the session key prefix.

    Usage:
        sessions = SessionValidator(create_session_store(url))
        token = sessions.create_session("u1")
        sessions.validate(token)   # -> "u1"
    """

    def __init__(self, store: RedisCache, ttl: int = 86400):
        self._store = store
        self._ttl = ttl

    def validate(self, token: Optional[str]) -> Optional[str]:
        """Return the owner id the token maps to, or None."""
        if not token:
            return None
        return self._store.get(token)

    def authenticate(self, token: Optional[str]) -> str:
        """Like validate(), but raises VaultSessionError when unresolved."""
        owner_id = self.validate(token)
        if owner_id is None:
            raise VaultSessionError("Unauthorized")
        return owner_id

    def create_session(self, owner_id: str) -> str:
        """Issue a new token for owner_id."""
        token = str(uuid.uuid4())
        if not self._store.set(token, str(owner_id), ttl=self._ttl):
            raise VaultUpstreamError("Unable to create session", upstream="session_store")
        logger.info(f"Session created for user {owner_id}")
        return token

    def revoke(self, token: str) -> bool:
        """Invalidate a token. Returns False when the store is unreachable."""
        return self._store.delete(token)

    def ping(self) -> bool:
        return self._store.ping()
