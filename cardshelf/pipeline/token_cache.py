"""
Cardshelf - OAuth Token Cache

Time-bounded memoization of access tokens, keyed by OAuth scope.
Injected into API clients instead of living in module-level state, so each
client (and each test) controls its own cache.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import NamedTuple

import structlog

logger = structlog.get_logger(__name__)


class CachedToken(NamedTuple):
    value: str
    expires_at: datetime


class TokenCache:
    """
    Per-scope token cache with expiry checked on read.

    A token is served only while more than `safety_margin` remains before
    it expires; otherwise the caller must refresh and `put` a new one.
    """

    def __init__(self, safety_margin: timedelta = timedelta(seconds=30)) -> None:
        self._safety_margin = safety_margin
        self._tokens: dict[str, CachedToken] = {}

    def get(self, scope: str, now: datetime | None = None) -> str | None:
        cached = self._tokens.get(scope)
        if cached is None:
            return None
        now = now or datetime.now(timezone.utc)
        if cached.expires_at - now <= self._safety_margin:
            logger.debug("token_cache_expired", scope=scope, source="token_cache")
            return None
        return cached.value

    def put(
        self,
        scope: str,
        value: str,
        expires_in: int,
        now: datetime | None = None,
    ) -> CachedToken:
        now = now or datetime.now(timezone.utc)
        cached = CachedToken(value=value, expires_at=now + timedelta(seconds=expires_in))
        self._tokens[scope] = cached
        return cached

    def clear(self) -> None:
        self._tokens.clear()

    def __len__(self) -> int:
        return len(self._tokens)
