"""Keyed leases with a time-to-live.

Reconciliation runs take a lease before touching any item so two replicas, or a
scheduled run and a manual trigger, never sweep at the same time. With Redis
configured the lease lives there; otherwise it is held in process memory.
"""

from __future__ import annotations

import time
from typing import Any, Callable

_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class LeaseStore:
    """Acquire/release leases keyed by name, owned by an opaque token."""

    def __init__(
        self,
        redis_client: Any | None = None,
        *,
        key_prefix: str = "lease",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._redis = redis_client
        self._key_prefix = key_prefix
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    def _key(self, name: str) -> str:
        return f"{self._key_prefix}:{name}"

    def _evict_expired(self) -> None:
        now = self._clock()
        for key in [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]:
            del self._entries[key]

    async def acquire(self, name: str, owner: str, ttl_seconds: int) -> bool:
        """Take the lease if nobody holds it; True when ``owner`` now holds it."""

        ttl = max(int(ttl_seconds), 1)
        key = self._key(name)
        if self._redis is not None:
            return bool(await self._redis.set(key, owner, nx=True, ex=ttl))

        self._evict_expired()
        if key in self._entries:
            return False
        self._entries[key] = (owner, self._clock() + ttl)
        return True

    async def release(self, name: str, owner: str) -> bool:
        """Drop the lease if ``owner`` still holds it."""

        key = self._key(name)
        if self._redis is not None:
            return bool(await self._redis.eval(_RELEASE_SCRIPT, 1, key, owner))

        self._evict_expired()
        current = self._entries.get(key)
        if current is None or current[0] != owner:
            return False
        del self._entries[key]
        return True

    async def holder(self, name: str) -> str | None:
        key = self._key(name)
        if self._redis is not None:
            return await self._redis.get(key)
        self._evict_expired()
        current = self._entries.get(key)
        return current[0] if current else None
