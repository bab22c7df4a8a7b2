"""Async Redis client registry."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis

from .config import ServiceSettings

if TYPE_CHECKING:  # pragma: no cover - typing only
    RedisType = Redis
else:
    RedisType = Any


_CLIENTS: dict[str, RedisType] = {}


def get_redis_client(redis_url: str) -> RedisType:
    """Return a cached Redis client for the given URL."""

    client = _CLIENTS.get(redis_url)
    if client is None:
        client = Redis.from_url(redis_url, decode_responses=True)
        _CLIENTS[redis_url] = client
    return client


def resolve_redis(settings: ServiceSettings) -> RedisType | None:
    """Return a Redis client, or None when the engine runs without Redis."""

    if not settings.redis_url:
        return None
    return get_redis_client(settings.redis_url)


async def close_redis_connections() -> None:
    """Close all cached Redis connections (used for shutdown/tests)."""

    for client in _CLIENTS.values():
        await client.aclose()
    _CLIENTS.clear()
