"""Redis pool and the per-user channels notifications are published on."""

import json
from typing import Any

import redis.asyncio as redis

from apptime.config import Settings

_pool: redis.Redis | None = None


def user_channel(user_id: str) -> str:
    """Pub/sub channel the WebSocket bridge listens on for one user."""
    return f"ws:user:{user_id}"


async def init_redis(settings: Settings) -> None:
    """Create the pool sized for the notification workers plus API traffic."""
    global _pool  # noqa: PLW0603
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout_seconds,
    )


async def close_redis() -> None:
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis() -> redis.Redis:
    """Get the Redis client (FastAPI dependency)."""
    if _pool is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _pool


async def publish_to_user(client: Any, user_id: str, event: dict[str, Any]) -> int:
    """Publish a JSON event to a user's channel. Returns the subscriber count."""
    return await client.publish(user_channel(user_id), json.dumps(event, default=str))
