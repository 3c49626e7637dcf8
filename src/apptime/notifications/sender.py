"""Deliver rendered notifications over Redis pub/sub.

Payloads are published to ``ws:user:{user_id}``; the WebSocket bridge
routes them to the user's open connections. Delivery is fire-and-forget.
"""

from __future__ import annotations

import logging
from typing import Any

from apptime.periods import utcnow
from apptime.redis_client import publish_to_user, user_channel

logger = logging.getLogger(__name__)


class RedisNotificationSender:
    """Publishes per-user notification payloads."""

    def __init__(self, redis: Any | None) -> None:
        self._redis = redis

    async def notify(self, user_id: str, template_id: str, payload: dict[str, Any]) -> bool:
        """Publish one notification. Returns False on failure, never raises."""
        if self._redis is None:
            logger.warning("No redis client; dropping %s notification for user %s", template_id, user_id)
            return False

        ws_payload = {
            "event": "notification",
            "data": {
                "type": template_id,
                "title": payload.get("title"),
                "description": payload.get("body"),
                "actionUrl": payload.get("deeplink"),
                "metadata": payload.get("data", {}),
                "timestamp": utcnow().isoformat(),
                "read": False,
            },
        }
        try:
            await publish_to_user(self._redis, user_id, ws_payload)
        except Exception:
            logger.warning("Failed to push notification via %s", user_channel(user_id), exc_info=True)
            return False
        return True
