from __future__ import annotations

import json
from typing import Any, Dict

import redis.asyncio as aioredis
from redis import Redis


class RedisCache:
    """Pub/sub client used to fan request-log notifications out to subscribers.

    Messages are JSON documents; datetimes and other non-JSON values are
    stringified.
    """

    PUBLISH_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = PUBLISH_TIMEOUT):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Ping with a throwaway sync client; also serves the health check."""
        client = Redis.from_url(
            self.redis_url, decode_responses=True, socket_connect_timeout=self.socket_timeout
        )
        try:
            client.ping()
        finally:
            client.close()

    async def publish(self, channel: str, message: Dict[str, Any]) -> int:
        """Return the number of subscribers that received the message."""
        return await self.client.publish(channel, json.dumps(message, default=str))

    async def close(self) -> None:
        await self.client.aclose()
