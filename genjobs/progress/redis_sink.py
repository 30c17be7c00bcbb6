"""Redis pub/sub sink so other processes can follow job progress"""

import json
from typing import Any, Dict

import redis.asyncio as redis


class RedisProgressPublisher:
    """Publishes each event to the events:{task_id} channel"""

    def __init__(self, client: "redis.Redis"):
        self.redis = client

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisProgressPublisher":
        pool = redis.ConnectionPool.from_url(
            redis_url,
            max_connections=30,
            decode_responses=True,
            socket_keepalive=True
        )
        return cls(redis.Redis(connection_pool=pool))

    @staticmethod
    def channel(task_id: str) -> str:
        return f"events:{task_id}"

    async def publish(self, task_id: str, event: Dict[str, Any]) -> None:
        await self.redis.publish(self.channel(task_id), json.dumps(event, default=str))

    async def ping(self) -> bool:
        return await self.redis.ping()

    async def close(self) -> None:
        await self.redis.aclose()
