import logging
from typing import Dict, Iterable, Optional

from redis import asyncio as aioredis

logger = logging.getLogger(__name__)


class RedisClient:
    """Долгоживущее подключение к Redis, общее для всех запросов."""

    def __init__(self, url: str, connect_timeout: float = 5.0):
        self.redis_url = url
        self.connect_timeout = connect_timeout
        self.client: Optional[aioredis.Redis] = None

    async def connect(self):
        try:
            self.client = aioredis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=self.connect_timeout,
            )
            # Проверяем соединение сразу при старте
            await self.client.ping()
            logger.info("Connected to Redis")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    async def disconnect(self):
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("Disconnected from Redis")

    # ========== Direct Key Access ==========

    async def set(self, key: str, value: str, expire: int = None) -> None:
        await self.client.set(key, value, ex=expire)

    async def swap(self, key: str, value: str) -> Optional[str]:
        """Атомарно записывает значение и возвращает предыдущее (SET ... GET)."""
        return await self.client.set(key, value, get=True)

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def get_many(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        keys = list(keys)
        if not keys:
            return {}
        values = await self.client.mget(keys)
        return dict(zip(keys, values))

    async def delete(self, key: str) -> int:
        return await self.client.delete(key)
