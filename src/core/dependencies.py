# src/core/dependencies.py
"""
Контейнер зависимостей для управления жизненным циклом сервисов.
Подключения к Redis, R2 и сервису пользователей создаются один раз при старте
и используются всеми запросами.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx

from src.auth.base import IdentityVerifier
from src.auth.providers.grpc_web import GrpcWebIdentityVerifier
from src.config import Config, config
from src.redis.redis_client import RedisClient
from src.repositories.avatar import RedisAvatarRepository
from src.services.avatar import AvatarService
from src.storage.r2 import R2Storage

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Контейнер для всех сервисов приложения"""

    def __init__(self, settings: Config = config):
        self.settings = settings

        # Инициализируем как None, создание происходит в startup
        self._redis_client: Optional[RedisClient] = None
        self._storage: Optional[R2Storage] = None
        self._identity_verifier: Optional[IdentityVerifier] = None
        self._http_client: Optional[httpx.AsyncClient] = None
        self._avatar_service: Optional[AvatarService] = None

        self._initialized = False

    async def startup(self):
        """Инициализация всех сервисов при старте приложения"""
        if self._initialized:
            return

        self._redis_client = RedisClient(url=self.settings.redis.url)
        await self._redis_client.connect()

        storage_config = self.settings.storage
        self._storage = R2Storage(
            endpoint_url=storage_config.endpoint_url,
            access_key_id=storage_config.access_key_id,
            secret_key=storage_config.secret_key.get_secret_value(),
            bucket_name=storage_config.bucket_name,
            region=storage_config.region,
        )
        await self._storage.connect()

        self._identity_verifier = GrpcWebIdentityVerifier(
            base_url=self.settings.identity.base_url,
            timeout=self.settings.identity.timeout,
        )

        # Клиент для скачивания аватарок по URL
        self._http_client = httpx.AsyncClient(timeout=self.settings.app.operation_timeout)

        self._avatar_service = AvatarService(
            storage=self._storage,
            repository=RedisAvatarRepository(self._redis_client),
            presign_expire=storage_config.presign_expire,
            operation_timeout=self.settings.app.operation_timeout,
            retire_previous_avatar=self.settings.app.retire_previous_avatar,
        )

        self._initialized = True
        logger.info("Service container started")

    async def shutdown(self):
        """Корректное завершение работы всех сервисов, в обратном порядке"""
        if self._http_client:
            await self._http_client.aclose()
        if self._identity_verifier:
            await self._identity_verifier.close()
        if self._storage:
            await self._storage.disconnect()
        if self._redis_client:
            await self._redis_client.disconnect()

        self._avatar_service = None
        self._initialized = False
        logger.info("Service container stopped")

    # Геттеры для сервисов с проверкой инициализации
    @property
    def redis_client(self) -> RedisClient:
        if not self._redis_client:
            raise RuntimeError("Redis client not initialized. Call startup() first.")
        return self._redis_client

    @property
    def identity_verifier(self) -> IdentityVerifier:
        if not self._identity_verifier:
            raise RuntimeError("Identity verifier not initialized. Call startup() first.")
        return self._identity_verifier

    @property
    def http_client(self) -> httpx.AsyncClient:
        if not self._http_client:
            raise RuntimeError("HTTP client not initialized. Call startup() first.")
        return self._http_client

    @property
    def avatar_service(self) -> AvatarService:
        if not self._avatar_service:
            raise RuntimeError("Avatar service not initialized. Call startup() first.")
        return self._avatar_service


# Глобальный экземпляр контейнера
_service_container: Optional[ServiceContainer] = None


def get_service_container() -> ServiceContainer:
    """Получить экземпляр контейнера сервисов"""
    global _service_container
    if _service_container is None:
        _service_container = ServiceContainer()
    return _service_container


# FastAPI Dependencies
async def get_redis_client() -> RedisClient:
    return get_service_container().redis_client


async def get_identity_verifier() -> IdentityVerifier:
    return get_service_container().identity_verifier


async def get_http_client() -> httpx.AsyncClient:
    return get_service_container().http_client


async def get_avatar_service() -> AvatarService:
    return get_service_container().avatar_service


@asynccontextmanager
async def service_lifespan():
    """Контекстный менеджер для управления жизненным циклом сервисов"""
    container = get_service_container()

    await container.startup()
    try:
        yield container
    finally:
        await container.shutdown()
