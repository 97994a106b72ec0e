# src/repositories/avatar.py
import logging
from functools import wraps
from typing import Callable, Dict, Iterable, Optional, ParamSpec, TypeVar

from pydantic import ValidationError
from redis.exceptions import RedisError

from src.core.exceptions import RepositoryError
from src.redis.redis_client import RedisClient
from src.repositories.base import AvatarMetadataRepository
from src.schemas.avatar import AvatarMetadata

logger = logging.getLogger(__name__)

T = TypeVar('T')
P = ParamSpec('P')

METADATA_KEY = "avatar:{guid}"
USERNAME_KEY = "username:{username}"


def wrap_redis_errors(func: Callable[P, T]) -> Callable[P, T]:
    """Переводит ошибки redis в RepositoryError."""
    @wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await func(*args, **kwargs)
        except RedisError as e:
            logger.error(f"Redis error in {func.__name__}: {str(e)}")
            raise RepositoryError(f"{func.__name__} failed: {str(e)}") from e

    return wrapper


class RedisAvatarRepository(AvatarMetadataRepository):
    def __init__(self, redis_client: RedisClient):
        self.redis = redis_client

    @wrap_redis_errors
    async def get_guid_by_username(self, username: str) -> Optional[str]:
        return await self.redis.get(USERNAME_KEY.format(username=username))

    @wrap_redis_errors
    async def get_guids_by_usernames(self, usernames: Iterable[str]) -> Dict[str, str]:
        keys = {USERNAME_KEY.format(username=username): username for username in usernames}
        values = await self.redis.get_many(keys)
        # Пропускаем не найденные username
        return {keys[key]: guid for key, guid in values.items() if guid}

    @wrap_redis_errors
    async def set_guid_by_username(self, username: str, guid: str) -> Optional[str]:
        return await self.redis.swap(USERNAME_KEY.format(username=username), guid)

    @wrap_redis_errors
    async def delete_username_mapping(self, username: str) -> None:
        await self.redis.delete(USERNAME_KEY.format(username=username))

    @wrap_redis_errors
    async def get_avatar_metadata(self, guid: str) -> Optional[AvatarMetadata]:
        data = await self.redis.get(METADATA_KEY.format(guid=guid))
        if data is None:
            return None
        try:
            return AvatarMetadata.model_validate_json(data)
        except ValidationError as e:
            raise RepositoryError(f"corrupted metadata for avatar {guid}") from e

    @wrap_redis_errors
    async def set_avatar_metadata(self, metadata: AvatarMetadata) -> None:
        await self.redis.set(METADATA_KEY.format(guid=metadata.guid), metadata.model_dump_json())

    @wrap_redis_errors
    async def delete_avatar_metadata(self, guid: str) -> None:
        await self.redis.delete(METADATA_KEY.format(guid=guid))
