import hashlib
import logging
from typing import Optional

from pydantic import ValidationError
from redis.exceptions import RedisError

from src.redis.redis_client import RedisClient
from src.schemas.user import VerifiedUser

logger = logging.getLogger(__name__)


def _token_key(token: str) -> str:
    # Сам токен в Redis не храним
    return f"token:{hashlib.sha256(token.encode('utf-8')).hexdigest()}"


async def get_user_from_redis(redis_client: RedisClient, token: str) -> Optional[VerifiedUser]:
    """Пользователь из кеша проверенных токенов или None."""
    if not token:
        return None
    try:
        data = await redis_client.get(_token_key(token))
        if not data:
            return None
        return VerifiedUser.model_validate_json(data)
    except (RedisError, ValidationError) as e:
        logger.warning(f"Token cache read failed: {e}")
        return None


async def add_user_to_redis(redis_client: RedisClient, token: str, user: VerifiedUser, ttl: int) -> None:
    if ttl <= 0:
        return
    try:
        await redis_client.set(_token_key(token), user.model_dump_json(), expire=ttl)
    except RedisError as e:
        logger.warning(f"Token cache write failed: {e}")
