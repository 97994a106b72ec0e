import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.auth.base import IdentityVerifier
from src.config import config
from src.core.dependencies import get_identity_verifier, get_redis_client
from src.core.exceptions import IdentityVerificationError
from src.redis.redis_client import RedisClient
from src.redis.utils import add_user_to_redis, get_user_from_redis
from src.schemas.user import VerifiedUser

logger = logging.getLogger(__name__)

# Схема нужна для кнопки Authorize в документации, заголовок разбираем сами
http_bearer = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def extract_token(auth_header: Optional[str]) -> str:
    """
    Достает токен из заголовка Authorization.
    Поддерживаются форматы "Bearer <token>" и просто "<token>",
    кавычки в любом месте заголовка удаляются.
    """
    if not auth_header:
        raise _unauthorized("Authorization header required")

    auth_header = auth_header.replace('"', "").strip()
    if auth_header.startswith("Bearer "):
        token = auth_header[len("Bearer "):]
    else:
        token = auth_header

    token = token.replace('"', "").strip()
    if not token:
        raise _unauthorized("Token is empty")
    return token


async def get_current_user(
        request: Request,
        _: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
        verifier: IdentityVerifier = Depends(get_identity_verifier),
        redis_client: RedisClient = Depends(get_redis_client),
) -> VerifiedUser:
    """Dependency для проверки токена и получения текущего пользователя."""
    token = extract_token(request.headers.get("Authorization"))

    user = await get_user_from_redis(redis_client, token)
    if user:
        logger.debug(f"User {user.username} taken from token cache")
        request.state.username = user.username
        return user

    try:
        user = await verifier.verify_token(token)
    except IdentityVerificationError as e:
        logger.warning(f"Token validation failed: {e.message}")
        raise _unauthorized(f"Token validation failed: {e.message}")

    await add_user_to_redis(redis_client, token, user, config.identity.token_cache_ttl)
    logger.debug(f"Authenticated user: id={user.id}, username={user.username}")
    # Для RequestLoggingMiddleware
    request.state.username = user.username
    return user
