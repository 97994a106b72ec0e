# src/api/endpoints/avatars.py
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from starlette import status
from starlette.responses import Response

from src.api.deps import get_current_user
from src.config import config
from src.core.dependencies import get_avatar_service, get_http_client
from src.core.exceptions import (
    AvatarNotFoundError,
    BaseApplicationError,
    InvalidInputError,
    OperationCancelledError,
    PayloadTooLargeError,
)
from src.schemas.avatar import (
    AvatarMetadata,
    AvatarsRequest,
    AvatarsResponse,
    AvatarUploadResponse,
    AvatarUrlResponse,
    UploadAvatarFromUrlRequest,
)
from src.schemas.user import VerifiedUser
from src.services.avatar import AvatarService
from src.services.upload_service import fetch_remote_image, prepare_multipart_upload

logger = logging.getLogger(__name__)

router = APIRouter()


def to_http_exception(error: BaseApplicationError) -> HTTPException:
    """Переводит ошибку сервиса в HTTP-ответ."""
    if isinstance(error, AvatarNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)
    if isinstance(error, PayloadTooLargeError):
        return HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=error.message)
    if isinstance(error, InvalidInputError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.message)
    if isinstance(error, OperationCancelledError):
        return HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=error.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.message)


@router.post(
    "/avatar",
    summary="Загрузить аватарку",
    description="Загружает новую аватарку для текущего пользователя (multipart, поле `avatar`).",
    response_model=AvatarUploadResponse,
    status_code=status.HTTP_200_OK,
)
async def add_avatar(
        avatar: Optional[UploadFile] = File(None, description="Файл аватарки"),
        user: VerifiedUser = Depends(get_current_user),
        avatar_service: AvatarService = Depends(get_avatar_service),
):
    """Загружает файл в хранилище и возвращает GUID аватарки."""
    try:
        upload = prepare_multipart_upload(avatar, config.app.max_upload_size)
        guid = await avatar_service.add_avatar(
            user.username,
            upload.payload,
            upload.filename,
            upload.content_type,
            upload.size,
        )
        return AvatarUploadResponse(guid=guid)
    except BaseApplicationError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.exception(f"Ошибка при загрузке аватарки для {user.username}: {e}")
        raise HTTPException(status_code=500, detail="Ошибка при загрузке аватарки")


@router.post(
    "/avatar/url",
    summary="Загрузить аватарку по URL",
    description="Скачивает изображение по внешнему URL (например Telegram File API) и сохраняет как аватарку.",
    response_model=AvatarUploadResponse,
    status_code=status.HTTP_200_OK,
)
async def upload_avatar_from_url(
        req: UploadAvatarFromUrlRequest,
        user: VerifiedUser = Depends(get_current_user),
        avatar_service: AvatarService = Depends(get_avatar_service),
        http_client: httpx.AsyncClient = Depends(get_http_client),
):
    try:
        upload = await fetch_remote_image(http_client, str(req.url), config.app.max_upload_size)
        guid = await avatar_service.add_avatar(
            user.username,
            upload.payload,
            upload.filename,
            upload.content_type,
            upload.size,
        )
        return AvatarUploadResponse(guid=guid)
    except BaseApplicationError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.exception(f"Ошибка при загрузке аватарки по URL для {user.username}: {e}")
        raise HTTPException(status_code=500, detail="Ошибка при загрузке аватарки")


@router.get(
    "/avatar",
    summary="Получить аватарку по username",
    description="Возвращает URL аватарки указанного пользователя.",
    response_model=AvatarUrlResponse,
)
async def get_avatar(
        username: str = Query("", description="Имя пользователя"),
        user: VerifiedUser = Depends(get_current_user),
        avatar_service: AvatarService = Depends(get_avatar_service),
):
    if not username:
        raise HTTPException(status_code=400, detail="username is required")
    try:
        url = await avatar_service.get_avatar_url(username)
        return AvatarUrlResponse(url=url)
    except BaseApplicationError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.exception(f"Ошибка при получении аватарки {username}: {e}")
        raise HTTPException(status_code=500, detail="Ошибка при получении аватарки")


@router.post(
    "/avatars",
    summary="Получить аватарки по списку username",
    description="Возвращает карту username -> URL. Пользователи без аватарки пропускаются. Без авторизации.",
    response_model=AvatarsResponse,
)
async def get_avatars_by_usernames(
        req: AvatarsRequest,
        avatar_service: AvatarService = Depends(get_avatar_service),
):
    if not req.usernames:
        raise HTTPException(status_code=400, detail="Usernames list cannot be empty")
    try:
        return await avatar_service.get_avatar_urls(req.usernames)
    except BaseApplicationError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.exception(f"Ошибка при получении списка аватарок: {e}")
        raise HTTPException(status_code=500, detail="Ошибка при получении аватарок")


@router.get(
    "/avatar/me",
    summary="Получить свою аватарку",
    description="Возвращает URL аватарки текущего пользователя.",
    response_model=AvatarUrlResponse,
)
async def get_my_avatar(
        user: VerifiedUser = Depends(get_current_user),
        avatar_service: AvatarService = Depends(get_avatar_service),
):
    try:
        url = await avatar_service.get_avatar_url(user.username)
        return AvatarUrlResponse(url=url)
    except BaseApplicationError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.exception(f"Ошибка при получении аватарки {user.username}: {e}")
        raise HTTPException(status_code=500, detail="Ошибка при получении аватарки")


@router.get(
    "/avatar/me/info",
    summary="Метаданные своей аватарки",
    response_model=AvatarMetadata,
)
async def get_my_avatar_info(
        user: VerifiedUser = Depends(get_current_user),
        avatar_service: AvatarService = Depends(get_avatar_service),
):
    try:
        return await avatar_service.get_avatar_metadata(user.username)
    except BaseApplicationError as e:
        raise to_http_exception(e)


@router.delete(
    "/avatar/me",
    summary="Удалить свою аватарку",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
async def delete_my_avatar(
        user: VerifiedUser = Depends(get_current_user),
        avatar_service: AvatarService = Depends(get_avatar_service),
):
    try:
        await avatar_service.delete_avatar(user.username)
    except BaseApplicationError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.exception(f"Ошибка при удалении аватарки {user.username}: {e}")
        raise HTTPException(status_code=500, detail="Ошибка при удалении аватарки")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
