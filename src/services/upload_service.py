# src/services/upload_service.py
import io
import logging
import os
from dataclasses import dataclass
from typing import BinaryIO, Optional
from urllib.parse import unquote, urlparse

import httpx
from starlette.datastructures import UploadFile

from src.core.exceptions import InvalidInputError, PayloadTooLargeError, RemoteFetchError
from src.schemas.avatar import DEFAULT_MIME_TYPE

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_FILENAME = "avatar.jpg"


@dataclass
class PreparedUpload:
    """Файл, готовый к передаче в AvatarService.add_avatar."""
    payload: BinaryIO
    filename: str
    content_type: str
    size: int


def _content_type(value: Optional[str]) -> str:
    value = (value or "").split(";")[0].strip()
    return value or DEFAULT_MIME_TYPE


def prepare_multipart_upload(file: Optional[UploadFile], max_size: int) -> PreparedUpload:
    """Подготовка загруженного через multipart файла."""
    if file is None:
        raise InvalidInputError("Failed to get file from form")

    stream = file.file
    size = file.size
    if size is None:
        stream.seek(0, os.SEEK_END)
        size = stream.tell()
    stream.seek(0)

    if size > max_size:
        raise PayloadTooLargeError(f"file is too large: {size} bytes, limit {max_size}")

    return PreparedUpload(
        payload=stream,
        filename=file.filename or "",
        content_type=_content_type(file.content_type),
        size=size,
    )


def filename_from_url(url: str) -> str:
    name = os.path.basename(unquote(urlparse(url).path))
    return name or DEFAULT_REMOTE_FILENAME


async def fetch_remote_image(client: httpx.AsyncClient, url: str, max_size: int) -> PreparedUpload:
    """Скачивает изображение по URL (например Telegram File API) в память."""
    buffer = io.BytesIO()
    try:
        async with client.stream("GET", url, follow_redirects=True) as response:
            if response.status_code != 200:
                logger.warning(f"Remote server returned {response.status_code} for {url}")
                raise RemoteFetchError("Remote server returned error")

            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > max_size:
                raise PayloadTooLargeError(f"remote file is too large: {declared} bytes, limit {max_size}")

            async for chunk in response.aiter_bytes():
                buffer.write(chunk)
                if buffer.tell() > max_size:
                    raise PayloadTooLargeError(f"remote file exceeds limit of {max_size} bytes")

            content_type = _content_type(response.headers.get("content-type"))
    except httpx.HTTPError as e:
        logger.warning(f"Failed to download {url}: {e}")
        raise RemoteFetchError("Failed to download file") from e

    size = buffer.tell()
    buffer.seek(0)
    logger.debug(f"Downloaded {size} bytes ({content_type}) from {url}")
    return PreparedUpload(
        payload=buffer,
        filename=filename_from_url(url),
        content_type=content_type,
        size=size,
    )
