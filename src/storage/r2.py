import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any, BinaryIO, Optional

import aioboto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from src.core.exceptions import StorageError
from src.storage.base import BlobStorage

logger = logging.getLogger(__name__)

AVATAR_KEY = "avatars/{guid}"


class R2Storage(BlobStorage):
    """Хранилище аватарок в Cloudflare R2 (S3-совместимый API)."""

    def __init__(
            self,
            endpoint_url: str,
            access_key_id: str,
            secret_key: str,
            bucket_name: str,
            region: str = "auto",
            max_attempts: int = 3,
    ):
        self.endpoint_url = endpoint_url
        self.bucket_name = bucket_name
        self._session = aioboto3.Session(
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_key,
            region_name=region,
        )
        # Повторы транзиентных ошибок делает сам botocore, сервис их не видит
        self._boto_config = BotoConfig(
            signature_version="s3v4",
            retries={"max_attempts": max_attempts, "mode": "standard"},
        )
        self._exit_stack: Optional[AsyncExitStack] = None
        self.client: Any = None

    async def connect(self):
        self._exit_stack = AsyncExitStack()
        self.client = await self._exit_stack.enter_async_context(
            self._session.client("s3", endpoint_url=self.endpoint_url, config=self._boto_config)
        )
        logger.info(f"R2 client created for bucket {self.bucket_name} at {self.endpoint_url}")

    async def disconnect(self):
        if self._exit_stack:
            await self._exit_stack.aclose()
            self._exit_stack = None
            self.client = None
            logger.info("R2 client closed")

    async def upload_avatar(self, guid: str, payload: BinaryIO, content_type: str, size: int) -> None:
        # Файл из multipart может лежать на диске, читаем вне event loop
        data = await asyncio.to_thread(payload.read)
        if len(data) != size:
            raise StorageError(f"avatar {guid}: declared size {size}, got {len(data)} bytes")

        try:
            await self.client.put_object(
                Bucket=self.bucket_name,
                Key=AVATAR_KEY.format(guid=guid),
                Body=data,
                ContentType=content_type,
                ContentLength=size,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"failed to upload avatar to R2: {e}") from e

    async def get_avatar_presigned_url(self, guid: str, expires_in: int) -> str:
        try:
            return await self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": AVATAR_KEY.format(guid=guid)},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"failed to generate presigned URL: {e}") from e

    async def delete_avatar(self, guid: str) -> None:
        try:
            await self.client.delete_object(Bucket=self.bucket_name, Key=AVATAR_KEY.format(guid=guid))
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"failed to delete avatar from R2: {e}") from e

    async def avatar_exists(self, guid: str) -> bool:
        try:
            await self.client.head_object(Bucket=self.bucket_name, Key=AVATAR_KEY.format(guid=guid))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"failed to check avatar in R2: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"failed to check avatar in R2: {e}") from e
        return True
