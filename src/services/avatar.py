# src/services/avatar.py
"""
Жизненный цикл аватарки: GUID -> файл в хранилище -> метаданные -> связь username -> GUID.

Три хранилища независимы и общей транзакции нет, поэтому запись идет строго
по порядку, а при сбое уже выполненные шаги откатываются в обратном порядке
компенсирующими удалениями. Откат best-effort: его ошибки логируются и
считаются, но наружу всегда уходит исходная ошибка. Повторов здесь нет,
повторы транзиентных сбоев делают адаптеры.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from enum import Enum
from functools import wraps
from typing import BinaryIO, Callable, Coroutine, Dict, Iterable, Optional, ParamSpec, TypeVar

from prometheus_client import Counter

from src.core.exceptions import (
    AvatarNotFoundError,
    InvalidInputError,
    OperationCancelledError,
    RepositoryError,
    StorageError,
    UpstreamDeleteError,
    UpstreamWriteError,
)
from src.repositories.base import AvatarMetadataRepository
from src.schemas.avatar import DEFAULT_MIME_TYPE, AvatarMetadata
from src.storage.base import BlobStorage

logger = logging.getLogger(__name__)

T = TypeVar('T')
P = ParamSpec('P')

DEFAULT_PRESIGN_EXPIRE = 3600  # 1 час

CLEANUP_FAILURES = Counter(
    "avatar_cleanup_failures_total",
    "Неудачные компенсирующие и завершающие удаления",
    ["operation", "step"],
)


class AddStage(str, Enum):
    """Стадии добавления аватарки."""
    STARTED = "started"
    BLOB_WRITTEN = "blob_written"
    METADATA_WRITTEN = "metadata_written"
    MAPPING_WRITTEN = "mapping_written"


class UndoStep(str, Enum):
    BLOB = "blob"
    METADATA = "metadata"
    MAPPING = "mapping"


# Что откатывать для достигнутой стадии, в порядке выполнения
ROLLBACK_STEPS: Dict[AddStage, tuple] = {
    AddStage.STARTED: (),
    AddStage.BLOB_WRITTEN: (UndoStep.BLOB,),
    AddStage.METADATA_WRITTEN: (UndoStep.METADATA, UndoStep.BLOB),
    AddStage.MAPPING_WRITTEN: (UndoStep.MAPPING, UndoStep.METADATA, UndoStep.BLOB),
}

NEXT_STAGE = {
    AddStage.STARTED: AddStage.BLOB_WRITTEN,
    AddStage.BLOB_WRITTEN: AddStage.METADATA_WRITTEN,
    AddStage.METADATA_WRITTEN: AddStage.MAPPING_WRITTEN,
}

FAILED_STEP_MESSAGES = {
    AddStage.STARTED: "failed to upload avatar",
    AddStage.BLOB_WRITTEN: "failed to save metadata",
    AddStage.METADATA_WRITTEN: "failed to save username mapping",
}


async def run_to_completion(coro: Coroutine) -> None:
    """Доводит корутину до конца даже при отмене вызывающей задачи.

    Отмена, пришедшая во время выполнения, пробрасывается после завершения.
    """
    task = asyncio.ensure_future(coro)
    cancelled = False
    while not task.done():
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            cancelled = True
    if cancelled:
        raise asyncio.CancelledError()
    task.result()


@asynccontextmanager
async def deadline(seconds: Optional[float], operation: str):
    """Ограничивает блок по времени, по истечении бросает OperationCancelledError."""
    if not seconds:
        yield
        return

    timeout = asyncio.timeout(seconds)
    try:
        async with timeout:
            yield
    except TimeoutError as e:
        if not timeout.expired():
            raise
        logger.warning(f"{operation} cancelled after {seconds}s")
        raise OperationCancelledError(f"{operation} did not complete within {seconds}s") from e


def with_deadline(func: Callable[P, T]) -> Callable[P, T]:
    """Ограничивает операцию сервиса по времени operation_timeout."""
    @wraps(func)
    async def wrapper(self, *args: P.args, **kwargs: P.kwargs) -> T:
        async with deadline(self.operation_timeout, func.__name__):
            return await func(self, *args, **kwargs)

    return wrapper


class AvatarService:
    def __init__(
            self,
            storage: BlobStorage,
            repository: AvatarMetadataRepository,
            presign_expire: int = DEFAULT_PRESIGN_EXPIRE,
            operation_timeout: Optional[float] = None,
            retire_previous_avatar: bool = False,
    ):
        self.storage = storage
        self.repository = repository
        self.presign_expire = presign_expire
        self.operation_timeout = operation_timeout
        self.retire_previous_avatar = retire_previous_avatar

    # ========== Добавление ==========

    async def add_avatar(
            self,
            username: str,
            payload: BinaryIO,
            filename: str,
            content_type: Optional[str],
            size: int,
    ) -> str:
        """
        Добавляет новую аватарку и возвращает её GUID.
        Ограничение по времени действует только на шаги записи, откат выполняется уже без него.
        """
        if not username:
            raise InvalidInputError("username is required")
        if payload is None or not hasattr(payload, "read"):
            raise InvalidInputError("avatar file is required")
        if not isinstance(size, int) or size < 0:
            raise InvalidInputError(f"invalid avatar size: {size}")

        content_type = content_type or DEFAULT_MIME_TYPE
        guid = str(uuid.uuid4())
        stage = AddStage.STARTED
        known_guid: Optional[str] = None

        try:
            async with deadline(self.operation_timeout, "add_avatar"):
                await self.storage.upload_avatar(guid, payload, content_type, size)
                stage = AddStage.BLOB_WRITTEN

                await self.repository.set_avatar_metadata(AvatarMetadata(
                    guid=guid,
                    username=username,
                    filename=filename or "",
                    size=size,
                    mime_type=content_type,
                    uploaded_at=datetime.now(timezone.utc),
                ))
                stage = AddStage.METADATA_WRITTEN

                # Текущая связь нужна, чтобы вернуть её при откате прерванной записи
                known_guid = await self.repository.get_guid_by_username(username)
                previous_guid = await self.repository.set_guid_by_username(username, guid)
                stage = AddStage.MAPPING_WRITTEN
        except (asyncio.CancelledError, OperationCancelledError):
            # Прерванный шаг мог успеть выполниться, откатываем и его
            in_flight = NEXT_STAGE.get(stage, stage)
            logger.warning(f"Adding avatar {guid} for {username} cancelled at stage {stage.value}")
            await run_to_completion(self._rollback_add(ROLLBACK_STEPS[in_flight], guid, username, known_guid))
            raise
        except Exception as e:
            logger.error(f"{FAILED_STEP_MESSAGES[stage]} ({guid}, {username}): {e}")
            await run_to_completion(self._rollback_add(ROLLBACK_STEPS[stage], guid, username, known_guid))
            if isinstance(e, (StorageError, RepositoryError)):
                raise UpstreamWriteError(f"{FAILED_STEP_MESSAGES[stage]}: {e.message}") from e
            raise

        logger.info(f"Avatar {guid} ({size} bytes, {content_type}) saved for {username}")

        if self.retire_previous_avatar and previous_guid and previous_guid != guid:
            await run_to_completion(self._retire(previous_guid, username))

        return guid

    async def _rollback_add(
            self,
            steps: Iterable[UndoStep],
            guid: str,
            username: str,
            previous_guid: Optional[str] = None,
    ) -> None:
        for step in steps:
            try:
                if step is UndoStep.MAPPING:
                    # Трогаем связь, только если она все еще указывает на наш GUID
                    if await self.repository.get_guid_by_username(username) == guid:
                        if previous_guid:
                            await self.repository.set_guid_by_username(username, previous_guid)
                        else:
                            await self.repository.delete_username_mapping(username)
                elif step is UndoStep.METADATA:
                    await self.repository.delete_avatar_metadata(guid)
                else:
                    await self.storage.delete_avatar(guid)
                logger.info(f"Rolled back {step.value} of avatar {guid}")
            except Exception as e:
                CLEANUP_FAILURES.labels(operation="add", step=step.value).inc()
                logger.error(f"Rollback of {step.value} for avatar {guid} ({username}) failed: {e}")

    async def _retire(self, guid: str, username: str) -> None:
        """Удаляет предыдущую аватарку пользователя, ошибки не фатальны."""
        try:
            await self.storage.delete_avatar(guid)
        except Exception as e:
            CLEANUP_FAILURES.labels(operation="retire", step=UndoStep.BLOB.value).inc()
            logger.error(f"Failed to retire previous avatar {guid} of {username}: {e}")
            return

        try:
            await self.repository.delete_avatar_metadata(guid)
        except Exception as e:
            CLEANUP_FAILURES.labels(operation="retire", step=UndoStep.METADATA.value).inc()
            logger.error(f"Failed to delete metadata of retired avatar {guid}: {e}")
        else:
            logger.info(f"Previous avatar {guid} of {username} retired")

    # ========== Получение ==========

    async def _require_guid(self, username: str) -> str:
        if not username:
            raise InvalidInputError("username is required")
        guid = await self.repository.get_guid_by_username(username)
        if not guid:
            raise AvatarNotFoundError(username)
        return guid

    @with_deadline
    async def get_avatar_url(self, username: str) -> str:
        """Presigned URL аватарки пользователя. Наличие файла не проверяется."""
        guid = await self._require_guid(username)
        return await self.storage.get_avatar_presigned_url(guid, self.presign_expire)

    @with_deadline
    async def get_avatar_urls(self, usernames: Iterable[str]) -> Dict[str, str]:
        """
        URL аватарок для списка пользователей.
        Пользователи без аватарки или с ошибкой генерации URL пропускаются.
        """
        usernames = list(dict.fromkeys(username for username in usernames if username))
        if not usernames:
            raise InvalidInputError("usernames list cannot be empty")

        try:
            guids = await self.repository.get_guids_by_usernames(usernames)
        except RepositoryError as e:
            logger.error(f"Batch lookup of {len(usernames)} usernames failed: {e}")
            return {}

        urls = await asyncio.gather(
            *(self.storage.get_avatar_presigned_url(guid, self.presign_expire) for guid in guids.values()),
            return_exceptions=True,
        )

        result = {}
        for (username, guid), url in zip(guids.items(), urls):
            if isinstance(url, Exception):
                # Пропускаем ошибки генерации URL
                logger.warning(f"Skipping avatar {guid} of {username}: {url}")
                continue
            if isinstance(url, BaseException):
                raise url
            result[username] = url
        return result

    @with_deadline
    async def get_avatar_metadata(self, username: str) -> AvatarMetadata:
        guid = await self._require_guid(username)
        metadata = await self.repository.get_avatar_metadata(guid)
        if metadata is None:
            raise AvatarNotFoundError(username)
        return metadata

    # ========== Удаление ==========

    async def delete_avatar(self, username: str) -> None:
        """
        Удаляет аватарку пользователя.
        Ошибка удаления файла фатальна, ошибки удаления метаданных и связи только логируются.
        Ограничение по времени действует до удаления файла включительно.
        """
        async with deadline(self.operation_timeout, "delete_avatar"):
            guid = await self._require_guid(username)

            try:
                await self.storage.delete_avatar(guid)
            except StorageError as e:
                logger.error(f"Failed to delete avatar {guid} of {username}: {e}")
                raise UpstreamDeleteError(f"failed to delete avatar from storage: {e.message}") from e

        # Файл уже удален, доводим очистку до конца
        await run_to_completion(self._cleanup_after_delete(guid, username))
        logger.info(f"Avatar {guid} of {username} deleted")

    async def _cleanup_after_delete(self, guid: str, username: str) -> None:
        try:
            await self.repository.delete_avatar_metadata(guid)
        except Exception as e:
            CLEANUP_FAILURES.labels(operation="delete", step=UndoStep.METADATA.value).inc()
            logger.error(f"warning: failed to delete metadata of avatar {guid}: {e}")

        try:
            await self.repository.delete_username_mapping(username)
        except Exception as e:
            CLEANUP_FAILURES.labels(operation="delete", step=UndoStep.MAPPING.value).inc()
            logger.error(f"warning: failed to delete username mapping for {username}: {e}")
