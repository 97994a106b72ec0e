"""
Общие фикстуры и in-memory реализации хранилищ для тестов.
"""
import os
import sys
from pathlib import Path
from typing import BinaryIO, Dict, Iterable, Optional

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

# Окружение для тестов задаем до импорта приложения
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_LOG_LEVEL", "INFO")
os.environ.setdefault("LOG_GRAYLOG_ENABLED", "false")
os.environ.setdefault("LOG_SYSLOG_ENABLED", "false")
os.environ.setdefault("GRPC_TOKEN_CACHE_TTL", "300")

from src.core.exceptions import RepositoryError, StorageError  # noqa: E402
from src.repositories.base import AvatarMetadataRepository  # noqa: E402
from src.schemas.avatar import AvatarMetadata  # noqa: E402
from src.services.avatar import AvatarService  # noqa: E402
from src.storage.base import BlobStorage  # noqa: E402

PRESIGN_PREFIX = "https://r2.test/avatars/"


class InMemoryBlobStorage(BlobStorage):
    """Хранилище файлов в памяти. fail_on: upload, presign, delete, exists."""

    def __init__(self):
        self.objects: Dict[str, tuple] = {}
        self.fail_on: set = set()
        self.presign_fail_guids: set = set()
        self.calls: list = []

    def _maybe_fail(self, operation: str):
        if operation in self.fail_on:
            raise StorageError(f"{operation} failed (injected)")

    async def upload_avatar(self, guid: str, payload: BinaryIO, content_type: str, size: int) -> None:
        self.calls.append(("upload", guid))
        self._maybe_fail("upload")
        data = payload.read()
        if len(data) != size:
            raise StorageError("size mismatch")
        self.objects[guid] = (data, content_type)

    async def get_avatar_presigned_url(self, guid: str, expires_in: int) -> str:
        self.calls.append(("presign", guid))
        self._maybe_fail("presign")
        if guid in self.presign_fail_guids:
            raise StorageError(f"cannot presign {guid}")
        return f"{PRESIGN_PREFIX}{guid}?X-Amz-Expires={expires_in}"

    async def delete_avatar(self, guid: str) -> None:
        self.calls.append(("delete", guid))
        self._maybe_fail("delete")
        self.objects.pop(guid, None)

    async def avatar_exists(self, guid: str) -> bool:
        self._maybe_fail("exists")
        return guid in self.objects

    def fetch(self, url: str) -> tuple:
        """Аналог перехода по presigned URL: (bytes, content_type)."""
        assert url.startswith(PRESIGN_PREFIX)
        guid = url[len(PRESIGN_PREFIX):].split("?", 1)[0]
        return self.objects[guid]


class InMemoryAvatarRepository(AvatarMetadataRepository):
    """
    Метаданные и связи в памяти.
    fail_on: get_mapping, batch, set_mapping, delete_mapping, get_metadata, set_metadata, delete_metadata.
    """

    def __init__(self):
        self.metadata: Dict[str, AvatarMetadata] = {}
        self.mappings: Dict[str, str] = {}
        self.fail_on: set = set()
        self.calls: list = []

    def _maybe_fail(self, operation: str):
        if operation in self.fail_on:
            raise RepositoryError(f"{operation} failed (injected)")

    async def get_guid_by_username(self, username: str) -> Optional[str]:
        self.calls.append(("get_mapping", username))
        self._maybe_fail("get_mapping")
        return self.mappings.get(username)

    async def get_guids_by_usernames(self, usernames: Iterable[str]) -> Dict[str, str]:
        usernames = list(usernames)
        self.calls.append(("batch", tuple(usernames)))
        self._maybe_fail("batch")
        return {username: self.mappings[username] for username in usernames if username in self.mappings}

    async def set_guid_by_username(self, username: str, guid: str) -> Optional[str]:
        self.calls.append(("set_mapping", username))
        self._maybe_fail("set_mapping")
        previous = self.mappings.get(username)
        self.mappings[username] = guid
        return previous

    async def delete_username_mapping(self, username: str) -> None:
        self.calls.append(("delete_mapping", username))
        self._maybe_fail("delete_mapping")
        self.mappings.pop(username, None)

    async def get_avatar_metadata(self, guid: str) -> Optional[AvatarMetadata]:
        self.calls.append(("get_metadata", guid))
        self._maybe_fail("get_metadata")
        return self.metadata.get(guid)

    async def set_avatar_metadata(self, metadata: AvatarMetadata) -> None:
        self.calls.append(("set_metadata", metadata.guid))
        self._maybe_fail("set_metadata")
        self.metadata[metadata.guid] = metadata

    async def delete_avatar_metadata(self, guid: str) -> None:
        self.calls.append(("delete_metadata", guid))
        self._maybe_fail("delete_metadata")
        self.metadata.pop(guid, None)


class FakeRedisClient:
    """Подмена src.redis.RedisClient поверх словаря."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.expires: Dict[str, Optional[int]] = {}

    async def set(self, key: str, value: str, expire: int = None) -> None:
        self.data[key] = value
        self.expires[key] = expire

    async def swap(self, key: str, value: str) -> Optional[str]:
        previous = self.data.get(key)
        self.data[key] = value
        return previous

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def get_many(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        return {key: self.data.get(key) for key in keys}

    async def delete(self, key: str) -> int:
        return 1 if self.data.pop(key, None) is not None else 0


@pytest.fixture
def storage() -> InMemoryBlobStorage:
    return InMemoryBlobStorage()


@pytest.fixture
def repository() -> InMemoryAvatarRepository:
    return InMemoryAvatarRepository()


@pytest.fixture
def fake_redis() -> FakeRedisClient:
    return FakeRedisClient()


@pytest.fixture
def avatar_service(storage, repository) -> AvatarService:
    return AvatarService(storage=storage, repository=repository, presign_expire=3600)
