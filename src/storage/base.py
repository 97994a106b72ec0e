from abc import ABC, abstractmethod
from typing import BinaryIO


class BlobStorage(ABC):
    """Хранилище байтов аватарок, адресуемых по GUID.

    Все методы при сбое хранилища бросают StorageError.
    """

    @abstractmethod
    async def upload_avatar(self, guid: str, payload: BinaryIO, content_type: str, size: int) -> None:
        """Записывает payload целиком под ключом GUID."""
        ...

    @abstractmethod
    async def get_avatar_presigned_url(self, guid: str, expires_in: int) -> str:
        """Временная ссылка на чтение, существование объекта не проверяется."""
        ...

    @abstractmethod
    async def delete_avatar(self, guid: str) -> None:
        ...

    @abstractmethod
    async def avatar_exists(self, guid: str) -> bool:
        ...
