from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

from src.schemas.avatar import AvatarMetadata


class AvatarMetadataRepository(ABC):
    """Хранилище метаданных аватарок и связей username -> GUID.

    Все методы при сбое хранилища бросают RepositoryError.
    """

    @abstractmethod
    async def get_guid_by_username(self, username: str) -> Optional[str]:
        """GUID текущей аватарки пользователя или None."""
        ...

    @abstractmethod
    async def get_guids_by_usernames(self, usernames: Iterable[str]) -> Dict[str, str]:
        """GUID для каждого найденного username, ненайденные пропускаются."""
        ...

    @abstractmethod
    async def set_guid_by_username(self, username: str, guid: str) -> Optional[str]:
        """Записывает связь и возвращает GUID, на который она указывала раньше."""
        ...

    @abstractmethod
    async def delete_username_mapping(self, username: str) -> None:
        ...

    @abstractmethod
    async def get_avatar_metadata(self, guid: str) -> Optional[AvatarMetadata]:
        ...

    @abstractmethod
    async def set_avatar_metadata(self, metadata: AvatarMetadata) -> None:
        ...

    @abstractmethod
    async def delete_avatar_metadata(self, guid: str) -> None:
        ...
