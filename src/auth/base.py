from abc import ABC, abstractmethod

from src.schemas.user import VerifiedUser


class IdentityVerifier(ABC):
    """Базовый класс для проверки токенов во внешнем сервисе пользователей."""

    @abstractmethod
    async def verify_token(self, token: str) -> VerifiedUser:
        """Возвращает пользователя или бросает IdentityVerificationError."""
        ...

    async def close(self) -> None:
        """Освобождает сетевые ресурсы клиента."""
        return None
