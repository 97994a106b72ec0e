from typing import Optional


class BaseApplicationError(Exception):
    """Базовый класс для ошибок приложения"""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ---------- Ошибки адаптеров ----------

class StorageError(BaseApplicationError):
    """Ошибка объектного хранилища (R2/S3)"""
    pass


class RepositoryError(BaseApplicationError):
    """Ошибка хранилища метаданных (Redis)"""
    pass


class IdentityVerificationError(BaseApplicationError):
    """Токен не прошел проверку в сервисе пользователей"""
    pass


# ---------- Ошибки сервиса аватарок ----------

class AvatarServiceError(BaseApplicationError):
    """Базовый класс для ошибок операций с аватарками"""
    pass


class AvatarNotFoundError(AvatarServiceError):
    """Ошибка: для пользователя нет аватарки"""

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"avatar not found for username: {username}", {"username": username})


class InvalidInputError(AvatarServiceError):
    """Некорректные входные данные, внешние вызовы не выполнялись"""
    pass


class PayloadTooLargeError(InvalidInputError):
    """Файл больше допустимого размера"""
    pass


class RemoteFetchError(InvalidInputError):
    """Не удалось скачать изображение по URL"""
    pass


class UpstreamWriteError(AvatarServiceError):
    """Не удалось записать файл, метаданные или связь username -> GUID"""
    pass


class UpstreamDeleteError(AvatarServiceError):
    """Не удалось удалить файл из хранилища"""
    pass


class OperationCancelledError(AvatarServiceError):
    """Операция прервана по таймауту до завершения"""
    pass
