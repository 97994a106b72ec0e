import json
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parent.parent.parent  # путь до корня проекта


class ConfigBase(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


class AppConfig(ConfigBase):
    model_config = SettingsConfigDict(env_prefix="APP_")

    environment: str = "dev"
    log_level: str = "DEBUG"
    service_name: str = "gainly-avatars"
    host: str = "0.0.0.0"
    port: int = 8080
    enable_docs: bool = True
    restrict_docs: bool = False
    allowed_ips: list[str] = ["127.0.0.1"]
    sentry_dsn: Optional[str] = None

    # Ограничение на одну операцию с аватаркой (секунды)
    operation_timeout: float = 30.0
    max_upload_size: int = 10 * 1024 * 1024  # 10MB
    # Удалять предыдущую аватарку при загрузке новой
    retire_previous_avatar: bool = False

    @property
    def is_production(self) -> bool:
        return self.environment == "prod"

    @property
    def is_development(self) -> bool:
        return self.environment in ["dev", "local"]

    @field_validator('allowed_ips', mode='before')
    def parse_json(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        return v


class RedisConfig(ConfigBase):
    model_config = SettingsConfigDict(env_prefix="REDIS_")

    url: str = "redis://localhost:6379/0"


class StorageConfig(ConfigBase):
    model_config = SettingsConfigDict(env_prefix="R2_")

    account_id: str = ""
    access_key_id: str = ""
    secret_key: SecretStr = ""
    bucket_name: str = "avatars"
    endpoint: str = ""
    region: str = "auto"
    # Время жизни presigned URL (секунды)
    presign_expire: int = 3600

    @property
    def endpoint_url(self) -> str:
        if self.endpoint:
            return self.endpoint
        return f"https://{self.account_id}.r2.cloudflarestorage.com"


class IdentityConfig(ConfigBase):
    model_config = SettingsConfigDict(env_prefix="GRPC_")

    user_service_addr: str = "localhost:50051"
    timeout: float = 10.0
    # 0 отключает кеширование проверенных токенов
    token_cache_ttl: int = 300

    @property
    def base_url(self) -> str:
        if self.user_service_addr.startswith(("http://", "https://")):
            return self.user_service_addr.rstrip("/")
        return f"https://{self.user_service_addr}".rstrip("/")


class LoggingConfig(ConfigBase):
    model_config = SettingsConfigDict(env_prefix="LOG_")

    # Настройки для Syslog
    syslog_host: str = "localhost"
    syslog_port: int = 1514
    syslog_enabled: bool = False

    # GRAYLOG
    graylog_host: str = "localhost"
    graylog_port: int = 12201
    graylog_enabled: bool = False


class Config(BaseSettings):
    app: AppConfig = Field(default_factory=AppConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls) -> "Config":
        return cls()


config = Config.load()
