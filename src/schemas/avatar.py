from datetime import datetime
from typing import Dict, List

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field

DEFAULT_MIME_TYPE = "application/octet-stream"


class AvatarMetadata(BaseModel):
    """Метаданные аватарки, хранятся в Redis по ключу avatar:<guid>."""
    guid: str
    username: str
    filename: str
    size: int = Field(ge=0)
    mime_type: str = DEFAULT_MIME_TYPE
    uploaded_at: datetime

    model_config = ConfigDict(frozen=True)


class AvatarUploadResponse(BaseModel):
    guid: str = Field(..., description="GUID загруженной аватарки")


class AvatarUrlResponse(BaseModel):
    url: str = Field(..., description="Presigned URL аватарки")


class AvatarsRequest(BaseModel):
    usernames: List[str] = Field(default_factory=list, description="Список username")

    model_config = ConfigDict(
        json_schema_extra={"examples": [{"usernames": ["user1", "user2"]}]}
    )


AvatarsResponse = Dict[str, str]


class UploadAvatarFromUrlRequest(BaseModel):
    url: AnyHttpUrl = Field(..., description="URL изображения")

    model_config = ConfigDict(
        json_schema_extra={"examples": [{"url": "https://t.me/i/userpic/320/user.jpg"}]}
    )
