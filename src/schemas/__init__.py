from .avatar import (
    DEFAULT_MIME_TYPE,
    AvatarMetadata,
    AvatarsRequest,
    AvatarsResponse,
    AvatarUploadResponse,
    AvatarUrlResponse,
    UploadAvatarFromUrlRequest,
)
from .user import VerifiedUser
