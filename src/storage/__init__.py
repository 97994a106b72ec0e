from .base import BlobStorage
from .r2 import R2Storage

__all__ = ["BlobStorage", "R2Storage"]
