"""Upload images to a GitHub repository with content deduplication."""

__version__ = "0.1.0"

from ghimg.exceptions import UploadError
from ghimg.models import (
    CacheEntry,
    FilenameStrategy,
    RateLimitState,
    UploaderSettings,
    UploadResult,
)

__all__ = [
    "CacheEntry",
    "FilenameStrategy",
    "RateLimitState",
    "UploadError",
    "UploadResult",
    "UploaderSettings",
    "__version__",
]
