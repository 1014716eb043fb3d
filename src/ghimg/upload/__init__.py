"""Upload pipeline for images committed to a GitHub repository.

Public API
----------
.. autoclass:: UploadPipeline
.. autoclass:: DeduplicationCache
.. autoclass:: RateLimitTracker
.. autoclass:: GitHubContentsClient
.. autoclass:: PublicRepositoryStorage
.. autoclass:: ImageUploadHandler
"""

from ghimg.upload.cache import DeduplicationCache
from ghimg.upload.client import GitHubContentsClient, WriteResult, classify_response
from ghimg.upload.fsm import UploadLifecycleSM, create_upload_fsm
from ghimg.upload.handler import ImageUploadHandler, is_image_mime, markdown_image_link
from ghimg.upload.hashing import compute_content_digest
from ghimg.upload.naming import derive_filename, expand_path_template, resolve_extension
from ghimg.upload.orchestrator import UploadPipeline
from ghimg.upload.rate_limiter import RateLimitEvent, RateLimitTracker
from ghimg.upload.storage import PublicRepositoryStorage, StorageBackend

__all__ = [
    "DeduplicationCache",
    "GitHubContentsClient",
    "ImageUploadHandler",
    "PublicRepositoryStorage",
    "RateLimitEvent",
    "RateLimitTracker",
    "StorageBackend",
    "UploadLifecycleSM",
    "UploadPipeline",
    "WriteResult",
    "classify_response",
    "compute_content_digest",
    "create_upload_fsm",
    "derive_filename",
    "expand_path_template",
    "is_image_mime",
    "markdown_image_link",
    "resolve_extension",
]
