"""Host-facing entry point: bytes in, markdown image reference out."""

from __future__ import annotations

import logging
from typing import Callable

from ghimg.constants import MAX_IMAGE_BYTES
from ghimg.exceptions import ImageTooLargeError, UploadError
from ghimg.models import UploadResult
from ghimg.upload.storage import StorageBackend

logger = logging.getLogger(__name__)


def markdown_image_link(url: str) -> str:
    return f"![]({url})"


def is_image_mime(mime_type: str | None) -> bool:
    return bool(mime_type) and mime_type.lower().startswith("image/")


class ImageUploadHandler:
    """Validates payloads, uploads them and reports the markdown to insert.

    On failure nothing is returned for insertion; the caller shows the
    error's ``message`` and leaves the document untouched.

    Args:
        storage: Backend that performs the upload.
        max_bytes: Reject payloads larger than this before hashing.
        on_persist: Called after every upload that added a cache entry, so
            the host can save the cache snapshot.
    """

    def __init__(
        self,
        storage: StorageBackend,
        max_bytes: int = MAX_IMAGE_BYTES,
        on_persist: Callable[[], None] | None = None,
    ) -> None:
        self._storage = storage
        self._max_bytes = max_bytes
        self._on_persist = on_persist

    def update_storage(self, storage: StorageBackend) -> None:
        self._storage = storage

    async def upload_bytes(
        self,
        data: bytes,
        filename_hint: str | None = None,
        mime_type: str | None = None,
    ) -> UploadResult:
        """Upload one image payload.

        Raises:
            ImageTooLargeError: *data* exceeds ``max_bytes``.
            UploadError: The upload failed, or succeeded without a URL.
        """
        if len(data) > self._max_bytes:
            logger.warning(
                "Rejected %s: %d bytes exceeds limit of %d",
                filename_hint or "image",
                len(data),
                self._max_bytes,
            )
            raise ImageTooLargeError(
                f"Image too large ({len(data) / 1024 / 1024:.2f}MB). "
                f"Maximum size is {self._max_bytes / 1024 / 1024:g}MB."
            )

        result = await self._storage.upload_image(data, filename_hint, mime_type)
        if not result.url:
            raise UploadError("Upload succeeded but no URL was returned")

        if not result.deduplicated and self._on_persist is not None:
            self._on_persist()
        return result

    async def markdown_for(
        self,
        data: bytes,
        filename_hint: str | None = None,
        mime_type: str | None = None,
    ) -> str:
        """Upload *data* and return the ``![](url)`` reference to insert."""
        result = await self.upload_bytes(data, filename_hint, mime_type)
        return markdown_image_link(result.url or "")
