"""Storage capability interface.

Only public GitHub repositories are implemented. Backends that cannot hand
out public URLs (e.g. private repositories rendered through blob URLs) plug
in behind the same protocol.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from ghimg.exceptions import ImageNotFoundError
from ghimg.models import RenderTarget, UploadResult
from ghimg.upload.orchestrator import UploadPipeline


@runtime_checkable
class StorageBackend(Protocol):
    """What a host needs from an image store."""

    async def upload_image(
        self,
        data: bytes,
        filename: str | None = None,
        mime_type: str | None = None,
    ) -> UploadResult:
        """Store *data* and return its location."""
        ...

    async def get_render_target(self, image_id: str) -> RenderTarget:
        """Resolve an uploaded image id to something the host can render."""
        ...


class PublicRepositoryStorage:
    """Images committed to a public repository and linked by download URL."""

    def __init__(self, pipeline: UploadPipeline) -> None:
        self._pipeline = pipeline

    @property
    def pipeline(self) -> UploadPipeline:
        return self._pipeline

    async def upload_image(
        self,
        data: bytes,
        filename: str | None = None,
        mime_type: str | None = None,
    ) -> UploadResult:
        return await self._pipeline.upload(data, filename, mime_type)

    async def get_render_target(self, image_id: str) -> RenderTarget:
        """Return the cached public URL for *image_id* (a content digest).

        Raises:
            ImageNotFoundError: The digest is not in the cache.
        """
        cached = self._pipeline.cache.get(image_id)
        if cached is None:
            raise ImageNotFoundError(f"Image not found in cache: {image_id}")
        return RenderTarget(type="url", value=cached.url)
