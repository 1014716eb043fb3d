"""Upload orchestrator composing hashing, deduplication, naming and the write path.

Each upload is a linear sequence::

    hash -> cache check -+-> hit: return cached location
                         +-> miss: derive name/path -> quota check -+-> blocked: raise
                                                                    +-> write -> cache -> return

No step is retried and the cache is only touched after GitHub confirmed
the write, so an abandoned or failed upload leaves it unchanged.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from ghimg.exceptions import RateLimitExceededError, UploadError
from ghimg.models import RateLimitState, UploaderSettings, UploadResult
from ghimg.upload.cache import DeduplicationCache
from ghimg.upload.client import GitHubContentsClient
from ghimg.upload.fsm import UploadLifecycleSM, create_upload_fsm
from ghimg.upload.hashing import compute_content_digest
from ghimg.upload.naming import derive_filename, expand_path_template
from ghimg.upload.rate_limiter import RateLimitTracker

logger = logging.getLogger(__name__)


class UploadPipeline:
    """Main upload engine for a single GitHub repository.

    Usage::

        tracker = RateLimitTracker(settings.rate_limit_warning_threshold)
        client = GitHubContentsClient(tracker)
        pipeline = UploadPipeline(settings, DeduplicationCache(), client, tracker)
        result = await pipeline.upload(data, "screenshot.png", "image/png")

    Concurrent calls are allowed. Uploads of the same content are
    serialized on a per-digest lock, so identical bytes pasted twice in
    quick succession produce one write and one cache hit.

    Args:
        settings: Read-only settings snapshot.
        cache: Deduplication cache shared with the host's persistence.
        client: GitHub contents API client.
        rate_limiter: Quota tracker consulted before each write. Must be the
            tracker the client reports responses to.
    """

    def __init__(
        self,
        settings: UploaderSettings,
        cache: DeduplicationCache,
        client: GitHubContentsClient,
        rate_limiter: RateLimitTracker,
    ) -> None:
        self._settings = settings
        self._cache = cache
        self._client = client
        self._rate_limiter = rate_limiter
        self._rate_limiter.set_warning_threshold(settings.rate_limit_warning_threshold)

        self._digest_locks: dict[str, asyncio.Lock] = {}
        self._digest_waiters: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def settings(self) -> UploaderSettings:
        return self._settings

    @property
    def cache(self) -> DeduplicationCache:
        return self._cache

    @property
    def client(self) -> GitHubContentsClient:
        return self._client

    @property
    def rate_limit_state(self) -> RateLimitState | None:
        return self._rate_limiter.state

    def update_settings(self, settings: UploaderSettings) -> None:
        """Swap in a fresh settings snapshot."""
        self._settings = settings
        self._rate_limiter.set_warning_threshold(settings.rate_limit_warning_threshold)

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def upload(
        self,
        data: bytes,
        original_filename: str | None = None,
        mime_type: str | None = None,
    ) -> UploadResult:
        """Upload *data* unless identical content is already cached.

        Args:
            data: Raw image bytes.
            original_filename: Name hint for the ``preserve`` strategy and
                for extension detection.
            mime_type: MIME type used when the name has no extension.

        Returns:
            The uploaded (or previously uploaded) location.

        Raises:
            RateLimitExceededError: The tracked quota is exhausted.
            UploadError: Any classified write failure, unchanged.
        """
        started = time.perf_counter()
        settings = self._settings
        fsm = create_upload_fsm()

        digest = compute_content_digest(data)
        fsm.hashed()

        async with self._digest_lock(digest):
            result = await self._upload_locked(fsm, settings, digest, data, original_filename, mime_type)

        logger.debug(
            "Upload of %s finished as %s in %.2fms",
            digest,
            fsm.current_state.id,
            (time.perf_counter() - started) * 1000,
        )
        return result

    async def _upload_locked(
        self,
        fsm: UploadLifecycleSM,
        settings: UploaderSettings,
        digest: str,
        data: bytes,
        original_filename: str | None,
        mime_type: str | None,
    ) -> UploadResult:
        # Step 1: duplicate check (no network, no quota check on hit)
        if settings.enable_duplicate_detection:
            cached = self._cache.get(digest)
            if cached is not None:
                fsm.cache_hit()
                logger.info("Cache hit: reusing existing image %s at %s", digest, cached.path)
                return UploadResult(id=digest, path=cached.path, url=cached.url, deduplicated=True)

        # Step 2: destination name and path
        try:
            filename = derive_filename(
                settings.filename_strategy, digest, original_filename, mime_type
            )
            path = expand_path_template(settings.upload_path, filename)
        except UploadError:
            fsm.prepare_failed()
            raise
        fsm.cache_miss()

        # Step 3: quota gate
        if not self._rate_limiter.can_proceed():
            fsm.quota_exhausted()
            state = self._rate_limiter.state
            raise RateLimitExceededError(
                "GitHub API rate limit exceeded. Please wait until the limit resets.",
                state=state,
            )
        fsm.quota_ok()

        # Step 4: write
        try:
            written = await self._client.write_file(
                owner=settings.repo_owner,
                repo=settings.repo_name,
                path=path,
                content=data,
                message=f"Upload image: {filename}",
                branch=settings.branch,
                token=settings.github_token,
            )
        except UploadError as exc:
            fsm.write_failed()
            logger.error("Upload of %s to %s failed: %s", digest, path, exc.message)
            raise
        fsm.write_succeeded()

        # Step 5: remember the location
        if settings.enable_duplicate_detection and written.url:
            self._cache.put(digest, written.url, written.path)
        fsm.recorded()

        return UploadResult(id=digest, path=written.path, url=written.url)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _digest_lock(self, digest: str) -> AsyncIterator[None]:
        """Serialize uploads of the same digest; drop the lock when idle."""
        lock = self._digest_locks.setdefault(digest, asyncio.Lock())
        self._digest_waiters[digest] = self._digest_waiters.get(digest, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._digest_waiters[digest] -= 1
            if self._digest_waiters[digest] == 0:
                del self._digest_waiters[digest]
                del self._digest_locks[digest]
