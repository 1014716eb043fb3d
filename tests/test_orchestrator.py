"""Tests for UploadPipeline: deduplication, the quota gate and failure handling.

Groups:
  - Happy path and idempotence
  - Naming through settings
  - Rate limit gate
  - Failures leave the cache unchanged
  - Concurrency
"""

from __future__ import annotations

import asyncio
from dataclasses import replace

import httpx
import pytest

from ghimg.exceptions import (
    InvalidCredentialError,
    RateLimitExceededError,
    RemoteUnavailableError,
    RepositoryNotFoundError,
    TransportFailureError,
)
from ghimg.models import FilenameStrategy
from ghimg.upload.cache import DeduplicationCache
from ghimg.upload.client import GitHubContentsClient
from ghimg.upload.hashing import compute_content_digest
from ghimg.upload.orchestrator import UploadPipeline
from ghimg.upload.rate_limiter import RateLimitTracker

from conftest import error_response, rate_headers

PNG = b"\x89PNG\r\n\x1a\n" + b"pixels" * 100
DIGEST = compute_content_digest(PNG)


# ======================================================================
# Happy path
# ======================================================================


class TestUploadHappyPath:
    async def test_first_upload_writes_and_caches(self, make_pipeline, fake_github):
        cache = DeduplicationCache()
        pipeline = make_pipeline(cache=cache)

        result = await pipeline.upload(PNG, "screenshot.png", "image/png")

        assert result.id == DIGEST
        assert result.path == f"images/{DIGEST}.png"
        assert result.url.endswith(f"/images/{DIGEST}.png")
        assert result.deduplicated is False
        assert len(fake_github.writes) == 1
        assert cache.get(DIGEST).url == result.url

    async def test_commit_message_and_branch(self, make_pipeline, fake_github, settings):
        pipeline = make_pipeline(settings=replace(settings, branch="assets"))

        await pipeline.upload(PNG, None, "image/png")

        body = fake_github.body()
        assert body["message"] == f"Upload image: {DIGEST}.png"
        assert body["branch"] == "assets"

    async def test_second_upload_is_deduplicated(self, make_pipeline, fake_github):
        pipeline = make_pipeline()

        first = await pipeline.upload(PNG, "a.png", "image/png")
        second = await pipeline.upload(PNG, "b.png", "image/png")

        assert len(fake_github.writes) == 1
        assert second.deduplicated is True
        assert second.id == first.id
        assert second.url == first.url
        assert second.path == first.path

    async def test_cache_hit_skips_network_entirely(self, make_pipeline, fake_github):
        cache = DeduplicationCache()
        cache.put(DIGEST, "https://example.com/cached.png", "images/cached.png")
        pipeline = make_pipeline(cache=cache)

        result = await pipeline.upload(PNG)

        assert fake_github.requests == []
        assert result.url == "https://example.com/cached.png"
        assert result.deduplicated is True

    async def test_duplicate_detection_disabled(self, make_pipeline, fake_github, settings):
        cache = DeduplicationCache()
        pipeline = make_pipeline(
            settings=replace(settings, enable_duplicate_detection=False), cache=cache
        )

        await pipeline.upload(PNG, None, "image/png")
        result = await pipeline.upload(PNG, None, "image/png")

        assert len(fake_github.writes) == 2
        assert result.deduplicated is False
        assert cache.size() == 0

    async def test_disabled_detection_ignores_existing_entries(
        self, make_pipeline, fake_github, settings
    ):
        cache = DeduplicationCache()
        cache.put(DIGEST, "https://example.com/cached.png", "images/cached.png")
        pipeline = make_pipeline(
            settings=replace(settings, enable_duplicate_detection=False), cache=cache
        )

        result = await pipeline.upload(PNG, None, "image/png")

        assert len(fake_github.writes) == 1
        assert result.url != "https://example.com/cached.png"

    async def test_missing_download_url_not_cached(self, make_pipeline, fake_github):
        cache = DeduplicationCache()
        pipeline = make_pipeline(cache=cache)
        fake_github.responses.append(
            httpx.Response(
                201,
                json={"content": {"path": f"images/{DIGEST}.png", "download_url": None}},
                headers=rate_headers(),
            )
        )

        result = await pipeline.upload(PNG, None, "image/png")

        assert result.url is None
        assert cache.size() == 0


# ======================================================================
# Naming
# ======================================================================


class TestUploadNaming:
    async def test_preserve_strategy(self, make_pipeline, fake_github, settings):
        pipeline = make_pipeline(
            settings=replace(settings, filename_strategy=FilenameStrategy.PRESERVE)
        )

        result = await pipeline.upload(PNG, "Team Photo.JPG", "image/jpeg")

        assert result.path == "images/Team Photo.JPG"
        assert fake_github.body()["message"] == "Upload image: Team Photo.JPG"

    async def test_update_settings_applies_to_next_upload(self, make_pipeline, settings):
        pipeline = make_pipeline()
        pipeline.update_settings(replace(settings, upload_path="assets/{{filename}}"))

        result = await pipeline.upload(PNG, None, "image/gif")

        assert result.path == f"assets/{DIGEST}.gif"
        assert pipeline.settings.upload_path == "assets/{{filename}}"


# ======================================================================
# Rate limit gate
# ======================================================================


class TestRateLimitGate:
    async def test_exhausted_quota_blocks_without_request(self, make_pipeline, fake_github, tracker):
        cache = DeduplicationCache()
        pipeline = make_pipeline(cache=cache)
        tracker.observe(rate_headers(remaining=0))

        with pytest.raises(RateLimitExceededError) as excinfo:
            await pipeline.upload(PNG, None, "image/png")

        assert fake_github.requests == []
        assert cache.size() == 0
        assert excinfo.value.state.remaining == 0
        assert "rate limit exceeded" in excinfo.value.message

    async def test_cache_hit_bypasses_exhausted_quota(self, make_pipeline, fake_github, tracker):
        cache = DeduplicationCache()
        cache.put(DIGEST, "https://example.com/cached.png", "images/cached.png")
        pipeline = make_pipeline(cache=cache)
        tracker.observe(rate_headers(remaining=0))

        result = await pipeline.upload(PNG)

        assert result.deduplicated is True
        assert fake_github.requests == []

    async def test_quota_tracked_from_writes(self, make_pipeline, fake_github):
        fake_github.remaining = 321
        pipeline = make_pipeline()

        await pipeline.upload(PNG, None, "image/png")

        assert pipeline.rate_limit_state.remaining == 321

    async def test_threshold_taken_from_settings(self, make_pipeline, settings, tracker):
        make_pipeline(settings=replace(settings, rate_limit_warning_threshold=7))
        assert tracker.warning_threshold == 7


# ======================================================================
# Failures
# ======================================================================


class TestUploadFailures:
    @pytest.mark.parametrize(
        ("status", "message", "expected"),
        [
            (404, "Not Found", RepositoryNotFoundError),
            (401, "Bad credentials", InvalidCredentialError),
        ],
    )
    async def test_remote_error_propagates_and_cache_unchanged(
        self, make_pipeline, fake_github, status, message, expected
    ):
        cache = DeduplicationCache()
        pipeline = make_pipeline(cache=cache)
        fake_github.responses.append(error_response(status, message))

        with pytest.raises(expected):
            await pipeline.upload(PNG, None, "image/png")

        assert cache.size() == 0
        assert len(fake_github.writes) == 1

    async def test_transport_failure_propagates(self, make_pipeline, fake_github):
        cache = DeduplicationCache()
        pipeline = make_pipeline(cache=cache)
        fake_github.responses.append(httpx.ConnectError("Connection refused"))

        with pytest.raises(TransportFailureError):
            await pipeline.upload(PNG, None, "image/png")
        assert cache.size() == 0

    async def test_retry_after_failure_writes_again(self, make_pipeline, fake_github):
        pipeline = make_pipeline()
        fake_github.responses.append(error_response(503, "Service Unavailable"))

        with pytest.raises(RemoteUnavailableError):
            await pipeline.upload(PNG, None, "image/png")
        result = await pipeline.upload(PNG, None, "image/png")

        assert result.deduplicated is False
        assert len(fake_github.writes) == 2

    async def test_failure_is_logged(self, make_pipeline, fake_github, caplog):
        pipeline = make_pipeline()
        fake_github.responses.append(error_response(404, "Not Found"))

        with pytest.raises(RepositoryNotFoundError):
            await pipeline.upload(PNG, None, "image/png")
        assert "Repository not found" in caplog.text

    async def test_failing_rate_limit_listener_does_not_fail_write(
        self, settings, http_client, fake_github, caplog
    ):
        """A confirmed write is cached even when the warning listener raises."""

        def _listener(event):
            raise RuntimeError("toast failed")

        tracker = RateLimitTracker(warning_threshold=50, listener=_listener)
        cache = DeduplicationCache()
        pipeline = UploadPipeline(
            settings, cache, GitHubContentsClient(tracker, http_client=http_client), tracker
        )
        fake_github.remaining = 10

        result = await pipeline.upload(PNG, None, "image/png")

        assert result.url is not None
        assert len(fake_github.writes) == 1
        assert cache.size() == 1
        assert tracker.state.remaining == 10
        assert "Rate limit listener failed" in caplog.text


# ======================================================================
# Concurrency
# ======================================================================


class TestConcurrentUploads:
    async def test_identical_concurrent_uploads_write_once(self, make_pipeline, fake_github):
        fake_github.delay = 0.02
        pipeline = make_pipeline()

        results = await asyncio.gather(
            pipeline.upload(PNG, None, "image/png"),
            pipeline.upload(PNG, None, "image/png"),
            pipeline.upload(PNG, None, "image/png"),
        )

        assert len(fake_github.writes) == 1
        assert sorted(r.deduplicated for r in results) == [False, True, True]
        assert len({r.url for r in results}) == 1

    async def test_distinct_uploads_run_concurrently(self, make_pipeline, fake_github):
        fake_github.delay = 0.02
        cache = DeduplicationCache()
        pipeline = make_pipeline(cache=cache)

        results = await asyncio.gather(
            *(pipeline.upload(PNG + bytes([i]), None, "image/png") for i in range(4))
        )

        assert len(fake_github.writes) == 4
        assert len({r.id for r in results}) == 4
        assert cache.size() == 4

    async def test_digest_locks_released(self, make_pipeline):
        pipeline = make_pipeline()
        await pipeline.upload(PNG, None, "image/png")
        assert pipeline._digest_locks == {}
