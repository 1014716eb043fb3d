"""Shared pytest fixtures for the image uploader tests.

Provides a settings snapshot, an in-process fake of the GitHub contents
API served through ``httpx.MockTransport``, and a factory that wires an
:class:`UploadPipeline` to it.
"""

from __future__ import annotations

import asyncio
import json
from urllib.parse import unquote

import httpx
import pytest

from ghimg.models import UploaderSettings
from ghimg.upload.cache import DeduplicationCache
from ghimg.upload.client import GitHubContentsClient
from ghimg.upload.orchestrator import UploadPipeline
from ghimg.upload.rate_limiter import RateLimitTracker

RESET_EPOCH = 1_900_000_000


def rate_headers(remaining: int = 4999, limit: int = 5000, reset: int = RESET_EPOCH) -> dict[str, str]:
    """Build the three ``X-RateLimit-*`` response headers."""
    return {
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(reset),
        "X-RateLimit-Limit": str(limit),
    }


def contents_response(path: str, status: int = 201, remaining: int = 4999) -> httpx.Response:
    """A successful contents API write response for *path*."""
    return httpx.Response(
        status,
        json={
            "content": {
                "name": path.rsplit("/", 1)[-1],
                "path": path,
                "sha": "3d21ec53a331a6f037a91c368710b99387d012c1",
                "size": 1024,
                "download_url": f"https://raw.githubusercontent.com/octo/images/main/{path}",
            },
            "commit": {"sha": "7638417db6d59f3c431d3e1f261cc637155684cd"},
        },
        headers=rate_headers(remaining),
    )


def error_response(status: int, message: str, remaining: int = 4999) -> httpx.Response:
    return httpx.Response(status, json={"message": message}, headers=rate_headers(remaining))


class FakeGitHub:
    """Records requests and answers them.

    Queued responses (or exceptions) in :attr:`responses` are served first;
    afterwards every PUT succeeds and every GET returns a repository object.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: list[httpx.Response | Exception] = []
        self.remaining = 4999
        self.delay = 0.0

    @property
    def writes(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "PUT"]

    def body(self, index: int = -1) -> dict:
        """Decoded JSON body of a recorded write."""
        return json.loads(self.writes[index].content)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.responses:
            queued = self.responses.pop(0)
            if isinstance(queued, Exception):
                raise queued
            return queued
        if request.method == "PUT":
            path = unquote(request.url.path.split("/contents/", 1)[1])
            return contents_response(path, remaining=self.remaining)
        return httpx.Response(
            200, json={"full_name": "octo/images"}, headers=rate_headers(self.remaining)
        )


# ======================================================================
# Fixtures
# ======================================================================


@pytest.fixture
def settings() -> UploaderSettings:
    """Fully configured settings using the hash strategy."""
    return UploaderSettings(
        repo_owner="octo",
        repo_name="images",
        branch="main",
        upload_path="images/{{filename}}",
        github_token="ghp_testtoken123",
    )


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
async def http_client(fake_github: FakeGitHub):
    """``httpx.AsyncClient`` routed to :class:`FakeGitHub`."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_github.handler))
    yield client
    await client.aclose()


@pytest.fixture
def tracker() -> RateLimitTracker:
    return RateLimitTracker(warning_threshold=50)


@pytest.fixture
def contents_client(tracker: RateLimitTracker, http_client: httpx.AsyncClient) -> GitHubContentsClient:
    return GitHubContentsClient(tracker, http_client=http_client)


@pytest.fixture
def make_pipeline(settings, tracker, contents_client):
    """Factory building an :class:`UploadPipeline` on the fake API."""

    def _make(
        settings: UploaderSettings = settings,
        cache: DeduplicationCache | None = None,
    ) -> UploadPipeline:
        return UploadPipeline(
            settings,
            cache if cache is not None else DeduplicationCache(),
            contents_client,
            tracker,
        )

    return _make
