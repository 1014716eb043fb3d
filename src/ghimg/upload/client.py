"""GitHub contents API client.

Implements the two calls the uploader needs:
  1. ``PUT /repos/{owner}/{repo}/contents/{path}`` -- create or update a file
  2. ``GET /repos/{owner}/{repo}`` -- connectivity probe

Every response, successful or not, is fed to the
:class:`~ghimg.upload.rate_limiter.RateLimitTracker`. Non-success statuses
are classified into the :mod:`ghimg.exceptions` taxonomy and raised once;
nothing is retried here.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from ghimg.constants import DEFAULT_API_URL, GITHUB_ACCEPT_HEADER
from ghimg.exceptions import (
    InsufficientPermissionError,
    InvalidCredentialError,
    InvalidRequestError,
    RateLimitExceededError,
    RemoteError,
    RemoteUnavailableError,
    RepositoryNotFoundError,
    TransportFailureError,
    UnclassifiedRemoteError,
)
from ghimg.upload.rate_limiter import (
    REMAINING_HEADER,
    RateLimitTracker,
    parse_rate_limit_headers,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class ContentInfo(BaseModel):
    """The ``content`` object of a contents API write response."""

    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    path: str
    sha: str | None = None
    size: int | None = None
    html_url: str | None = None
    download_url: str | None = None


class ContentsResponse(BaseModel):
    """Body returned by ``PUT /repos/{owner}/{repo}/contents/{path}``."""

    model_config = ConfigDict(extra="ignore")

    content: ContentInfo


@dataclass(frozen=True)
class WriteResult:
    """Location of a file written to the repository."""

    path: str
    url: str | None
    sha: str | None = None


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


def classify_response(
    status: int,
    message: str,
    headers: Mapping[str, str] | None = None,
) -> RemoteError:
    """Map a non-success GitHub response to a typed error.

    Args:
        status: HTTP status code.
        message: Remote ``message`` field, or the reason phrase.
        headers: Response headers, used to recognise rate-limit 403s.

    Returns:
        The error to raise (not raised here).
    """
    if status == 401:
        return InvalidCredentialError(
            "GitHub token is invalid or expired. Please check your settings.",
            status_code=status,
            detail=message,
        )
    if status == 403:
        lowered = {str(k).lower(): v for k, v in (headers or {}).items()}
        if "rate limit" in message.lower() or lowered.get(REMAINING_HEADER) == "0":
            return RateLimitExceededError(
                "GitHub API rate limit exceeded.",
                status_code=status,
                detail=message,
                state=parse_rate_limit_headers(headers),
            )
        return InsufficientPermissionError(
            'Token lacks required permissions. Ensure it has "Contents: Write" permission.',
            status_code=status,
            detail=message,
        )
    if status == 404:
        return RepositoryNotFoundError(
            "Repository not found. Check owner and repo name in settings.",
            status_code=status,
            detail=message,
        )
    if status == 422:
        return InvalidRequestError(
            f"Invalid request: {message}", status_code=status, detail=message
        )
    if 500 <= status < 600:
        return RemoteUnavailableError(
            "GitHub API is temporarily unavailable. Please try again later.",
            status_code=status,
            detail=message,
        )
    return UnclassifiedRemoteError(
        f"GitHub API error ({status}): {message}", status_code=status, detail=message
    )


def _error_message(response: httpx.Response) -> str:
    """Extract the remote ``message`` field, falling back to the reason phrase."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.reason_phrase or "Unknown error"


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GitHubContentsClient:
    """Async wrapper around the GitHub contents API.

    Usage::

        tracker = RateLimitTracker(warning_threshold=50)
        async with GitHubContentsClient(tracker) as client:
            result = await client.write_file(
                owner="me", repo="images", path="images/abc.png",
                content=data, message="Upload image: abc.png",
                branch="main", token="ghp_...",
            )

    Args:
        rate_limiter: Tracker updated from every response.
        base_url: API root, overridable for GitHub Enterprise.
        timeout: Per-request timeout in seconds for the owned client.
        http_client: Pre-built ``httpx.AsyncClient`` (not closed by
            :meth:`aclose`); mainly for tests with ``httpx.MockTransport``.
    """

    def __init__(
        self,
        rate_limiter: RateLimitTracker,
        base_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._rate_limiter = rate_limiter
        self._base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    @property
    def rate_limiter(self) -> RateLimitTracker:
        return self._rate_limiter

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def write_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: bytes,
        message: str,
        branch: str,
        token: str,
    ) -> WriteResult:
        """Create or update a file in the repository.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.
            path: Destination path inside the repository.
            content: Raw file bytes (base64-encoded here).
            message: Commit message.
            branch: Target branch.
            token: Bearer token with contents write access.

        Returns:
            The remote path and public download URL.

        Raises:
            RemoteError: A classified non-success response.
            TransportFailureError: No response was obtained.
        """
        url = f"{self._repo_url(owner, repo)}/contents/{quote(path, safe='/')}"
        body = {
            "message": message,
            "content": base64.b64encode(content).decode("ascii"),
            "branch": branch,
        }
        response = await self._request("PUT", url, token, json=body)

        try:
            parsed = ContentsResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise UnclassifiedRemoteError(
                f"GitHub API returned an unexpected response body ({response.status_code})",
                status_code=response.status_code,
                detail=str(exc),
            ) from exc

        logger.info(
            "Wrote %s to %s/%s@%s (%d bytes)", parsed.content.path, owner, repo, branch, len(content)
        )
        return WriteResult(
            path=parsed.content.path,
            url=parsed.content.download_url,
            sha=parsed.content.sha,
        )

    async def probe_connectivity(self, owner: str, repo: str, token: str) -> bool:
        """Check that the token can see ``owner/repo``.

        Returns:
            ``True`` when GitHub answered with a success status.

        Raises:
            RemoteError: A classified non-success response.
            TransportFailureError: No response was obtained.
        """
        await self._request("GET", self._repo_url(owner, repo), token)
        logger.info("GitHub connection to %s/%s successful", owner, repo)
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> GitHubContentsClient:
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _repo_url(self, owner: str, repo: str) -> str:
        return f"{self._base_url}/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"

    async def _request(
        self, method: str, url: str, token: str, **kwargs: Any
    ) -> httpx.Response:
        """Send one request, record its quota headers and classify failures."""
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": GITHUB_ACCEPT_HEADER,
        }
        try:
            response = await self._http.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as exc:
            raise TransportFailureError(
                f"Failed to reach GitHub: {str(exc) or exc.__class__.__name__}"
            ) from exc

        self._rate_limiter.observe(response.headers)

        if not response.is_success:
            error = classify_response(
                response.status_code, _error_message(response), response.headers
            )
            logger.debug("%s %s -> %d (%s)", method, url, response.status_code, error.detail)
            raise error
        return response
