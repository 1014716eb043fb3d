"""Error taxonomy for the image upload pipeline.

Every failure surfaced to a caller is an :class:`UploadError` carrying a
human-readable ``message``. Errors derived from a GitHub response are
:class:`RemoteError` subclasses and keep the HTTP status and the remote
detail text. None of these are retried inside the library.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ghimg.models import RateLimitState


class UploadError(Exception):
    """Base class for all upload pipeline failures."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(UploadError):
    """Raised on local misconfiguration, before any network call."""


class TransportFailureError(UploadError):
    """Raised when the request failed before a response was obtained."""


class ImageTooLargeError(UploadError):
    """Raised when a payload exceeds the configured upload size limit."""


class ImageNotFoundError(UploadError):
    """Raised when a render target is requested for an unknown image id."""


class RemoteError(UploadError):
    """Raised when GitHub answered with a non-success status."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class InvalidCredentialError(RemoteError):
    """401: the token was rejected."""


class InsufficientPermissionError(RemoteError):
    """403 (not rate limit): the token lacks write scope."""


class RateLimitExceededError(RemoteError):
    """403 rate limit from GitHub, or the local quota pre-check found zero."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        detail: str | None = None,
        state: RateLimitState | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, detail=detail)
        self.state = state


class RepositoryNotFoundError(RemoteError):
    """404: the owner/repo/path combination does not exist."""


class InvalidRequestError(RemoteError):
    """422: GitHub rejected the payload."""


class RemoteUnavailableError(RemoteError):
    """5xx: transient failure on GitHub's side."""


class UnclassifiedRemoteError(RemoteError):
    """Any other non-success status."""
