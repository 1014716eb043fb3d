"""Data models and enums for the image uploader."""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from ghimg.exceptions import ConfigurationError


class FilenameStrategy(str, Enum):
    """How the destination filename is chosen."""

    PRESERVE = "preserve"
    HASH = "hash"

    @classmethod
    def parse(cls, value: str | FilenameStrategy) -> FilenameStrategy:
        """Convert a raw settings value, failing fast on unknown strategies."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown filename strategy {value!r}. "
                f"Choose from: {', '.join(s.value for s in cls)}"
            ) from None


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Last known remote location of an uploaded digest."""

    digest: str
    url: str
    path: str
    timestamp: int  # inserted-at, epoch milliseconds

    def to_dict(self) -> dict[str, object]:
        """Persisted form, keyed the way existing snapshots are stored."""
        return {
            "hash": self.digest,
            "url": self.url,
            "path": self.path,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, digest: str, data: Mapping[str, Any]) -> CacheEntry:
        """Rebuild an entry from its persisted form.

        Raises:
            KeyError: If ``url`` or ``path`` is missing.
            ValueError: If ``url`` or ``path`` is not a non-empty string.
        """
        url, path = data["url"], data["path"]
        if not isinstance(url, str) or not url:
            raise ValueError(f"Cache entry {digest} has no usable url: {url!r}")
        if not isinstance(path, str) or not path:
            raise ValueError(f"Cache entry {digest} has no usable path: {path!r}")
        return cls(
            digest=digest,
            url=url,
            path=path,
            timestamp=int(data.get("timestamp", 0)),
        )

    @staticmethod
    def now_millis() -> int:
        return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class UploadResult:
    """Outcome of a single upload, returned to the caller."""

    id: str
    path: str
    url: str | None = None
    deduplicated: bool = False


@dataclass(frozen=True, slots=True)
class RateLimitState:
    """Snapshot of the GitHub API quota taken from response headers."""

    remaining: int
    reset: int  # epoch seconds
    limit: int

    @property
    def reset_at(self) -> datetime:
        """Reset time in local wall-clock time."""
        return datetime.fromtimestamp(self.reset)


@dataclass(frozen=True, slots=True)
class RenderTarget:
    """What a host should render for an uploaded image.

    Public repositories always yield ``"url"``; ``"blob"`` is reserved for
    storage backends that cannot hand out public links.
    """

    type: str
    value: str


@dataclass(frozen=True)
class UploaderSettings:
    """Read-only settings snapshot consumed by the upload pipeline.

    Hosts build a fresh snapshot after every settings change and hand it to
    :meth:`ghimg.upload.orchestrator.UploadPipeline.update_settings`.
    """

    repo_owner: str = ""
    repo_name: str = ""
    branch: str = "main"
    upload_path: str = "images/{{filename}}"
    filename_strategy: FilenameStrategy = FilenameStrategy.HASH
    rate_limit_warning_threshold: int = 50
    enable_duplicate_detection: bool = True
    github_token: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "filename_strategy", FilenameStrategy.parse(self.filename_strategy)
        )
        if self.rate_limit_warning_threshold < 0:
            raise ConfigurationError(
                "Rate limit warning threshold must be zero or positive, "
                f"got {self.rate_limit_warning_threshold}"
            )

    @property
    def is_configured(self) -> bool:
        """True when repository coordinates and a token are all present."""
        return bool(self.repo_owner and self.repo_name and self.github_token)

    def with_token(self, token: str) -> UploaderSettings:
        return replace(self, github_token=token)

    def require_configured(self) -> None:
        """Raise :class:`ConfigurationError` naming the first missing setting."""
        if not self.github_token:
            raise ConfigurationError(
                "GitHub token is not configured. "
                "Set it with: ghimg config set-token YOUR_TOKEN"
            )
        if not self.repo_owner or not self.repo_name:
            raise ConfigurationError(
                "Repository owner and name are not configured. "
                "Set them with: ghimg config set owner NAME / ghimg config set repo NAME"
            )


DEFAULT_SETTINGS = UploaderSettings()


@dataclass
class AppState:
    """Shared state across all CLI commands. Initialized in app callback."""

    data_path: Path  # settings + cache snapshot JSON file
