"""Settings, credential and cache snapshot persistence.

Settings and the deduplication cache snapshot share one JSON data file
(``~/.ghimg/data.json`` by default). Setting keys keep the names used by
existing data files so they load unchanged. The GitHub token never goes
into the file: it lives in the system keyring (service ``ghimg-github``,
key ``token``) with a ``GITHUB_TOKEN`` environment fallback.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import fields, replace
from pathlib import Path
from typing import Any

import keyring
from keyring.errors import KeyringError

from ghimg.exceptions import ConfigurationError
from ghimg.models import DEFAULT_SETTINGS, FilenameStrategy, UploaderSettings
from ghimg.upload.cache import DeduplicationCache

logger = logging.getLogger(__name__)

SERVICE_NAME = "ghimg-github"
KEY_NAME = "token"
TOKEN_ENV_VAR = "GITHUB_TOKEN"
DATA_FILE_ENV_VAR = "GHIMG_DATA_FILE"
CACHE_KEY = "imageCache"

# dataclass field -> key in the data file
_FILE_KEYS: dict[str, str] = {
    "repo_owner": "repoOwner",
    "repo_name": "repoName",
    "branch": "branch",
    "upload_path": "uploadPath",
    "filename_strategy": "filenameStrategy",
    "rate_limit_warning_threshold": "rateLimitWarningThreshold",
    "enable_duplicate_detection": "enableDuplicateDetection",
}

# CLI name -> dataclass field, for ``ghimg config set``
SETTING_KEYS: dict[str, str] = {
    "owner": "repo_owner",
    "repo": "repo_name",
    "branch": "branch",
    "path": "upload_path",
    "strategy": "filename_strategy",
    "threshold": "rate_limit_warning_threshold",
    "dedup": "enable_duplicate_detection",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def default_data_path() -> Path:
    """Data file location: ``$GHIMG_DATA_FILE`` or ``~/.ghimg/data.json``."""
    override = os.environ.get(DATA_FILE_ENV_VAR)
    if override:
        return Path(override)
    return Path.home() / ".ghimg" / "data.json"


# ---------------------------------------------------------------------------
# Credential
# ---------------------------------------------------------------------------


def get_github_token() -> str:
    """Get the GitHub token: system keyring first, then ``GITHUB_TOKEN``.

    Raises:
        ConfigurationError: If no token is found anywhere, with setup instructions.
    """
    try:
        token = keyring.get_password(SERVICE_NAME, KEY_NAME)
    except KeyringError as exc:
        logger.debug("Keyring unavailable, falling back to %s: %s", TOKEN_ENV_VAR, exc)
        token = None
    if token:
        return token

    token = os.environ.get(TOKEN_ENV_VAR)
    if token:
        return token

    raise ConfigurationError(
        "GitHub token not found.\n"
        "Set it with: ghimg config set-token YOUR_TOKEN\n"
        f"Or: export {TOKEN_ENV_VAR}=your-token"
    )


def set_github_token(token: str) -> None:
    token = token.strip()
    if not token:
        raise ConfigurationError("GitHub token cannot be empty")
    keyring.set_password(SERVICE_NAME, KEY_NAME, token)


def delete_github_token() -> bool:
    """Remove the stored token. Returns ``False`` if none was stored."""
    if not keyring.get_password(SERVICE_NAME, KEY_NAME):
        return False
    keyring.delete_password(SERVICE_NAME, KEY_NAME)
    return True


# ---------------------------------------------------------------------------
# Data file
# ---------------------------------------------------------------------------


def load_data_file(path: Path) -> dict[str, Any]:
    """Read the JSON data file; a missing file reads as ``{}``.

    Raises:
        ConfigurationError: The file exists but is not a JSON object.
    """
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Data file {path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Data file {path} must contain a JSON object")
    return data


def save_data_file(data: dict[str, Any], path: Path) -> None:
    """Write the data file atomically (temp file + ``os.replace``)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".data-", suffix=".json", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def settings_from_dict(data: dict[str, Any]) -> UploaderSettings:
    """Merge data-file keys over :data:`DEFAULT_SETTINGS`.

    Raises:
        ConfigurationError: A value is invalid (e.g. unknown strategy).
    """
    kwargs = {
        field_name: data[file_key]
        for field_name, file_key in _FILE_KEYS.items()
        if file_key in data
    }
    try:
        return replace(DEFAULT_SETTINGS, **kwargs)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid settings in data file: {exc}") from exc


def settings_to_dict(settings: UploaderSettings) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for field_name, file_key in _FILE_KEYS.items():
        value = getattr(settings, field_name)
        out[file_key] = value.value if isinstance(value, FilenameStrategy) else value
    return out


def load_settings(path: Path | None = None, with_token: bool = False) -> UploaderSettings:
    """Load the settings snapshot from the data file.

    Args:
        path: Data file; defaults to :func:`default_data_path`.
        with_token: Also resolve the token via :func:`get_github_token`.
    """
    settings = settings_from_dict(load_data_file(path or default_data_path()))
    if with_token:
        settings = settings.with_token(get_github_token())
    return settings


def save_settings(settings: UploaderSettings, path: Path | None = None) -> None:
    """Write settings keys, preserving the cache snapshot and unknown keys."""
    path = path or default_data_path()
    data = load_data_file(path)
    data.update(settings_to_dict(settings))
    save_data_file(data, path)


def coerce_setting(name: str, raw: str) -> tuple[str, Any]:
    """Convert a ``ghimg config set`` pair to ``(field_name, value)``.

    Raises:
        ConfigurationError: Unknown key or unparsable value.
    """
    field_name = SETTING_KEYS.get(name)
    if field_name is None:
        raise ConfigurationError(
            f"Unknown setting {name!r}. Choose from: {', '.join(SETTING_KEYS)}"
        )

    field_type = {f.name: f.type for f in fields(UploaderSettings)}[field_name]
    value = raw.strip()
    if field_type == "bool":
        lowered = value.lower()
        if lowered in _TRUE_VALUES:
            return field_name, True
        if lowered in _FALSE_VALUES:
            return field_name, False
        raise ConfigurationError(f"Setting {name!r} expects true/false, got {raw!r}")
    if field_type == "int":
        try:
            return field_name, int(value)
        except ValueError:
            raise ConfigurationError(f"Setting {name!r} expects an integer, got {raw!r}") from None
    if field_type == "FilenameStrategy":
        return field_name, FilenameStrategy.parse(value)
    if field_name == "branch" and not value:
        return field_name, "main"
    return field_name, value


# ---------------------------------------------------------------------------
# Cache snapshot
# ---------------------------------------------------------------------------


def load_cache_snapshot(cache: DeduplicationCache, path: Path | None = None) -> int:
    """Restore *cache* from the data file. Returns the restored size."""
    snapshot = load_data_file(path or default_data_path()).get(CACHE_KEY)
    if isinstance(snapshot, dict):
        cache.load_snapshot(snapshot)
    else:
        cache.clear()
    logger.debug("Loaded %d cached images", cache.size())
    return cache.size()


def save_cache_snapshot(cache: DeduplicationCache, path: Path | None = None) -> None:
    """Persist *cache* under ``imageCache`` next to the settings."""
    path = path or default_data_path()
    data = load_data_file(path)
    data[CACHE_KEY] = cache.export_snapshot()
    save_data_file(data, path)
