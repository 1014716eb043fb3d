"""Destination filename and repository path derivation."""

from __future__ import annotations

from datetime import datetime

from ghimg.constants import DEFAULT_EXTENSION, MIME_TO_EXTENSION
from ghimg.exceptions import ConfigurationError
from ghimg.models import FilenameStrategy


def _basename(name: str) -> str:
    return name.replace("\\", "/").rsplit("/", 1)[-1]


def resolve_extension(original_name: str | None = None, mime_type: str | None = None) -> str:
    """Pick the file extension for an upload.

    Order: extension of the original filename, then the MIME type table,
    then ``png``.
    """
    if original_name:
        base = _basename(original_name)
        if "." in base:
            ext = base.rsplit(".", 1)[1]
            if ext:
                return ext.lower()

    if mime_type:
        key = mime_type.split(";", 1)[0].strip().lower()
        ext = MIME_TO_EXTENSION.get(key)
        if ext:
            return ext

    return DEFAULT_EXTENSION


def derive_filename(
    strategy: FilenameStrategy,
    digest: str,
    original_name: str | None = None,
    mime_type: str | None = None,
) -> str:
    """Build the destination filename for an upload.

    * ``PRESERVE`` keeps the original basename, correcting its extension
      when it does not match the resolved one. Without an original name it
      falls back to ``{digest}.{ext}``.
    * ``HASH`` always yields ``{digest}.{ext}``.

    Raises:
        ConfigurationError: If *strategy* is not a :class:`FilenameStrategy`.
    """
    extension = resolve_extension(original_name, mime_type)

    if strategy is FilenameStrategy.PRESERVE:
        basename = _basename(original_name) if original_name else ""
        if not basename:
            return f"{digest}.{extension}"
        if basename.lower().endswith(f".{extension}"):
            return basename
        stem = basename.rsplit(".", 1)[0] if "." in basename[1:] else basename
        return f"{stem}.{extension}"

    if strategy is FilenameStrategy.HASH:
        return f"{digest}.{extension}"

    raise ConfigurationError(f"Unknown filename strategy: {strategy!r}")


def expand_path_template(
    template: str,
    filename: str,
    now: datetime | None = None,
) -> str:
    """Expand ``{{year}}``, ``{{month}}``, ``{{day}}`` and ``{{filename}}``.

    Dates come from the local clock at call time unless *now* is given.
    Leading and trailing slashes are stripped from the result. A template
    without placeholders expands to the same path for every upload.
    """
    if now is None:
        now = datetime.now()

    expanded = (
        template.replace("{{year}}", f"{now.year:04d}")
        .replace("{{month}}", f"{now.month:02d}")
        .replace("{{day}}", f"{now.day:02d}")
        .replace("{{filename}}", filename)
    )
    return expanded.strip("/")
