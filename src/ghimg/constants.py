"""Project-wide named constants.

Constants defined here replace inline magic numbers across the codebase.
"""

# Upper bound on cached digests; persisted snapshots are trimmed to it on load.
MAX_CACHE_SIZE: int = 1000

# Payloads above this are rejected before hashing.
MAX_IMAGE_BYTES: int = 25 * 1024 * 1024

DEFAULT_API_URL: str = "https://api.github.com"
GITHUB_ACCEPT_HEADER: str = "application/vnd.github.v3+json"

DEFAULT_EXTENSION: str = "png"

MIME_TO_EXTENSION: dict[str, str] = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
    "image/bmp": "bmp",
}
