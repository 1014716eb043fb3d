"""SHA-1 content digests used as deduplication keys."""

from __future__ import annotations

import hashlib
import logging
import time

logger = logging.getLogger(__name__)


def compute_content_digest(data: bytes) -> str:
    """Compute the SHA-1 hex digest of an image payload.

    Identical bytes always yield the same digest. SHA-1 is kept because
    persisted cache snapshots are keyed by it.

    Args:
        data: Raw image bytes (may be empty).

    Returns:
        40-character lowercase hex digest.
    """
    start = time.perf_counter()
    digest = hashlib.sha1(data).hexdigest()
    logger.debug(
        "SHA-1 computed in %.2fms for %.2fKB image",
        (time.perf_counter() - start) * 1000,
        len(data) / 1024,
    )
    return digest
