"""GitHub API quota tracking from ``X-RateLimit-*`` response headers.

The tracker keeps a single :class:`~ghimg.models.RateLimitState` that is
replaced wholesale whenever a response carries all three quota headers.
:meth:`RateLimitTracker.can_proceed` is consulted once before each write to
skip a round trip that is already known to fail. It is advisory only: the
state may be stale by the time the request is sent.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Mapping

from ghimg.models import RateLimitState

logger = logging.getLogger(__name__)

REMAINING_HEADER = "x-ratelimit-remaining"
RESET_HEADER = "x-ratelimit-reset"
LIMIT_HEADER = "x-ratelimit-limit"


@dataclass(frozen=True)
class RateLimitEvent:
    """Notice emitted when the quota runs low (``warning``) or out (``blocked``)."""

    kind: str
    state: RateLimitState

    @property
    def message(self) -> str:
        reset = self.state.reset_at.strftime("%X")
        if self.kind == "blocked":
            return f"GitHub API rate limit exceeded. Uploads blocked until {reset}."
        return (
            f"GitHub API rate limit warning: {self.state.remaining} requests "
            f"remaining. Resets at {reset}."
        )


RateLimitListener = Callable[[RateLimitEvent], None]


def parse_rate_limit_headers(headers: Mapping[str, str] | None) -> RateLimitState | None:
    """Build a :class:`RateLimitState` from response headers.

    Returns ``None`` unless remaining, reset and limit are all present and
    integer-valued. Lookup is case-insensitive.
    """
    if not headers:
        return None
    lowered = {str(k).lower(): v for k, v in headers.items()}
    raw = (lowered.get(REMAINING_HEADER), lowered.get(RESET_HEADER), lowered.get(LIMIT_HEADER))
    if any(value is None or str(value).strip() == "" for value in raw):
        return None
    try:
        remaining, reset, limit = (int(str(value).strip()) for value in raw)
    except ValueError:
        logger.debug("Ignoring unparsable rate limit headers: %r", raw)
        return None
    return RateLimitState(remaining=remaining, reset=reset, limit=limit)


class RateLimitTracker:
    """Holds the latest observed quota and gates writes on it.

    Args:
        warning_threshold: Emit a warning when ``remaining`` drops to this
            value or below (while still above zero).
        listener: Optional callable receiving :class:`RateLimitEvent`
            notices, e.g. to show a toast. Exceptions it raises are logged
            and never fail the request that produced the notice.
    """

    def __init__(
        self,
        warning_threshold: int = 50,
        listener: RateLimitListener | None = None,
    ) -> None:
        self._warning_threshold = warning_threshold
        self._listener = listener
        self._state: RateLimitState | None = None
        self._lock = threading.Lock()

    @property
    def state(self) -> RateLimitState | None:
        """Last observed quota, or ``None`` before the first response."""
        return self._state

    @property
    def warning_threshold(self) -> int:
        return self._warning_threshold

    def set_warning_threshold(self, threshold: int) -> None:
        self._warning_threshold = threshold

    def observe(self, headers: Mapping[str, str] | None) -> RateLimitState | None:
        """Replace the tracked state from response headers, if complete.

        Returns:
            The new state, or ``None`` when the headers were incomplete and
            the previous state was kept.
        """
        state = parse_rate_limit_headers(headers)
        if state is None:
            return None

        with self._lock:
            self._state = state

        logger.debug(
            "Rate limit: %d/%d remaining, resets at %s",
            state.remaining,
            state.limit,
            state.reset_at.isoformat(timespec="seconds"),
        )
        if 0 < state.remaining <= self._warning_threshold:
            self._emit(RateLimitEvent("warning", state))
        return state

    def can_proceed(self) -> bool:
        """Return ``False`` only when the last observed quota is exhausted."""
        state = self._state
        if state is None:
            return True
        if state.remaining == 0:
            self._emit(RateLimitEvent("blocked", state))
            return False
        return True

    def reset(self) -> None:
        """Forget the observed state."""
        with self._lock:
            self._state = None

    def _emit(self, event: RateLimitEvent) -> None:
        logger.warning("%s", event.message)
        if self._listener is None:
            return
        try:
            self._listener(event)
        except Exception:
            logger.exception("Rate limit listener failed on %s notice", event.kind)
