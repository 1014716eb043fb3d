"""Per-upload lifecycle finite state machine.

Each call to :meth:`~ghimg.upload.orchestrator.UploadPipeline.upload` gets
its own FSM instance starting at ``hashing``. The pipeline fires one event
per step, so an out-of-order step raises ``TransitionNotAllowed`` instead of
silently writing or caching.

The FSM is purely a validation tool -- it has no callbacks and performs no
I/O. Every path moves forward and ends in one of the four final states.
"""

from __future__ import annotations

from statemachine import State, StateMachine


class UploadLifecycleSM(StateMachine):
    """Linear lifecycle of a single upload.

    States:
        hashing        -- Computing the content digest.
        checking_cache -- Looking the digest up in the deduplication cache.
        checking_quota -- Name/path derived; consulting the rate limit gate.
        writing        -- Contents API request in flight.
        caching        -- Write confirmed; recording the digest.
        reused         -- Served from the cache (final).
        blocked        -- Quota exhausted, nothing sent (final).
        failed         -- Write or derivation raised (final).
        completed      -- Written and recorded (final).
    """

    hashing = State("hashing", initial=True, value="hashing")
    checking_cache = State("checking_cache", value="checking_cache")
    checking_quota = State("checking_quota", value="checking_quota")
    writing = State("writing", value="writing")
    caching = State("caching", value="caching")
    reused = State("reused", final=True, value="reused")
    blocked = State("blocked", final=True, value="blocked")
    failed = State("failed", final=True, value="failed")
    completed = State("completed", final=True, value="completed")

    hashed = hashing.to(checking_cache)
    cache_hit = checking_cache.to(reused)
    cache_miss = checking_cache.to(checking_quota)
    prepare_failed = checking_cache.to(failed)
    quota_ok = checking_quota.to(writing)
    quota_exhausted = checking_quota.to(blocked)
    write_succeeded = writing.to(caching)
    write_failed = writing.to(failed)
    recorded = caching.to(completed)


def create_upload_fsm() -> UploadLifecycleSM:
    """Create a fresh FSM positioned at ``hashing``."""
    return UploadLifecycleSM()
