"""
Per-client fixed-window rate limiter.

Backed by the `limits` package (the engine behind slowapi): one fixed
60-second window per client identity, opened by the identity's first request.
State lives in process memory only, so a restart clears every window and
each worker process counts on its own.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Optional

from limits import RateLimitItemPerMinute
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter

logger = logging.getLogger(__name__)

UNKNOWN_IDENTITY = "unknown"


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_in_seconds: int


class RateLimiter:
    """Fixed-window request counter keyed by client identity."""

    def __init__(self, ceiling: int, storage: Optional[Storage] = None):
        self.ceiling = ceiling
        self.item = RateLimitItemPerMinute(ceiling, namespace="proxy")
        self.storage = storage or MemoryStorage()
        self._limiter = FixedWindowRateLimiter(self.storage)

    def check(self, identity: str) -> RateDecision:
        """Count one request for identity and decide whether it is admitted."""
        identity = identity or UNKNOWN_IDENTITY

        allowed = self._limiter.hit(self.item, identity)
        stats = self._limiter.get_window_stats(self.item, identity)

        if not allowed:
            logger.warning(
                f"Rate limit exceeded for client {identity} ({self.ceiling}/minute)",
                extra={"client": identity, "limit": self.ceiling}
            )

        return RateDecision(
            allowed=allowed,
            limit=self.ceiling,
            remaining=0 if not allowed else max(0, stats.remaining),
            reset_in_seconds=max(0, math.ceil(stats.reset_time - time.time())),
        )

    def admit(self, identity: str) -> bool:
        return self.check(identity).allowed

    def reset(self, identity: Optional[str] = None) -> None:
        """Forget one identity's window, or every window when none is given."""
        if identity is None:
            self.storage.reset()
        else:
            self._limiter.clear(self.item, identity or UNKNOWN_IDENTITY)
