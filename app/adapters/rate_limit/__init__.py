"""Rate limiting adapters.

The orchestrator depends on ``AbstractRateLimiter`` only, so the in-memory
sliding window can later be replaced by a shared store without touching the
service or the HTTP layer.
"""

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from app.adapters.rate_limit.in_memory import InMemorySlidingWindowRateLimiter

__all__ = [
    "AbstractRateLimiter",
    "InMemorySlidingWindowRateLimiter",
    "RateLimitResult",
]
