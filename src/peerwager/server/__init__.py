"""HTTP API for PeerWager."""

from .app import ReviewAPI, create_app
from .rate_limit import RateLimiter, RateLimitResult

__all__ = [
    "RateLimitResult",
    "RateLimiter",
    "ReviewAPI",
    "create_app",
]
