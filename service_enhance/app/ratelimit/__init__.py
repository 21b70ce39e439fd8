"""
Rate limiting package for the gateway.

Holds the fixed daily quota enforced per (subject, client IP) by serialized
actors, plus the decision type whose fields become the X-RateLimit-* headers.
"""

from .daily_quota import CheckMode, DailyRateLimiter, QuotaDecision, RateLimiterActor, RateWindow

__all__ = [
    "CheckMode",
    "DailyRateLimiter",
    "QuotaDecision",
    "RateLimiterActor",
    "RateWindow",
]
