"""
Rate limiting package for the Gateway.

Holds the fixed-window limiter and the request-side helper that enforce a
per-client request budget ahead of authentication.
"""

from .fixed_window import FixedWindowRateLimiter, RateLimitMiddleware

__all__ = ["FixedWindowRateLimiter", "RateLimitMiddleware"]
