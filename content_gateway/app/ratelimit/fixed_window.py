"""
Fixed-window rate limiter for the Gateway.
"""

import math
import threading
import time
from typing import Any, Callable, Dict, Tuple

from fastapi import Request

from shared.logging import get_logger


class FixedWindowRateLimiter:
    """In-process fixed-window request counter keyed by client identity."""

    def __init__(
        self,
        max_requests: int = 1000,
        window_seconds: int = 60,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.logger = get_logger("gateway.rate_limiter")
        self._clock = clock
        self._lock = threading.Lock()
        # client_id -> (window index, count)
        self._windows: Dict[str, Tuple[int, int]] = {}
        self._current_window = -1

    def check_rate_limit(self, client_id: str) -> Dict[str, Any]:
        """Count one request for ``client_id`` and report whether it is admitted.

        Any bookkeeping failure admits the request.
        """
        try:
            now = self._clock()
            window = int(now // self.window_seconds)
            reset_in = max(1, math.ceil((window + 1) * self.window_seconds - now))

            with self._lock:
                if window != self._current_window:
                    self._prune(window)

                start, count = self._windows.get(client_id, (window, 0))
                if start != window:
                    count = 0

                if count + 1 > self.max_requests:
                    self.logger.warning(
                        "Rate limit exceeded",
                        client_id=client_id,
                        current_count=count,
                        limit=self.max_requests,
                    )
                    return {
                        "allowed": False,
                        "current_count": count,
                        "limit": self.max_requests,
                        "remaining": 0,
                        "reset_in_seconds": reset_in,
                        "retry_after": reset_in,
                    }

                count += 1
                self._windows[client_id] = (window, count)

            return {
                "allowed": True,
                "current_count": count,
                "limit": self.max_requests,
                "remaining": max(0, self.max_requests - count),
                "reset_in_seconds": reset_in,
            }

        except Exception as e:
            self.logger.error("Rate limit check error", error=str(e))
            return {
                "allowed": True,
                "current_count": 0,
                "limit": self.max_requests,
                "remaining": self.max_requests,
                "reset_in_seconds": self.window_seconds,
                "error": str(e),
            }

    def get_global_stats(self) -> Dict[str, Any]:
        """Get global rate limiting statistics for the current window."""
        window = int(self._clock() // self.window_seconds)
        with self._lock:
            counts = [count for start, count in self._windows.values() if start == window]

        total_requests = sum(counts)
        return {
            "total_clients": len(counts),
            "total_requests": total_requests,
            "average_requests_per_client": total_requests / max(1, len(counts)),
        }

    def _prune(self, window: int) -> None:
        """Drop counters from earlier windows. Caller holds the lock."""
        stale = [client_id for client_id, (start, _) in self._windows.items() if start != window]
        for client_id in stale:
            del self._windows[client_id]
        self._current_window = window


class RateLimitMiddleware:
    """Resolves the caller identity and consults the limiter."""

    def __init__(self, rate_limiter: FixedWindowRateLimiter, *, trust_forwarded_headers: bool = False):
        self.rate_limiter = rate_limiter
        self.trust_forwarded_headers = trust_forwarded_headers
        self.logger = get_logger("gateway.rate_limit_middleware")

    def check_request(self, request: Request) -> Dict[str, Any]:
        """Check rate limit for request."""
        client_id = self._get_client_id(request)

        try:
            result = self.rate_limiter.check_rate_limit(client_id)
        except Exception as e:
            self.logger.error("Rate limiter middleware error", error=str(e))
            limit = self.rate_limiter.max_requests
            result = {
                "allowed": True,
                "current_count": 0,
                "limit": limit,
                "remaining": limit,
                "reset_in_seconds": self.rate_limiter.window_seconds,
                "error": str(e),
            }

        result["client_id"] = client_id
        return result

    def _get_client_id(self, request: Request) -> str:
        """Extract client ID from request."""
        if self.trust_forwarded_headers:
            forwarded_for = request.headers.get('X-Forwarded-For')
            if isinstance(forwarded_for, str) and forwarded_for:
                return forwarded_for.split(',')[0].strip()

            real_ip = request.headers.get('X-Real-IP')
            if isinstance(real_ip, str) and real_ip:
                return real_ip

        return request.client.host if request.client else 'unknown'

    @staticmethod
    def headers_for(result: Dict[str, Any]) -> Dict[str, str]:
        """Standard rate limit headers for a limiter decision."""
        headers: Dict[str, str] = {}
        if result.get("limit") is not None:
            headers["X-RateLimit-Limit"] = str(result["limit"])
        if result.get("remaining") is not None:
            headers["X-RateLimit-Remaining"] = str(result["remaining"])
        if result.get("reset_in_seconds") is not None:
            headers["X-RateLimit-Reset"] = str(result["reset_in_seconds"])
        if not result.get("allowed", True) and result.get("retry_after") is not None:
            headers["Retry-After"] = str(result["retry_after"])
        return headers
