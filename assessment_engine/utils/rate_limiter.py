"""
Rate limiting middleware for API endpoints

Clients are keyed by their X-User-Id header, falling back to the remote address.
"""
import time
from collections import defaultdict
from fastapi import Request, HTTPException
from typing import Dict, List, Tuple
import logging

from assessment_engine.config import settings

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    In-memory sliding-window rate limiter
    Production: Use Redis for distributed rate limiting
    """

    def __init__(self, requests_per_minute: int = 60, requests_per_hour: int = 1000):
        # (window seconds, limit); a limit of 0 disables that window
        self.windows: List[Tuple[int, int]] = [(60, requests_per_minute), (3600, requests_per_hour)]

        # Storage: {client_id: [timestamps]}
        self.hits: Dict[str, List[float]] = defaultdict(list)

    def _get_client_id(self, request: Request) -> str:
        """Extract client identifier from request"""
        user_id = request.headers.get("x-user-id")
        if user_id:
            return f"user:{user_id}"

        # Fallback to IP address
        client_ip = request.client.host if request.client else "unknown"
        return f"ip:{client_ip}"

    def reset(self) -> None:
        self.hits.clear()

    async def check_rate_limit(self, request: Request) -> None:
        """
        Check if request exceeds rate limits

        Raises:
            HTTPException: 429 if rate limit exceeded
        """
        client_id = self._get_client_id(request)
        now = time.time()
        longest = max(seconds for seconds, _ in self.windows)

        # Drop entries older than the longest window
        history = [ts for ts in self.hits[client_id] if ts > now - longest]

        for seconds, limit in self.windows:
            if not limit:
                continue
            recent = sum(1 for ts in history if ts > now - seconds)
            if recent >= limit:
                logger.warning(f"Rate limit exceeded ({seconds}s window): {client_id}")
                raise HTTPException(
                    status_code=429,
                    detail={
                        "error": "rate_limit_exceeded",
                        "message": f"Too many requests. Limit: {limit} requests per {seconds} seconds",
                        "retry_after": seconds
                    }
                )

        history.append(now)
        self.hits[client_id] = history


# Global instance
rate_limiter = RateLimiter(
    requests_per_minute=settings.RATE_LIMIT_PER_MINUTE,
    requests_per_hour=settings.RATE_LIMIT_PER_HOUR
)
