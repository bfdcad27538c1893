"""
Rate Limiting

Token bucket rate limiter for API endpoint protection.

Features:
- Per-client rate limiting based on IP address
- Bounded bucket map, idle buckets pruned
- Configurable limits per endpoint
- Automatic bucket refill
"""

import time
from dataclasses import dataclass, field
from functools import wraps
from typing import Callable, Dict

from fastapi import HTTPException, Request, status

from aves.core.config import settings


# ============== Token Bucket Implementation ==============

@dataclass
class TokenBucket:
    """Token bucket for rate limiting."""
    capacity: int          # Maximum tokens
    refill_rate: float     # Tokens per second
    tokens: float = field(default=0, init=False)
    last_refill: float = field(default=0, init=False)

    def __post_init__(self):
        self.tokens = float(self.capacity)
        self.last_refill = time.time()

    def consume(self, tokens: int = 1) -> bool:
        """
        Attempt to consume tokens.

        Args:
            tokens: Number of tokens to consume.

        Returns:
            True if tokens were available, False otherwise.
        """
        self._refill()

        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    def _refill(self) -> None:
        now = time.time()
        elapsed = now - self.last_refill
        self.tokens = min(
            self.capacity,
            self.tokens + (elapsed * self.refill_rate)
        )
        self.last_refill = now


# ============== Rate Limiter ==============

class RateLimiter:
    """
    Per-client rate limiter using token bucket algorithm.
    """

    def __init__(
        self,
        requests_per_minute: float = 60,
        burst_capacity: int = 10,
        trust_forwarded_for: bool = False,
        max_buckets: int = 10000,
    ):
        """
        Initialize rate limiter.

        Args:
            requests_per_minute: Sustained rate limit.
            burst_capacity: Maximum burst size.
            trust_forwarded_for: Key on the first X-Forwarded-For address.
                Only safe behind a proxy that overwrites the header.
            max_buckets: Bucket count at which idle buckets are pruned.
        """
        self._buckets: Dict[str, TokenBucket] = {}
        self._requests_per_minute = requests_per_minute
        self._burst_capacity = burst_capacity
        self._refill_rate = requests_per_minute / 60.0  # Per second
        self._trust_forwarded_for = trust_forwarded_for
        self._max_buckets = max(1, max_buckets)

    def _get_key(self, request: Request) -> str:
        """Rate limit key for a request: the client IP."""
        ip = None
        if self._trust_forwarded_for:
            forwarded = request.headers.get("X-Forwarded-For")
            if forwarded:
                ip = forwarded.split(",")[0].strip()
        if not ip:
            ip = request.client.host if request.client else "unknown"

        return f"ip:{ip}"

    def _idle_seconds(self) -> float:
        """Seconds for an empty bucket to refill completely."""
        if self._refill_rate <= 0:
            return float("inf")
        return self._burst_capacity / self._refill_rate

    def _get_bucket(self, key: str) -> TokenBucket:
        if key not in self._buckets:
            if len(self._buckets) >= self._max_buckets:
                self.cleanup(max_age=self._idle_seconds())
            if len(self._buckets) >= self._max_buckets:
                oldest = min(self._buckets, key=lambda k: self._buckets[k].last_refill)
                del self._buckets[oldest]
            self._buckets[key] = TokenBucket(
                capacity=self._burst_capacity,
                refill_rate=self._refill_rate,
            )
        return self._buckets[key]

    def is_allowed(self, request: Request) -> bool:
        """
        Check if request is allowed.

        Args:
            request: FastAPI request object.

        Returns:
            True if allowed, False if rate limited.
        """
        key = self._get_key(request)
        bucket = self._get_bucket(key)
        return bucket.consume()

    def cleanup(self, max_age: float = 3600) -> int:
        """
        Remove stale buckets.

        Args:
            max_age: Maximum age in seconds for inactive buckets.

        Returns:
            Number of buckets removed.
        """
        now = time.time()
        stale_keys = [
            key for key, bucket in self._buckets.items()
            if (now - bucket.last_refill) > max_age
        ]

        for key in stale_keys:
            del self._buckets[key]

        return len(stale_keys)


# ============== Global Rate Limiters ==============

# Exercise generation (100 requests / 15 minutes by default)
generation_limiter = RateLimiter(
    requests_per_minute=settings.GENERATE_RATE_LIMIT_PER_MINUTE,
    burst_capacity=settings.GENERATE_RATE_LIMIT_BURST,
    trust_forwarded_for=settings.RATE_LIMIT_TRUST_FORWARDED_FOR,
    max_buckets=settings.RATE_LIMIT_MAX_BUCKETS,
)


# ============== Decorator for Specific Endpoints ==============

def rate_limit(limiter: RateLimiter):
    """
    Decorator to apply rate limiting to specific endpoints.

    The endpoint must accept a `request: Request` parameter.

    Usage:
        @router.post("/generate")
        @rate_limit(generation_limiter)
        async def generate_exercise(request: Request, ...):
            ...
    """
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            request = kwargs.get("request")
            if request is None:
                for arg in args:
                    if isinstance(arg, Request):
                        request = arg
                        break

            if request is not None and not limiter.is_allowed(request):
                raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail="Too many exercise generation requests. Please try again later.",
                    headers={"Retry-After": "60"},
                )

            return await func(*args, **kwargs)
        return wrapper
    return decorator
