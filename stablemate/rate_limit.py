"""In-memory token-bucket rate limiting for scraping and auth endpoints.

Buckets live in the process that created them. With several server
instances each one keeps its own buckets, so limits are per instance.
"""

import logging
import time
from typing import Callable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)

# Buckets idle for longer than this are evicted by the sweep
BUCKET_MAX_IDLE = 3600  # seconds
SWEEP_INTERVAL = 600  # seconds


class _TokenBucket:
    """Token state for one client identifier."""

    __slots__ = ("tokens", "last_refill")

    def __init__(self, tokens: float, last_refill: float):
        self.tokens = tokens
        self.last_refill = last_refill


class RateLimiter:
    """Token bucket keyed by client identifier (usually the IP address)."""

    def __init__(
        self,
        max_tokens: int,
        refill_rate: float,
        cost: int = 1,
        clock: Callable[[], float] = time.monotonic,
        name: str = "default",
    ):
        self.max_tokens = max_tokens
        self.refill_rate = refill_rate  # tokens per second
        self.cost = cost
        self.name = name
        self._clock = clock
        self._buckets: dict[str, _TokenBucket] = {}

    def _refilled(self, bucket: _TokenBucket, now: float) -> float:
        elapsed = max(0.0, now - bucket.last_refill)
        return min(float(self.max_tokens), bucket.tokens + elapsed * self.refill_rate)

    def check(self, identifier: str) -> bool:
        """Try to spend ``cost`` tokens. Returns True if the request is allowed.

        A denied request leaves the bucket untouched.
        """
        now = self._clock()
        bucket = self._buckets.get(identifier)

        if bucket is None:
            if self.cost > self.max_tokens:
                return False
            self._buckets[identifier] = _TokenBucket(float(self.max_tokens - self.cost), now)
            return True

        tokens = self._refilled(bucket, now)
        if tokens >= self.cost:
            bucket.tokens = tokens - self.cost
            bucket.last_refill = now
            return True

        logger.warning(f"Rate limit hit: {identifier} (limiter: {self.name})")
        return False

    def get_remaining(self, identifier: str) -> int:
        """Whole tokens currently available to an identifier."""
        bucket = self._buckets.get(identifier)
        if bucket is None:
            return self.max_tokens
        return int(self._refilled(bucket, self._clock()))

    def reset(self, identifier: str) -> None:
        """Forget an identifier's bucket."""
        self._buckets.pop(identifier, None)

    def sweep(self, max_idle: float = BUCKET_MAX_IDLE) -> int:
        """Evict buckets untouched for more than ``max_idle`` seconds."""
        now = self._clock()
        stale = [k for k, b in self._buckets.items() if now - b.last_refill > max_idle]
        for k in stale:
            del self._buckets[k]
        return len(stale)

    def __len__(self) -> int:
        return len(self._buckets)


class RateLimiters:
    """The preset limiters, created once per process in the app lifespan."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        # 5 attempts, 1 token per minute
        self.auth = RateLimiter(max_tokens=5, refill_rate=1 / 60, clock=clock, name="auth")
        # 10 requests, 1 token per 6 seconds (10 per minute)
        self.tjk = RateLimiter(max_tokens=10, refill_rate=1 / 6, clock=clock, name="tjk")
        # 100 requests, 1 token per second
        self.api = RateLimiter(max_tokens=100, refill_rate=1, clock=clock, name="api")

    def all(self) -> list[RateLimiter]:
        return [self.auth, self.tjk, self.api]

    def sweep(self, max_idle: float = BUCKET_MAX_IDLE) -> int:
        """Evict idle buckets from every limiter. Returns total evicted."""
        evicted = sum(limiter.sweep(max_idle) for limiter in self.all())
        if evicted:
            logger.info(f"Rate limit sweep evicted {evicted} idle buckets")
        return evicted


def get_client_ip(request: Request) -> str:
    """Extract client IP, respecting X-Forwarded-For from the proxy."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def get_rate_limiters(request: Request) -> RateLimiters:
    """FastAPI dependency returning the process's limiters."""
    limiters: Optional[RateLimiters] = getattr(request.app.state, "rate_limiters", None)
    if limiters is None:
        raise RuntimeError("Rate limiters not initialised (app lifespan not run)")
    return limiters


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply the general ``api`` limiter to every /api/ request by client IP.

    Scraping endpoints additionally spend from the ``tjk`` limiter in
    their handlers.
    """

    async def dispatch(self, request, call_next):
        path = request.url.path
        limiters: Optional[RateLimiters] = getattr(request.app.state, "rate_limiters", None)
        if limiters is None or not path.startswith("/api/"):
            return await call_next(request)

        client_ip = get_client_ip(request)
        if not limiters.api.check(client_ip):
            return JSONResponse(
                {"detail": "Rate limit exceeded. Please slow down."},
                status_code=429,
                headers={"Retry-After": str(int(1 / limiters.api.refill_rate))},
            )
        return await call_next(request)
