"""
MailShield Security Utilities

- Webhook HMAC-SHA256 signing and verification
- Per-key rate limiting (fixed window, sliding window, token bucket)
- Rate limiting middleware for the API
"""

import hmac
import json
import time
import hashlib
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .cache import Clock, TTLCache
from .constants import (
    WEBHOOK_FUTURE_SKEW_SECONDS,
    WEBHOOK_SIGNATURE_HEADER,
    WEBHOOK_TIMESTAMP_HEADER,
    WEBHOOK_TOLERANCE_SECONDS,
)
from .exceptions import WebhookSignatureError

logger = logging.getLogger(__name__)


# ============================================================================
# WEBHOOK SIGNATURES
# ============================================================================

SIGNATURE_PATTERN = re.compile(r"^[a-f0-9]{64}$")


def generate_signature(payload: str, secret: str, timestamp: str) -> str:
    """HMAC-SHA256 hex digest over ``"{timestamp}.{payload}"``."""
    signed_payload = f"{timestamp}.{payload}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def verify_signature(payload: str, signature: str, secret: str, timestamp: str) -> bool:
    """Constant-time signature check; the signature must be 64 lowercase hex chars."""
    if not isinstance(signature, str) or not SIGNATURE_PATTERN.match(signature):
        return False
    expected = generate_signature(payload, secret, timestamp)
    return hmac.compare_digest(expected, signature)


def verify_webhook_timestamp(
    timestamp: str,
    tolerance_seconds: int = WEBHOOK_TOLERANCE_SECONDS,
    future_skew_seconds: int = WEBHOOK_FUTURE_SKEW_SECONDS,
    now: Optional[float] = None,
) -> bool:
    """Accept timestamps no older than the tolerance and not too far ahead."""
    try:
        ts = int(timestamp)
    except (TypeError, ValueError):
        return False
    if ts <= 0:
        return False

    current = int(now if now is not None else time.time())
    if current - ts > tolerance_seconds:
        return False
    if ts - current > future_skew_seconds:
        return False
    return True


def verify_webhook_request(
    body: str,
    signature: str,
    timestamp: str,
    secret: str,
    tolerance_seconds: int = WEBHOOK_TOLERANCE_SECONDS,
    future_skew_seconds: int = WEBHOOK_FUTURE_SKEW_SECONDS,
    now: Optional[float] = None,
) -> None:
    """
    Verify an incoming webhook.

    Raises:
        WebhookSignatureError: TIMESTAMP_INVALID if the timestamp is stale or
            malformed, INVALID_SIGNATURE if the HMAC does not match.
    """
    if not verify_webhook_timestamp(timestamp, tolerance_seconds, future_skew_seconds, now):
        raise WebhookSignatureError(
            "Webhook timestamp too old or invalid",
            WebhookSignatureError.TIMESTAMP_INVALID,
        )
    if not verify_signature(body, signature, secret, timestamp):
        raise WebhookSignatureError(
            "Webhook signature verification failed",
            WebhookSignatureError.INVALID_SIGNATURE,
        )


def parse_and_verify_webhook(
    body: str,
    signature: str,
    timestamp: str,
    secret: str,
    tolerance_seconds: int = WEBHOOK_TOLERANCE_SECONDS,
    future_skew_seconds: int = WEBHOOK_FUTURE_SKEW_SECONDS,
    now: Optional[float] = None,
) -> Dict[str, Any]:
    """Verify then decode the JSON body ``{"event", "data", "timestamp"}``."""
    verify_webhook_request(body, signature, timestamp, secret, tolerance_seconds, future_skew_seconds, now)
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        raise WebhookSignatureError(
            "Invalid webhook payload format",
            WebhookSignatureError.INVALID_PAYLOAD,
        )
    if not isinstance(payload, dict):
        raise WebhookSignatureError(
            "Webhook payload must be a JSON object",
            WebhookSignatureError.INVALID_PAYLOAD,
        )
    return payload


def create_webhook_payload(
    event: str,
    data: Any,
    secret: str,
    now: Optional[float] = None,
) -> Dict[str, Any]:
    """Build a signed webhook: ``{"headers": {...}, "body": str}``."""
    timestamp = str(int(now if now is not None else time.time()))
    body = json.dumps({"event": event, "data": data, "timestamp": timestamp})
    signature = generate_signature(body, secret, timestamp)
    return {
        "headers": {
            WEBHOOK_SIGNATURE_HEADER: signature,
            WEBHOOK_TIMESTAMP_HEADER: timestamp,
            "content-type": "application/json",
        },
        "body": body,
    }


# ============================================================================
# RATE LIMITING
# ============================================================================

class RateLimitAlgorithm(str, Enum):
    FIXED = "fixed"
    SLIDING = "sliding"
    TOKEN_BUCKET = "token_bucket"


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    limit: int
    reset_after: float
    retry_after: Optional[float] = None


@dataclass
class _Window:
    count: int = 0
    started_at: float = 0.0
    timestamps: List[float] = field(default_factory=list)
    tokens: float = 0.0
    last_refill: float = 0.0


class RateLimiter:
    """
    In-memory per-key rate limiter.

    Per-key state lives in an injected TTLCache, so idle keys expire on
    their own and tests can drive time through the cache clock.
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: float = 60.0,
        algorithm: RateLimitAlgorithm = RateLimitAlgorithm.SLIDING,
        refill_rate: Optional[float] = None,
        burst_size: Optional[int] = None,
        cache: Optional[TTLCache] = None,
        clock: Optional[Clock] = None,
    ):
        if max_requests <= 0 or window_seconds <= 0:
            raise ValueError("max_requests and window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.algorithm = RateLimitAlgorithm(algorithm)
        # Token bucket: capacity = burst_size, refill in tokens per second
        self.burst_size = burst_size or max_requests
        self.refill_rate = refill_rate or (max_requests / window_seconds)
        entry_ttl = max(window_seconds, self.burst_size / self.refill_rate)
        self._cache: TTLCache = cache or TTLCache(entry_ttl, clock=clock)
        self._ttl = entry_ttl

    def check(self, key: str) -> RateLimitResult:
        """Consume one request for key and report whether it is allowed."""
        now = self._cache.now()
        if self.algorithm == RateLimitAlgorithm.FIXED:
            return self._check_fixed(key, now)
        if self.algorithm == RateLimitAlgorithm.TOKEN_BUCKET:
            return self._check_token_bucket(key, now)
        return self._check_sliding(key, now)

    def is_allowed(self, key: str) -> bool:
        return self.check(key).allowed

    def get_remaining(self, key: str) -> int:
        """Remaining requests for key without consuming one."""
        entry = self._cache.get(key)
        if entry is None:
            return self.burst_size if self.algorithm == RateLimitAlgorithm.TOKEN_BUCKET else self.max_requests
        now = self._cache.now()
        if self.algorithm == RateLimitAlgorithm.FIXED:
            if now - entry.started_at >= self.window_seconds:
                return self.max_requests
            return max(0, self.max_requests - entry.count)
        if self.algorithm == RateLimitAlgorithm.TOKEN_BUCKET:
            return int(self._refilled(entry, now))
        cutoff = now - self.window_seconds
        return max(0, self.max_requests - len([t for t in entry.timestamps if t > cutoff]))

    def reset(self, key: str) -> None:
        self._cache.delete(key)

    def _check_fixed(self, key: str, now: float) -> RateLimitResult:
        entry = self._cache.get(key)
        if entry is None or now - entry.started_at >= self.window_seconds:
            entry = _Window(count=0, started_at=now)

        reset_after = entry.started_at + self.window_seconds - now
        if entry.count >= self.max_requests:
            return RateLimitResult(False, 0, self.max_requests, reset_after, retry_after=reset_after)

        entry.count += 1
        self._cache.set(key, entry, ttl_seconds=max(reset_after, 0.001))
        return RateLimitResult(True, self.max_requests - entry.count, self.max_requests, reset_after)

    def _check_sliding(self, key: str, now: float) -> RateLimitResult:
        entry = self._cache.get(key) or _Window(started_at=now)
        cutoff = now - self.window_seconds
        entry.timestamps = [t for t in entry.timestamps if t > cutoff]

        if len(entry.timestamps) >= self.max_requests:
            retry_after = entry.timestamps[0] + self.window_seconds - now
            self._cache.set(key, entry, ttl_seconds=self.window_seconds)
            return RateLimitResult(False, 0, self.max_requests, retry_after, retry_after=retry_after)

        entry.timestamps.append(now)
        self._cache.set(key, entry, ttl_seconds=self.window_seconds)
        reset_after = entry.timestamps[0] + self.window_seconds - now
        return RateLimitResult(
            True, self.max_requests - len(entry.timestamps), self.max_requests, reset_after
        )

    def _check_token_bucket(self, key: str, now: float) -> RateLimitResult:
        entry = self._cache.get(key)
        if entry is None:
            entry = _Window(tokens=float(self.burst_size), last_refill=now)
        else:
            entry.tokens = self._refilled(entry, now)
            entry.last_refill = now

        if entry.tokens < 1:
            retry_after = (1 - entry.tokens) / self.refill_rate
            self._cache.set(key, entry, ttl_seconds=self._ttl)
            return RateLimitResult(False, 0, self.burst_size, retry_after, retry_after=retry_after)

        entry.tokens -= 1
        self._cache.set(key, entry, ttl_seconds=self._ttl)
        reset_after = (self.burst_size - entry.tokens) / self.refill_rate
        return RateLimitResult(True, int(entry.tokens), self.burst_size, reset_after)

    def _refilled(self, entry: _Window, now: float) -> float:
        elapsed = max(0.0, now - entry.last_refill)
        return min(float(self.burst_size), entry.tokens + elapsed * self.refill_rate)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Rate limiting middleware for FastAPI.

    Limits requests per client IP.
    """

    EXEMPT_PATHS = ("/health", "/api/v1/health")

    def __init__(self, app, limiter: Optional[RateLimiter] = None,
                 key_func: Optional[Callable[[Request], str]] = None):
        super().__init__(app)
        self.limiter = limiter or RateLimiter()
        self.key_func = key_func or _client_ip

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        client_key = self.key_func(request)
        result = self.limiter.check(client_key)
        if not result.allowed:
            retry_after = max(1, int(round(result.retry_after or 1)))
            logger.warning(f"Rate limit exceeded for {client_key}")
            return JSONResponse(
                status_code=429,
                content={
                    "detail": "Rate limit exceeded. Please slow down.",
                    "retry_after": retry_after,
                },
                headers={"Retry-After": str(retry_after)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        return response


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
