"""Per-IP rate limiting for unauthenticated endpoints.

Counts are kept in Redis when ``REDIS_URL`` is reachable so several API
processes share one budget; otherwise a per-process sliding window is used.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections import OrderedDict, deque

import redis
from fastapi import HTTPException, Request

from app.config import settings

logger = logging.getLogger(__name__)

_REDIS_RETRY_SECONDS = 5
_RATE_LIMIT_KEY_PREFIX = "dployr_rate_limit"


def client_ip(request: Request, trusted_proxies: set[str] | None = None) -> str:
    """Return the caller address, honouring X-Forwarded-For only from trusted proxies."""
    if request.client is None:
        return "unknown"
    immediate_ip = request.client.host
    if trusted_proxies and immediate_ip in trusted_proxies:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return immediate_ip


class RateLimiter:
    """Per-IP request budget over a fixed window."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        max_ips: int = 10_000,
        name: str | None = None,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_ips = max_ips
        self.name = name or f"limiter-{id(self)}"
        self._requests: OrderedDict[str, deque[float]] = OrderedDict()
        self._lock = threading.Lock()
        self._trusted_proxies = {ip.strip() for ip in os.getenv("TRUSTED_PROXY_IPS", "").split(",") if ip.strip()}
        self._redis_url: str | None = None
        self._redis_client: redis.Redis | None = None
        self._redis_retry_after = 0.0

    def client_ip(self, request: Request) -> str:
        return client_ip(request, self._trusted_proxies)

    def _redis_key(self, ip: str) -> str:
        window = int(time.time() // self.window_seconds)
        return f"{_RATE_LIMIT_KEY_PREFIX}:{self.name}:{ip}:{window}"

    def _drop_redis(self) -> None:
        self._redis_retry_after = time.time() + _REDIS_RETRY_SECONDS
        self._redis_client = None

    def _get_redis_client(self) -> redis.Redis | None:
        redis_url = os.getenv("REDIS_URL")
        if not redis_url:
            self._redis_url = None
            self._redis_client = None
            return None
        if self._redis_url != redis_url:
            self._redis_client = None
        self._redis_url = redis_url
        if self._redis_client is not None:
            return self._redis_client
        if time.time() < self._redis_retry_after:
            return None
        try:
            client = redis.Redis.from_url(redis_url)
            client.ping()
        except redis.RedisError:
            logger.warning("Rate limiter %s: Redis unavailable, using in-memory window", self.name)
            self._drop_redis()
            return None
        self._redis_client = client
        return client

    def _redis_count(self, ip: str) -> int | None:
        client = self._get_redis_client()
        if client is None:
            return None
        key = self._redis_key(ip)
        try:
            pipe = client.pipeline()
            pipe.incr(key)
            pipe.expire(key, self.window_seconds)
            count, _ = pipe.execute()
        except redis.RedisError:
            self._drop_redis()
            return None
        return int(count)

    def _check_in_memory(self, ip: str) -> bool:
        now = time.time()
        cutoff = now - self.window_seconds
        with self._lock:
            timestamps = self._requests.get(ip)
            if timestamps is None:
                timestamps = deque()
                self._requests[ip] = timestamps
            else:
                self._requests.move_to_end(ip)

            while timestamps and timestamps[0] <= cutoff:
                timestamps.popleft()

            if len(timestamps) >= self.max_requests:
                return False
            timestamps.append(now)

            while len(self._requests) > self.max_ips:
                self._requests.popitem(last=False)
        return True

    def check(self, request: Request) -> None:
        """Raise 429 if the caller exhausted its budget."""
        ip = self.client_ip(request)
        count = self._redis_count(ip)
        allowed = count <= self.max_requests if count is not None else self._check_in_memory(ip)
        if not allowed:
            logger.warning("Rate limit %s exceeded for %s", self.name, ip)
            raise HTTPException(
                status_code=429,
                detail="Too many requests. Please try again later.",
            )

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()
        client = self._get_redis_client()
        if not client:
            return
        try:
            keys = list(client.scan_iter(match=f"{_RATE_LIMIT_KEY_PREFIX}:{self.name}:*"))
            if keys:
                client.delete(*keys)
        except redis.RedisError:
            self._drop_redis()


webhook_limiter = RateLimiter(
    max_requests=settings.webhook_rate_limit_requests,
    window_seconds=settings.webhook_rate_limit_window_seconds,
    name="webhook",
)
