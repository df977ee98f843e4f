"""Tests for rate limiter."""

import time
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException

from app.rate_limit import RateLimiter, client_ip


def _mock_request(ip: str = "127.0.0.1") -> MagicMock:
    request = MagicMock()
    request.client.host = ip
    request.headers = {}
    return request


class TestRateLimiter:
    def test_allows_requests_under_limit(self):
        limiter = RateLimiter(max_requests=5, window_seconds=60)
        request = _mock_request()
        for _ in range(5):
            limiter.check(request)

    def test_blocks_requests_over_limit(self):
        limiter = RateLimiter(max_requests=3, window_seconds=60)
        request = _mock_request()
        for _ in range(3):
            limiter.check(request)
        with pytest.raises(HTTPException) as exc_info:
            limiter.check(request)
        assert exc_info.value.status_code == 429

    def test_separate_limits_per_ip(self):
        limiter = RateLimiter(max_requests=2, window_seconds=60)
        req1 = _mock_request("10.0.0.1")
        req2 = _mock_request("10.0.0.2")
        for _ in range(2):
            limiter.check(req1)
            limiter.check(req2)
        with pytest.raises(HTTPException):
            limiter.check(req1)
        with pytest.raises(HTTPException):
            limiter.check(req2)

    def test_window_expiry_resets_counter(self):
        limiter = RateLimiter(max_requests=2, window_seconds=1)
        request = _mock_request()
        limiter.check(request)
        limiter.check(request)
        with pytest.raises(HTTPException):
            limiter.check(request)
        time.sleep(1.1)
        limiter.check(request)

    def test_reset_clears_budget(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        request = _mock_request()
        limiter.check(request)
        limiter.reset()
        limiter.check(request)

    def test_evicts_oldest_ip(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60, max_ips=2)
        for ip in ("10.0.0.1", "10.0.0.2", "10.0.0.3"):
            limiter.check(_mock_request(ip))
        limiter.check(_mock_request("10.0.0.1"))

    def test_uses_forwarded_for_header(self, monkeypatch):
        monkeypatch.setenv("TRUSTED_PROXY_IPS", "10.0.0.1,10.0.0.2")
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        request = _mock_request("10.0.0.1")
        request.headers = {"x-forwarded-for": "192.168.1.100, 10.0.0.1"}
        limiter.check(request)
        with pytest.raises(HTTPException):
            limiter.check(request)
        request2 = _mock_request("10.0.0.2")
        request2.headers = {"x-forwarded-for": "192.168.1.100"}
        with pytest.raises(HTTPException):
            limiter.check(request2)


class TestClientIp:
    def test_untrusted_proxy_header_ignored(self):
        request = _mock_request("203.0.113.5")
        request.headers = {"x-forwarded-for": "1.2.3.4"}
        assert client_ip(request, {"10.0.0.1"}) == "203.0.113.5"

    def test_no_client(self):
        request = MagicMock()
        request.client = None
        assert client_ip(request) == "unknown"
