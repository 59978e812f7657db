"""
Tests for the retrying HTTP helper.

Backoff sleeps are disabled by the no_retry_sleep fixture.
"""

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest

from app.shared.http import backoff_ms, fetch_with_retry, retry_after_ms


class Recorder:
    """MockTransport handler replaying canned responses and counting calls."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        item = self.responses[min(self.calls, len(self.responses)) - 1]
        if isinstance(item, Exception):
            raise item
        return item


# =============================================================================
# fetch_with_retry
# =============================================================================

class TestFetchWithRetry:
    """Tests for fetch_with_retry status handling."""

    async def test_success_first_try(self, mock_http):
        handler = Recorder(httpx.Response(200, json={"ok": True}))
        response = await fetch_with_retry("GET", "https://api.test/x", client=mock_http(handler))

        assert response.status_code == 200
        assert handler.calls == 1

    async def test_retries_server_errors(self, mock_http):
        handler = Recorder(httpx.Response(503), httpx.Response(502), httpx.Response(200))
        response = await fetch_with_retry("GET", "https://api.test/x", client=mock_http(handler))

        assert response.status_code == 200
        assert handler.calls == 3

    async def test_retries_429(self, mock_http):
        handler = Recorder(httpx.Response(429, headers={"Retry-After": "1"}), httpx.Response(200))
        response = await fetch_with_retry("GET", "https://api.test/x", client=mock_http(handler))

        assert response.status_code == 200
        assert handler.calls == 2

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 409, 422])
    async def test_client_errors_not_retried(self, mock_http, status):
        handler = Recorder(httpx.Response(status))
        response = await fetch_with_retry("GET", "https://api.test/x", client=mock_http(handler))

        assert response.status_code == status
        assert handler.calls == 1

    async def test_returns_last_response_when_exhausted(self, mock_http):
        handler = Recorder(httpx.Response(500))
        response = await fetch_with_retry(
            "GET", "https://api.test/x", client=mock_http(handler), max_retries=2
        )

        assert response.status_code == 500
        assert handler.calls == 3

    async def test_transport_error_retried_then_raised(self, mock_http):
        handler = Recorder(httpx.ConnectError("refused"))

        with pytest.raises(httpx.ConnectError):
            await fetch_with_retry("GET", "https://api.test/x", client=mock_http(handler), max_retries=2)
        assert handler.calls == 3

    async def test_transport_error_recovers(self, mock_http):
        handler = Recorder(httpx.ReadTimeout("slow"), httpx.Response(200))
        response = await fetch_with_retry("GET", "https://api.test/x", client=mock_http(handler))

        assert response.status_code == 200
        assert handler.calls == 2

    async def test_no_retries(self, mock_http):
        handler = Recorder(httpx.Response(503))
        response = await fetch_with_retry(
            "POST", "https://api.test/x", client=mock_http(handler), max_retries=0
        )

        assert response.status_code == 503
        assert handler.calls == 1


# =============================================================================
# Backoff helpers
# =============================================================================

class TestRetryAfter:
    """Tests for Retry-After parsing."""

    def test_seconds(self):
        assert retry_after_ms(httpx.Response(429, headers={"Retry-After": "3"})) == 3000

    def test_http_date(self):
        when = datetime.now(timezone.utc) + timedelta(seconds=30)
        response = httpx.Response(429, headers={"Retry-After": format_datetime(when, usegmt=True)})
        assert 25_000 < retry_after_ms(response) <= 30_000

    def test_past_date_is_zero(self):
        when = datetime.now(timezone.utc) - timedelta(minutes=5)
        response = httpx.Response(503, headers={"Retry-After": format_datetime(when, usegmt=True)})
        assert retry_after_ms(response) == 0

    def test_missing_or_garbage(self):
        assert retry_after_ms(httpx.Response(429)) is None
        assert retry_after_ms(httpx.Response(429, headers={"Retry-After": "soon"})) is None


class TestBackoff:
    """Tests for exponential backoff."""

    def test_doubles_without_jitter(self):
        assert [backoff_ms(a, 1000, jitter=False) for a in range(3)] == [1000, 2000, 4000]

    def test_jitter_bounded(self):
        for _ in range(20):
            assert 2000 <= backoff_ms(1, 1000) <= 2500
