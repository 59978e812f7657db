"""
HTTP client with retry and exponential backoff.

Generic wrapper used for every outbound provider API call.

Behaviour:
- 2xx and any status we do not know about are returned immediately
- 400/401/403/404/409/422 are returned immediately (caller branches on status)
- 429/5xx gateway errors are retried, honouring Retry-After
- Transport errors and timeouts are retried, then re-raised
"""

import asyncio
import logging
import random
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})
NON_RETRYABLE_STATUS = frozenset({400, 401, 403, 404, 409, 422})

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_TIMEOUT_MS = 15000


def retry_after_ms(response: httpx.Response) -> Optional[float]:
    """
    Parse a Retry-After header into milliseconds.

    Accepts both forms allowed by RFC 9110: delay-seconds and HTTP-date.
    Returns None when the header is absent or unparseable.
    """
    value = response.headers.get("Retry-After")
    if not value:
        return None

    value = value.strip()
    if value.isdigit():
        return int(value) * 1000.0

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    delta = (when - datetime.now(timezone.utc)).total_seconds() * 1000
    return max(0.0, delta)


async def _wait(delay_ms: float) -> None:
    await asyncio.sleep(delay_ms / 1000)


def backoff_ms(attempt: int, base_delay_ms: float, jitter: bool = True) -> float:
    """Exponential backoff: base * 2^attempt, plus up to base/2 jitter."""
    delay = base_delay_ms * (2 ** attempt)
    if jitter:
        delay += random.random() * base_delay_ms * 0.5
    return delay


async def fetch_with_retry(
    method: str,
    url: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
    timeout_ms: float = DEFAULT_TIMEOUT_MS,
    **request_kwargs,
) -> httpx.Response:
    """
    Send a request, retrying transient failures.

    Args:
        method: HTTP method
        url: Absolute URL
        client: Optional shared AsyncClient (a short-lived one is used otherwise)
        max_retries: Retries after the first attempt
        base_delay_ms: Base backoff delay, doubled per attempt
        timeout_ms: Per-attempt timeout
        **request_kwargs: Passed through to httpx (headers, params, json, data, ...)

    Returns:
        The first non-retryable response, or the last response once retries
        are exhausted.

    Raises:
        httpx.TransportError: When every attempt failed at the transport level
    """
    timeout = httpx.Timeout(timeout_ms / 1000)
    last_error: Optional[Exception] = None

    for attempt in range(max_retries + 1):
        try:
            if client is not None:
                response = await client.request(method, url, timeout=timeout, **request_kwargs)
            else:
                async with httpx.AsyncClient(timeout=timeout) as own_client:
                    response = await own_client.request(method, url, **request_kwargs)
        except httpx.TransportError as e:
            last_error = e
            if attempt < max_retries:
                delay = backoff_ms(attempt, base_delay_ms, jitter=False)
                logger.warning(
                    f"HTTP error fetching {url}: {e!r}, "
                    f"retry {attempt + 1}/{max_retries} in {delay:.0f}ms"
                )
                await _wait(delay)
                continue
            break

        if response.is_success or response.status_code in NON_RETRYABLE_STATUS:
            return response

        if response.status_code in RETRYABLE_STATUS and attempt < max_retries:
            delay = retry_after_ms(response)
            if delay is None:
                delay = backoff_ms(attempt, base_delay_ms)
            logger.warning(
                f"HTTP {response.status_code} from {url}, "
                f"retry {attempt + 1}/{max_retries} in {delay:.0f}ms"
            )
            await _wait(delay)
            continue

        return response

    if last_error is not None:
        raise last_error
    raise httpx.TransportError(f"Failed to fetch {url} after {max_retries} retries")
