"""Single retry for transient provider errors."""

from __future__ import annotations

import asyncio

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 529}

_TRANSIENT_MARKERS = ("rate limit", "overloaded", "timed out", "timeout", "connection reset", "econnreset")


def is_transient_error(exc: BaseException) -> bool:
    """True for errors worth one more attempt: throttling, 5xx, dropped connections."""
    if isinstance(exc, asyncio.CancelledError):
        return False

    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    if status in TRANSIENT_STATUS_CODES:
        return True

    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, ConnectionError, TimeoutError)):
        return True

    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


transient_retry = retry(
    retry=retry_if_exception(is_transient_error),
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    reraise=True,
)
