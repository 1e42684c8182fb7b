"""Helper utilities.

Shared HTTP session factory, the retry policy applied to outbound
notification calls, and clock helpers used across the engine.
"""

from __future__ import annotations

import datetime as _dt
import logging
import time
from typing import Any, Callable, Dict

import requests
from requests import Response
from tenacity import (after_log, retry, retry_if_exception_type,
                      stop_after_attempt, wait_exponential)


logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


def utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def elapsed_ms(started: float) -> int:
    """Milliseconds since a `time.monotonic()` reading."""
    return int(round((time.monotonic() - started) * 1000))


def get_http_session() -> requests.Session:
    """Return a new HTTP session with sensible defaults.

    The session sets a realistic User-Agent header. Caller is responsible
    for closing the session or letting it be garbage collected.
    """
    session = requests.Session()
    session.headers.update(
        {
            "User-Agent": BROWSER_USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/json;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }
    )
    # Respect environment proxies if configured (requests does this by default)
    return session


class HTTPError(Exception):
    """Raised when an HTTP request fails after retries."""


def _raise_for_status(resp: Response) -> None:
    try:
        resp.raise_for_status()
    except requests.RequestException as e:
        raise HTTPError(str(e)) from e


def retryable_request(method: Callable[[requests.Session, str, Dict[str, Any]], Response]) -> Callable[..., Response]:
    """Decorator factory to apply retry logic to HTTP calls.

    The decorated function must accept a `requests.Session` as its first
    argument, followed by URL and optional kwargs, and return a
    `requests.Response`. Retries are attempted for network errors or
    HTTP errors (status >= 500). A maximum of 3 attempts are made with
    exponential back-off between 1 and 8 seconds.

    Only outbound notification calls use this; page fetches are never
    retried within a cycle.
    """

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=(
            retry_if_exception_type(requests.RequestException)
            | retry_if_exception_type(HTTPError)
        ),
        after=after_log(logger, logging.WARNING),
    )
    def wrapper(session: requests.Session, url: str, **kwargs: Any) -> Response:
        response = method(session, url, **kwargs)
        # If server returned >= 500, raise to trigger retry
        if response.status_code >= 500:
            raise HTTPError(f"Server returned status {response.status_code}")
        _raise_for_status(response)
        return response

    return wrapper


__all__ = [
    "BROWSER_USER_AGENT",
    "HTTPError",
    "elapsed_ms",
    "get_http_session",
    "retryable_request",
    "utcnow",
]
