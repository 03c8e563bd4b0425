"""
Retry policy shared by the transcription and correction gateways.

Attempts are strictly sequential. Network failures and 5xx responses are
retried with exponential backoff; 2xx and 4xx responses are returned as-is.
"""

import logging
import threading
from typing import Callable, Optional

import requests

from .errors import HttpStatusError, SessionCancelled

logger = logging.getLogger(__name__)


BASE_DELAY_MS = 1000
MAX_DELAY_MS = 5000
DEFAULT_MAX_ATTEMPTS = 3


def backoff_delay_ms(attempt: int) -> int:
    """Delay after a failed attempt, attempt indices starting at 0."""
    return min(BASE_DELAY_MS * (2 ** attempt), MAX_DELAY_MS)


def _is_final(response: requests.Response) -> bool:
    return response.status_code < 500


def fetch_with_retry(
    send: Callable[[], requests.Response],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    cancel_event: Optional[threading.Event] = None,
    wait: Optional[Callable[[float], bool]] = None,
    label: str = "request",
) -> requests.Response:
    """
    Call `send` until it yields a non-retriable response.

    Args:
        send: Performs one attempt (must carry its own timeout)
        max_attempts: Total attempts including the first one
        cancel_event: Set by the controller when the session is superseded
        wait: Sleeps for the given seconds; returns True if interrupted.
              Defaults to cancel_event.wait so cancellation cuts backoff short.
        label: Name used in log lines

    Returns:
        The first 2xx/4xx response

    Raises:
        The last network exception, or HttpStatusError for a final 5xx.
        SessionCancelled if cancel_event fires between attempts.
        ValueError if max_attempts is below 1.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    event = cancel_event or threading.Event()
    sleeper = wait or event.wait
    last_error: Optional[Exception] = None

    for attempt in range(max_attempts):
        if event.is_set():
            raise SessionCancelled(label)

        try:
            response = send()
            if _is_final(response):
                return response
            last_error = HttpStatusError(response.status_code, response.text[:300])
            logger.warning("[Retry] %s attempt %d/%d: HTTP %d",
                           label, attempt + 1, max_attempts, response.status_code)
        except requests.RequestException as e:
            last_error = e
            logger.warning("[Retry] %s attempt %d/%d failed: %s",
                           label, attempt + 1, max_attempts, e)

        if attempt < max_attempts - 1:
            if sleeper(backoff_delay_ms(attempt) / 1000.0) or event.is_set():
                raise SessionCancelled(label)

    raise last_error
