"""Retry utilities for control-plane reads.

Provides exponential backoff retry logic for transient HTTP failures.
Only connection errors and retryable server codes are retried; 4xx client
errors (auth failures, validation, not found) are returned as-is. Every
backoff sleep goes through the caller's cancel token so a retry never
outlives the deadline.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, TypeVar

import httpx

from ..constants import RETRYABLE_STATUS_CODES
from ..engine.cancellation import CancelToken
from ..engine.classifier import RETRYABLE_EXCEPTIONS

log = logging.getLogger(__name__)

# Default retry configuration
DEFAULT_MAX_RETRIES = 2
DEFAULT_BACKOFF_BASE = 0.5  # seconds
DEFAULT_BACKOFF_MAX = 10.0  # cap on backoff time

T = TypeVar("T")


def retry_request(
    func: Callable[..., T],
    *args: Any,
    token: Optional[CancelToken] = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff_base: float = DEFAULT_BACKOFF_BASE,
    backoff_max: float = DEFAULT_BACKOFF_MAX,
    **kwargs: Any,
) -> T:
    """Call ``func`` with retry logic.

    Usage::

        response = retry_request(client.get, "/v1/projects/p/zones/z", token=token)

    When the token fires during a backoff the last response is returned, or
    the last exception re-raised, without another attempt.
    """
    token = token or CancelToken.never()

    for attempt in range(max_retries + 1):
        try:
            result = func(*args, **kwargs)
        except RETRYABLE_EXCEPTIONS as exc:
            if attempt >= max_retries or not _backoff(
                token, attempt, backoff_base, backoff_max, exc.__class__.__name__, max_retries
            ):
                raise
            continue

        if isinstance(result, httpx.Response) and result.status_code in RETRYABLE_STATUS_CODES:
            if attempt < max_retries and _backoff(
                token, attempt, backoff_base, backoff_max, f"HTTP {result.status_code}", max_retries
            ):
                continue
        return result

    raise RuntimeError("Retry logic exhausted")


def _backoff(
    token: CancelToken,
    attempt: int,
    base: float,
    cap: float,
    reason: str,
    max_retries: int,
) -> bool:
    delay = _compute_delay(attempt, base, cap)
    log.debug(
        "Retrying request (%s, attempt %d/%d, backoff %.1fs)",
        reason,
        attempt + 1,
        max_retries,
        delay,
    )
    return token.sleep(delay)


def _compute_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential backoff: base * 2^attempt, capped at cap."""
    return min(base * (2 ** attempt), cap)
