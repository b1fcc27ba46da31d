"""Retry policy for calls to the hcloud and robot APIs.

The transport turns every failure into one of the categorized ``APIError``
subclasses before the policy sees it. The policy only has to decide whether
that category is worth another attempt: server errors, rate limiting and
connection failures are; rejected credentials and bad requests are not.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from hcloud_ccm.errors import APIError, NetworkError, RateLimitError, ServerError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0  # seconds
DEFAULT_MAX_DELAY = 30.0  # seconds
DEFAULT_TIMEOUT = 30  # seconds

# Request timeout reported by the server
REQUEST_TIMEOUT_STATUS = 408

T = TypeVar("T")

BackoffFunc = Callable[[int], float]
RetryCallback = Callable[[int, APIError, float], None]


def exponential_backoff(
    attempt: int,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> float:
    """Delay before retry number ``attempt + 1``.

    Doubles from ``base_delay`` up to ``max_delay`` and adds up to half of
    that again as jitter, so replicas that failed together spread out.
    """
    delay = min(base_delay * (2**attempt), max_delay)
    return delay * (1.0 + random.random() / 2)


def no_backoff(attempt: int) -> float:
    return 0.0


def is_transient(error: APIError) -> bool:
    """Whether another attempt of the same request may succeed."""
    if isinstance(error, (ServerError, RateLimitError, NetworkError)):
        return True
    return error.status_code == REQUEST_TIMEOUT_STATUS


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently a client retries one request.

    Attributes:
        max_retries: Attempts after the first one. 0 disables retrying.
        backoff: Maps the 0-indexed retry number to a delay in seconds.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    backoff: BackoffFunc = exponential_backoff

    def call(self, func: Callable[[], T], on_retry: RetryCallback | None = None) -> T:
        """Run ``func`` until it succeeds or fails for good.

        Only ``APIError`` is considered; anything else propagates at once.

        Raises:
            APIError: The first non-transient error, or the last transient
                one once ``max_retries`` is used up.
        """
        attempt = 0
        while True:
            try:
                return func()
            except APIError as e:
                if attempt >= self.max_retries or not is_transient(e):
                    raise
                delay = self.backoff(attempt)
                attempt += 1
                logger.debug("Transient API failure (%s), retry %d in %.2fs", e, attempt, delay)
                if on_retry is not None:
                    on_retry(attempt, e, delay)
                if delay > 0:
                    time.sleep(delay)


def retry_request(
    func: Callable[[], T],
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff: BackoffFunc | None = None,
    on_retry: RetryCallback | None = None,
) -> T:
    """Shorthand for ``RetryPolicy(max_retries, backoff).call(func, on_retry)``."""
    policy = RetryPolicy(max_retries, backoff or exponential_backoff)
    return policy.call(func, on_retry=on_retry)


__all__ = [
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_BASE_DELAY",
    "DEFAULT_MAX_DELAY",
    "DEFAULT_TIMEOUT",
    "BackoffFunc",
    "RetryCallback",
    "RetryPolicy",
    "exponential_backoff",
    "no_backoff",
    "is_transient",
    "retry_request",
]
