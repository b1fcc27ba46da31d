"""JSON-over-HTTP request helper shared by the API clients."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from hcloud_ccm._version import __version__
from hcloud_ccm.api.retry import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT,
    BackoffFunc,
    RetryPolicy,
    exponential_backoff,
)
from hcloud_ccm.config.audit import is_audit_enabled, log_api_request
from hcloud_ccm.errors import APIError, NetworkError, categorize_http_error

logger = logging.getLogger(__name__)

USER_AGENT = f"hcloud-ccm/{__version__}"


def build_url(endpoint: str, path: str, params: dict | None = None) -> str:
    """Join ``endpoint`` and ``path`` and append non-empty query parameters."""
    url = endpoint.rstrip("/") + "/" + path.lstrip("/")
    if params:
        query = {k: v for k, v in params.items() if v is not None and v != ""}
        if query:
            url += "?" + urlencode(query, doseq=True)
    return url


def _open(req: Request, timeout: float) -> bytes:
    """Perform one attempt, mapping every failure to an ``APIError``."""
    try:
        with urlopen(req, timeout=timeout) as response:
            return response.read()
    except HTTPError as e:
        body = e.read() if e.fp is not None else None
        raise categorize_http_error(e.code, str(e.reason), body) from None
    except URLError as e:
        raise NetworkError(f"{req.get_method()} {req.full_url}: {e.reason}") from e
    except (TimeoutError, ConnectionError) as e:
        raise NetworkError(f"{req.get_method()} {req.full_url}: {e}") from e


def send_request(
    url: str,
    authorization: Callable[[], str],
    method: str = "GET",
    label: str = "",
    timeout: float = DEFAULT_TIMEOUT,
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff: BackoffFunc | None = None,
    debug: bool = False,
) -> Any:
    """Send one request and decode its JSON body, retrying transient failures.

    ``authorization`` is called once per attempt to build the
    ``Authorization`` header, so an attempt made after a credential rotation
    uses the rotated credential, and each attempt sees one consistent value.

    Args:
        url: Absolute request URL.
        authorization: Returns the full Authorization header value.
        method: HTTP method.
        label: Endpoint name for logs and the audit trail (no credentials).
        timeout: Per-attempt socket timeout in seconds.
        max_retries: Maximum number of retry attempts.
        backoff: Optional backoff override (see ``RetryPolicy``).
        debug: Log every request at DEBUG level.

    Returns:
        Decoded JSON response.

    Raises:
        APIError: Categorized by status code (AuthenticationError for 401, ...).
        NetworkError: If no response was received.
    """
    label = label or url
    policy = RetryPolicy(max_retries, backoff or exponential_backoff)
    retries = 0

    def attempt() -> bytes:
        req = Request(
            url,
            method=method,
            headers={
                "Authorization": authorization(),
                "Accept": "application/json",
                "User-Agent": USER_AGENT,
            },
        )
        if debug:
            logger.debug("%s %s (attempt %d)", method, url, retries + 1)
        return _open(req, timeout)

    def count_retry(number: int, error: APIError, delay: float) -> None:
        nonlocal retries
        retries = number

    try:
        body = policy.call(attempt, on_retry=count_retry)
    except APIError as e:
        if is_audit_enabled():
            log_api_request(
                endpoint=label,
                method=method,
                success=False,
                status_code=e.status_code,
                error=e.message,
                retry_count=retries,
            )
        raise

    if is_audit_enabled():
        log_api_request(
            endpoint=label,
            method=method,
            success=True,
            status_code=200,
            retry_count=retries,
        )
    if not body:
        return None
    try:
        return json.loads(body.decode("utf-8"))
    except ValueError as e:
        raise APIError(f"{method} {url}: invalid JSON response: {e}") from e


__all__ = ["USER_AGENT", "build_url", "send_request"]
