"""Client for the hcloud API, authenticated with a rotatable bearer token.

The token lives behind a lock. ``apply`` validates new material before it
takes the lock, so an invalid file never touches the active token, and
every request snapshots the header once per attempt through the same lock.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping

from hcloud_ccm.api.retry import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT, BackoffFunc
from hcloud_ccm.api.transport import build_url, send_request
from hcloud_ccm.config.credentials import HCLOUD_TOKEN_FILE, require_credential
from hcloud_ccm.config.security import mask_token, validate_hcloud_token
from hcloud_ccm.config.settings import DEFAULT_HCLOUD_ENDPOINT
from hcloud_ccm.errors import (
    CredentialValidationError,
    InvalidProviderIDError,
    NotFoundError,
)
from hcloud_ccm.hotreload.counters import APIFamily, increment

logger = logging.getLogger(__name__)

PROVIDER_ID_PREFIX = "hcloud://"


def parse_provider_id(provider_id: str) -> int:
    """Parse a node provider ID (``hcloud://<server id>``).

    Raises:
        InvalidProviderIDError: If the ID has another scheme or a non-numeric id.
    """
    if not provider_id.startswith(PROVIDER_ID_PREFIX):
        raise InvalidProviderIDError(
            f"providerID does not have the expected prefix {PROVIDER_ID_PREFIX}: {provider_id}"
        )
    raw_id = provider_id[len(PROVIDER_ID_PREFIX):]
    try:
        return int(raw_id)
    except ValueError:
        raise InvalidProviderIDError(
            f"providerID contains invalid server id: {provider_id}"
        ) from None


class HcloudClient:
    """hcloud API client whose bearer token can be swapped at runtime."""

    api_family = APIFamily.HCLOUD
    credential_files = (HCLOUD_TOKEN_FILE,)

    def __init__(
        self,
        token: str | None = None,
        endpoint: str = DEFAULT_HCLOUD_ENDPOINT,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff: BackoffFunc | None = None,
        debug: bool = False,
    ):
        """Initialize the client.

        Args:
            token: Initial token, validated like any applied token. ``None``
                leaves the client without credentials until the first apply.
            endpoint: API base URL.
            timeout: Per-request socket timeout in seconds.
            max_retries: Retries for transient failures.
            backoff: Optional backoff override, e.g. ``no_backoff`` in tests.
            debug: Log every request.

        Raises:
            CredentialValidationError: If ``token`` is not a valid hcloud token.
        """
        if token is not None:
            self._validate(token)
        self._token = token
        self._lock = threading.Lock()
        self.endpoint = endpoint
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff
        self.debug = debug

    @staticmethod
    def _validate(token: str) -> None:
        is_valid, error = validate_hcloud_token(token)
        if not is_valid:
            raise CredentialValidationError(error or "invalid token")

    @property
    def token(self) -> str | None:
        with self._lock:
            return self._token

    def set_token(self, token: str) -> bool:
        """Validate and atomically install ``token``.

        Returns:
            True if the token changed (and the reload counter was bumped).

        Raises:
            CredentialValidationError: If the token is invalid; nothing changes.
        """
        self._validate(token)
        with self._lock:
            if token == self._token:
                return False
            self._token = token
        increment(self.api_family)
        logger.info("hcloud token set to %s", mask_token(token))
        return True

    def apply(self, material: Mapping[str, bytes]) -> bool:
        """Install the token from the ``hcloud`` credential file."""
        return self.set_token(require_credential(material, HCLOUD_TOKEN_FILE))

    def authorization_header(self) -> str:
        token = self.token
        if token is None:
            raise CredentialValidationError("no hcloud token has been loaded")
        return f"Bearer {token}"

    def _get(self, path: str, params: dict | None = None) -> Any:
        return send_request(
            build_url(self.endpoint, path, params),
            self.authorization_header,
            label=path,
            timeout=self.timeout,
            max_retries=self.max_retries,
            backoff=self.backoff,
            debug=self.debug,
        )

    def _get_all(self, path: str, key: str, params: dict | None = None) -> list[dict]:
        """Follow ``meta.pagination.next_page`` and concatenate ``key`` lists."""
        results: list[dict] = []
        page: int | None = 1
        while page:
            query = dict(params or {})
            query["page"] = page
            query.setdefault("per_page", 50)
            data = self._get(path, query) or {}
            results.extend(data.get(key) or [])
            pagination = (data.get("meta") or {}).get("pagination") or {}
            page = pagination.get("next_page")
        return results

    def ping(self) -> None:
        """Verify endpoint and token with one cheap request."""
        self._get("/servers", {"per_page": 1})

    def server_get(self, server_id: int) -> dict | None:
        """Get a server by ID. Returns None if it does not exist."""
        try:
            data = self._get(f"/servers/{server_id}")
        except NotFoundError:
            return None
        return (data or {}).get("server")

    def server_get_by_name(self, name: str) -> dict | None:
        """Get a server by name. Returns None if it does not exist."""
        servers = self.server_list(name=name)
        return servers[0] if servers else None

    def server_list(self, name: str | None = None, label_selector: str | None = None) -> list[dict]:
        return self._get_all(
            "/servers", "servers", {"name": name, "label_selector": label_selector}
        )

    def network_get(self, network_id: int) -> dict | None:
        """Get a network by ID. Returns None if it does not exist."""
        try:
            data = self._get(f"/networks/{network_id}")
        except NotFoundError:
            return None
        return (data or {}).get("network")

    def load_balancer_list(
        self, name: str | None = None, label_selector: str | None = None
    ) -> list[dict]:
        return self._get_all(
            "/load_balancers", "load_balancers", {"name": name, "label_selector": label_selector}
        )

    def instance_exists(self, provider_id: str) -> bool:
        """Check whether the server behind a node's provider ID exists."""
        return self.server_get(parse_provider_id(provider_id)) is not None

    def __repr__(self) -> str:
        return f"HcloudClient(endpoint={self.endpoint!r}, token={mask_token(self.token)!r})"


__all__ = ["PROVIDER_ID_PREFIX", "HcloudClient", "parse_provider_id"]
