"""Client for the robot (dedicated server) API, authenticated with basic auth.

User name and password are stored as one tuple and replaced together, so a
request can never pair the new user with the old password.
"""

from __future__ import annotations

import base64
import logging
import threading
from typing import Any, Mapping

from hcloud_ccm.api.retry import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT, BackoffFunc
from hcloud_ccm.api.transport import build_url, send_request
from hcloud_ccm.config.credentials import (
    ROBOT_PASSWORD_FILE,
    ROBOT_USER_FILE,
    decode_credential,
)
from hcloud_ccm.config.security import mask_token, validate_robot_credentials
from hcloud_ccm.config.settings import DEFAULT_ROBOT_ENDPOINT
from hcloud_ccm.errors import CredentialValidationError
from hcloud_ccm.hotreload.counters import APIFamily, increment

logger = logging.getLogger(__name__)


def _unwrap_server(item: Any) -> dict:
    """Robot wraps every server object as ``{"server": {...}}``."""
    if isinstance(item, dict) and isinstance(item.get("server"), dict):
        return item["server"]
    return item


class RobotClient:
    """Robot API client whose basic-auth credentials can be swapped at runtime."""

    api_family = APIFamily.ROBOT
    credential_files = (ROBOT_USER_FILE, ROBOT_PASSWORD_FILE)

    def __init__(
        self,
        username: str | None = None,
        password: str | None = None,
        endpoint: str = DEFAULT_ROBOT_ENDPOINT,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff: BackoffFunc | None = None,
        debug: bool = False,
    ):
        if username is not None or password is not None:
            self._validate(username, password)
            credentials: tuple[str, str] | None = (username, password)  # type: ignore[assignment]
        else:
            credentials = None
        self._credentials = credentials
        self._lock = threading.Lock()
        self.endpoint = endpoint
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff
        self.debug = debug

    @staticmethod
    def _validate(username: str | None, password: str | None) -> None:
        is_valid, error = validate_robot_credentials(username, password)
        if not is_valid:
            raise CredentialValidationError(error or "invalid robot credentials")

    @property
    def credentials(self) -> tuple[str, str] | None:
        with self._lock:
            return self._credentials

    @property
    def username(self) -> str | None:
        credentials = self.credentials
        return credentials[0] if credentials else None

    def set_credentials(self, username: str, password: str) -> bool:
        """Validate and atomically install a user name and password pair.

        Returns:
            True if the pair changed (and the reload counter was bumped).

        Raises:
            CredentialValidationError: If either half is empty; nothing changes.
        """
        self._validate(username, password)
        with self._lock:
            if (username, password) == self._credentials:
                return False
            self._credentials = (username, password)
        increment(self.api_family)
        logger.info("robot credentials set for user %s", mask_token(username, 2, 2))
        return True

    def apply(self, material: Mapping[str, bytes]) -> bool:
        """Install credentials from the ``robot-user`` and ``robot-password`` files.

        Both files must be present and non-empty.
        """
        username = decode_credential(material.get(ROBOT_USER_FILE))
        password = decode_credential(material.get(ROBOT_PASSWORD_FILE))
        return self.set_credentials(username, password)

    def authorization_header(self) -> str:
        credentials = self.credentials
        if credentials is None:
            raise CredentialValidationError("no robot credentials have been loaded")
        encoded = base64.b64encode(f"{credentials[0]}:{credentials[1]}".encode("utf-8"))
        return f"Basic {encoded.decode('ascii')}"

    def _get(self, path: str) -> Any:
        return send_request(
            build_url(self.endpoint, path),
            self.authorization_header,
            label=f"robot{path}",
            timeout=self.timeout,
            max_retries=self.max_retries,
            backoff=self.backoff,
            debug=self.debug,
        )

    def server_get_list(self) -> list[dict]:
        """List all dedicated servers of the account."""
        data = self._get("/server") or []
        return [_unwrap_server(item) for item in data]

    def server_get(self, server_number: int) -> dict:
        """Get one dedicated server.

        Raises:
            NotFoundError: If the server does not exist.
        """
        return _unwrap_server(self._get(f"/server/{server_number}"))

    def __repr__(self) -> str:
        return f"RobotClient(endpoint={self.endpoint!r}, user={self.username!r})"


__all__ = ["RobotClient"]
