"""Bootstrap of the API clients, credential watches and metrics.

``new_cloud`` turns validated settings into running clients. Credentials
given through the environment are fixed for the process lifetime;
credentials read from the secret directory are watched and hot reloaded
unless hot reload is disabled.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Optional

from hcloud_ccm.api.cache import CachedRobotClient, new_cached_robot_client
from hcloud_ccm.api.hcloud import HcloudClient
from hcloud_ccm.config.credentials import HCLOUD_TOKEN_FILE, get_directory, read_credential_files
from hcloud_ccm.config.security import validate_hcloud_token
from hcloud_ccm.config.settings import Settings
from hcloud_ccm.errors import APIError, ConfigError, CredentialError
from hcloud_ccm.hotreload.counters import RELOAD_COUNTERS
from hcloud_ccm.hotreload.orchestrator import WatchRegistration, watch
from hcloud_ccm.hotreload.targets import Reloadable
from hcloud_ccm.metrics.server import MetricsServer

logger = logging.getLogger(__name__)

ERROR_PREFIX = "hcloud/newCloud"


class Cloud:
    """Running clients plus the watches and metrics server that serve them."""

    def __init__(
        self,
        hcloud: HcloudClient,
        robot: Optional[CachedRobotClient] = None,
        credentials_dir: Optional[Path] = None,
    ):
        self.hcloud = hcloud
        self.robot = robot
        self.credentials_dir = credentials_dir
        self.registrations: List[WatchRegistration] = []
        self.metrics_server: Optional[MetricsServer] = None

    @property
    def hot_reload_active(self) -> bool:
        return any(r.is_active for r in self.registrations)

    def reload_counters(self) -> dict:
        return RELOAD_COUNTERS.snapshot()

    def close(self) -> None:
        """Stop watches and the metrics server."""
        for registration in self.registrations:
            registration.stop()
        self.registrations = []
        if self.metrics_server is not None:
            self.metrics_server.stop()
            self.metrics_server = None

    def __enter__(self) -> "Cloud":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _log_reload_error(error: Exception) -> None:
    logger.error("Credential rotation rejected: %s", error)


def _new_hcloud_client(settings: Settings, credentials_dir: Path, **client_kwargs: Any):
    """Build the hcloud client. Returns (client, credentials_from_files)."""
    if settings.hcloud_token:
        is_valid, error = validate_hcloud_token(settings.hcloud_token)
        if not is_valid:
            raise ConfigError(f"{ERROR_PREFIX}: {error}")
        client = HcloudClient(
            settings.hcloud_token,
            endpoint=settings.hcloud_endpoint,
            debug=settings.debug,
            **client_kwargs,
        )
        return client, False

    client = HcloudClient(endpoint=settings.hcloud_endpoint, debug=settings.debug, **client_kwargs)
    if not credentials_dir.is_dir():
        raise ConfigError(
            f"{ERROR_PREFIX}: no token: set HCLOUD_TOKEN or mount {credentials_dir / HCLOUD_TOKEN_FILE}"
        )
    try:
        client.apply(read_credential_files(credentials_dir, client.credential_files))
    except CredentialError as e:
        raise ConfigError(f"{ERROR_PREFIX}: {e.message}") from e
    return client, True


def new_cloud(
    settings: Settings,
    root_dir: str | Path = "/",
    verify: bool = True,
    **client_kwargs: Any,
) -> Cloud:
    """Create the clients and start watches and metrics.

    Args:
        settings: Validated settings.
        root_dir: Root below which ``etc/hetzner-secret`` is looked up.
        verify: Check endpoint and token with one request before returning.
        **client_kwargs: Passed to both clients (``timeout``, ``max_retries``,
            ``backoff``).

    Returns:
        The running Cloud. Close it on shutdown.

    Raises:
        ConfigError: If credentials are missing or invalid.
        APIError: If ``verify`` is set and the hcloud API rejects the request.
        WatcherSetupError: If the credentials directory cannot be watched.
    """
    credentials_dir = get_directory(root_dir)
    hcloud, hcloud_from_files = _new_hcloud_client(settings, credentials_dir, **client_kwargs)

    robot: Optional[CachedRobotClient] = None
    robot_from_files = False
    if settings.robot_enabled or settings.robot_user or settings.robot_password:
        try:
            robot, robot_from_files = new_cached_robot_client(root_dir, settings, **client_kwargs)
        except CredentialError as e:
            raise ConfigError(f"{ERROR_PREFIX}: robot: {e.message}") from e
        if robot.client.credentials is None:
            raise ConfigError(
                f"{ERROR_PREFIX}: robot is enabled but neither ROBOT_USER_NAME/ROBOT_PASSWORD "
                f"nor {credentials_dir}/robot-user and robot-password are set"
            )

    if verify:
        try:
            hcloud.ping()
        except APIError as e:
            raise type(e)(
                f"{ERROR_PREFIX}: {e.message}",
                status_code=e.status_code,
                error_code=e.error_code,
            ) from e

    cloud = Cloud(hcloud, robot, credentials_dir)
    try:
        targets: List[Reloadable] = []
        if hcloud_from_files:
            targets.append(hcloud)
        if robot is not None and robot_from_files:
            targets.append(robot)

        if targets and settings.hot_reload_enabled:
            cloud.registrations.append(
                watch(
                    credentials_dir,
                    targets,
                    on_error=_log_reload_error,
                    debounce=settings.debounce,
                )
            )
        elif targets:
            logger.info("Credential hot reload disabled; %s credentials are fixed", credentials_dir)

        if settings.metrics_enabled:
            host, port = settings.metrics_address
            cloud.metrics_server = MetricsServer(host, port, cached_client=robot)
            cloud.metrics_server.start()
    except Exception:
        cloud.close()
        raise

    return cloud


__all__ = ["ERROR_PREFIX", "Cloud", "new_cloud"]
