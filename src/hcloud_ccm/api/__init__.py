"""API clients and caching.

Modules:
    hcloud: hcloud API client (bearer token)
    robot: Robot API client (basic auth)
    cache: TTL cache and the cached robot client
    transport: JSON-over-HTTP requests with categorized errors
    retry: Backoff and retry for transient failures
"""

from hcloud_ccm.api.cache import (
    CachedRobotClient,
    TTLCache,
    new_cached_robot_client,
)
from hcloud_ccm.api.hcloud import HcloudClient, parse_provider_id
from hcloud_ccm.api.retry import RetryPolicy, no_backoff, retry_request
from hcloud_ccm.api.robot import RobotClient

__all__ = [
    # Clients
    "HcloudClient",
    "RobotClient",
    "parse_provider_id",
    # Cache
    "TTLCache",
    "CachedRobotClient",
    "new_cached_robot_client",
    # Retry
    "RetryPolicy",
    "retry_request",
    "no_backoff",
]
