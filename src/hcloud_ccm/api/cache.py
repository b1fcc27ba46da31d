"""Response caching with TTL support for the rate limited robot API.

Entries hold response data and the time it was fetched, never the
credentials used to fetch it. A miss or an expired entry always goes
upstream through the wrapped client, which authenticates with whatever
credentials are active at that moment. Rotating credentials leaves cached
data alone.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Hashable, Mapping

from hcloud_ccm.api.robot import RobotClient
from hcloud_ccm.config.credentials import get_directory, read_credential_files
from hcloud_ccm.config.settings import DEFAULT_ROBOT_CACHE_TIMEOUT, Settings
from hcloud_ccm.errors import NotFoundError

logger = logging.getLogger(__name__)

SERVER_LIST_KEY = "server_list"


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    fetched_at: float


class TTLCache:
    """Thread-safe in-memory cache whose entries expire after ``ttl`` seconds."""

    def __init__(self, ttl: float = DEFAULT_ROBOT_CACHE_TIMEOUT, clock: Callable[[], float] = time.monotonic):
        """Initialize the cache.

        Args:
            ttl: Freshness window in seconds. 0 disables caching.
            clock: Monotonic time source; tests inject a fake one.
        """
        if ttl < 0:
            raise ValueError("ttl must not be negative")
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Any | None:
        """Return the cached value if it exists and is still fresh, else None."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if now - entry.fetched_at >= self.ttl:
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value, self._clock())

    def invalidate(self, key: Hashable | None = None) -> None:
        """Drop one entry, or all entries if ``key`` is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CachedRobotClient:
    """Robot client that serves server lookups from a TTL cache.

    It is a reload target itself: ``apply`` forwards to the wrapped client.
    Concurrent misses for the same key may each go upstream; the last
    response stored wins.
    """

    def __init__(
        self,
        client: RobotClient,
        ttl: float = DEFAULT_ROBOT_CACHE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.cache = TTLCache(ttl, clock=clock)
        self._stats_lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @property
    def api_family(self):
        return self.client.api_family

    @property
    def credential_files(self):
        return self.client.credential_files

    def apply(self, material: Mapping[str, bytes]) -> bool:
        return self.client.apply(material)

    def _count(self, hit: bool) -> None:
        with self._stats_lock:
            if hit:
                self.hits += 1
            else:
                self.misses += 1

    def server_get_list(self, force: bool = False) -> list[dict]:
        """List dedicated servers, from cache when fresh.

        Every call returns its own deep copy; callers may modify it freely.

        Args:
            force: Skip the cache and refresh it from upstream.
        """
        if not force:
            cached = self.cache.get(SERVER_LIST_KEY)
            if cached is not None:
                self._count(hit=True)
                return copy.deepcopy(cached)

        self._count(hit=False)
        # No cache lock is held during the upstream call
        servers = self.client.server_get_list()
        self.cache.set(SERVER_LIST_KEY, servers)
        logger.debug("Cached %d robot servers", len(servers))
        return copy.deepcopy(servers)

    def server_get(self, server_number: int, force: bool = False) -> dict:
        """Get one dedicated server from the cached server list.

        Raises:
            NotFoundError: If no server has this number.
        """
        for server in self.server_get_list(force=force):
            if server.get("server_number") == server_number:
                return server
        raise NotFoundError(f"robot server {server_number} not found", status_code=404)

    def invalidate(self) -> None:
        self.cache.invalidate()

    def stats(self) -> dict:
        with self._stats_lock:
            return {"hits": self.hits, "misses": self.misses, "entries": len(self.cache)}

    def __repr__(self) -> str:
        return f"CachedRobotClient({self.client!r}, ttl={self.cache.ttl})"


def new_cached_robot_client(
    root_dir: str | Path,
    settings: Settings,
    **client_kwargs: Any,
) -> tuple[CachedRobotClient, bool]:
    """Build the cached robot client from the environment or credential files.

    Credentials from ``ROBOT_USER_NAME``/``ROBOT_PASSWORD`` win. Otherwise the
    client starts without credentials when the credentials directory holds
    none; the caller's watch performs the first load.

    Returns:
        Tuple of (client, credentials_from_files).

    Raises:
        CredentialValidationError: If the environment pair is invalid.
    """
    if settings.robot_user or settings.robot_password:
        client = RobotClient(
            settings.robot_user,
            settings.robot_password,
            endpoint=settings.robot_endpoint,
            debug=settings.debug,
            **client_kwargs,
        )
        return CachedRobotClient(client, ttl=settings.robot_cache_timeout), False

    client = RobotClient(endpoint=settings.robot_endpoint, debug=settings.debug, **client_kwargs)
    directory = get_directory(root_dir)
    if directory.is_dir():
        material = read_credential_files(directory, client.credential_files)
        if material:
            client.apply(material)
    return CachedRobotClient(client, ttl=settings.robot_cache_timeout), True


__all__ = [
    "SERVER_LIST_KEY",
    "CacheEntry",
    "TTLCache",
    "CachedRobotClient",
    "new_cached_robot_client",
]
