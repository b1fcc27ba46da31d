"""Credential hot reload.

Modules:
    counters: Process-wide reload counters per API family
    targets: The Reloadable capability clients implement
    watcher: Debounced filesystem notifications for one directory
    orchestrator: watch() binding a directory to reloadable clients
"""

from hcloud_ccm.hotreload.counters import (
    RELOAD_COUNTERS,
    APIFamily,
    get_hcloud_reload_counter,
    get_reload_count,
    get_robot_reload_counter,
)
from hcloud_ccm.hotreload.orchestrator import (
    WatchRegistration,
    active_registrations,
    stop_all,
    watch,
)
from hcloud_ccm.hotreload.targets import Reloadable
from hcloud_ccm.hotreload.watcher import DEFAULT_DEBOUNCE, FileWatcher

__all__ = [
    # Counters
    "APIFamily",
    "RELOAD_COUNTERS",
    "get_reload_count",
    "get_hcloud_reload_counter",
    "get_robot_reload_counter",
    # Capability
    "Reloadable",
    # Watching
    "DEFAULT_DEBOUNCE",
    "FileWatcher",
    "WatchRegistration",
    "watch",
    "active_registrations",
    "stop_all",
]
