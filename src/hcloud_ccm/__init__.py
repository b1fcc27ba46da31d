"""hcloud-ccm - hcloud cloud controller with hot reloadable API credentials.

This package provides the hcloud and robot API clients, credential loading
from a mounted secret directory, and the watches that rotate credentials in
running clients without a restart.
"""

from hcloud_ccm._version import __version__
from hcloud_ccm.cloud import Cloud, new_cloud
from hcloud_ccm.config.settings import Settings, load_settings
from hcloud_ccm.hotreload import watch

__all__ = [
    "__version__",
    "Cloud",
    "Settings",
    "load_settings",
    "new_cloud",
    "watch",
]
