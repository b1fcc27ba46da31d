"""Process-wide credential reload counters.

Each API family has a success counter, bumped once per accepted credential
change, and an error counter, bumped once per rejected reload. Counters are
created at import time, only ever grow, and are never reset while the
process lives. Tests poll them to detect that an asynchronous rotation has
taken effect.
"""

import threading
from enum import Enum
from typing import Dict, Union


class APIFamily(str, Enum):
    """Remote APIs whose credentials can be rotated."""

    HCLOUD = "hcloud"
    ROBOT = "robot"


class ReloadCounters:
    """Thread-safe container for reload counts."""

    def __init__(self):
        self._reloads: Dict[APIFamily, int] = {family: 0 for family in APIFamily}
        self._errors: Dict[APIFamily, int] = {family: 0 for family in APIFamily}
        self._lock = threading.Lock()

    def increment(self, family: Union[APIFamily, str]) -> int:
        """Record a successful reconfiguration and return the new count."""
        family = APIFamily(family)
        with self._lock:
            self._reloads[family] += 1
            return self._reloads[family]

    def record_error(self, family: Union[APIFamily, str]) -> int:
        """Record a rejected reload attempt and return the new error count."""
        family = APIFamily(family)
        with self._lock:
            self._errors[family] += 1
            return self._errors[family]

    def get(self, family: Union[APIFamily, str]) -> int:
        family = APIFamily(family)
        with self._lock:
            return self._reloads[family]

    def get_errors(self, family: Union[APIFamily, str]) -> int:
        family = APIFamily(family)
        with self._lock:
            return self._errors[family]

    def snapshot(self) -> dict:
        """Get a consistent snapshot of all counters."""
        with self._lock:
            return {
                family.value: {
                    "reloads": self._reloads[family],
                    "errors": self._errors[family],
                }
                for family in APIFamily
            }


# Global counters
RELOAD_COUNTERS = ReloadCounters()


def increment(family: Union[APIFamily, str]) -> int:
    """Increment the process-wide reload counter of ``family``."""
    return RELOAD_COUNTERS.increment(family)


def record_error(family: Union[APIFamily, str]) -> int:
    """Increment the process-wide reload error counter of ``family``."""
    return RELOAD_COUNTERS.record_error(family)


def get_reload_count(family: Union[APIFamily, str]) -> int:
    return RELOAD_COUNTERS.get(family)


def get_hcloud_reload_counter() -> int:
    return RELOAD_COUNTERS.get(APIFamily.HCLOUD)


def get_robot_reload_counter() -> int:
    return RELOAD_COUNTERS.get(APIFamily.ROBOT)


__all__ = [
    "APIFamily",
    "ReloadCounters",
    "RELOAD_COUNTERS",
    "increment",
    "record_error",
    "get_reload_count",
    "get_hcloud_reload_counter",
    "get_robot_reload_counter",
]
