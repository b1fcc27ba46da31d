"""Wire credential directories to reloadable clients.

``watch`` loads the current credentials into every target synchronously,
then keeps them current from a background watcher. A reload that fails to
read or validate is reported and skipped; the target keeps the
credentials it already has.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from hcloud_ccm.config.credentials import read_credential_files
from hcloud_ccm.errors import WatcherSetupError
from hcloud_ccm.hotreload.counters import record_error
from hcloud_ccm.hotreload.targets import Reloadable
from hcloud_ccm.hotreload.watcher import DEFAULT_DEBOUNCE, FileWatcher

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[Exception], None]

_registrations: List["WatchRegistration"] = []
_registrations_lock = threading.Lock()


class WatchRegistration:
    """One credentials directory bound to its reload targets.

    Reloads for a registration run one at a time on its watcher thread.
    Targets are applied in registration order; each target's own apply is
    atomic.
    """

    def __init__(
        self,
        path: Union[str, Path],
        targets: Sequence[Reloadable],
        on_error: Optional[ErrorCallback] = None,
        debounce: float = DEFAULT_DEBOUNCE,
    ):
        if not targets:
            raise ValueError("at least one reload target is required")
        for target in targets:
            if not isinstance(target, Reloadable):
                raise TypeError(f"{type(target).__name__} is not a reloadable client")
        self.path = Path(path)
        self.targets = tuple(targets)
        self.on_error = on_error
        # Held across read and apply so the freshest read is applied last
        self._reload_lock = threading.Lock()
        self._watcher = FileWatcher(self.path, self._on_change, debounce=debounce)

    @property
    def is_active(self) -> bool:
        return self._watcher.is_running

    def reload_now(self) -> int:
        """Read the credential files and apply them to every target.

        Returns:
            Number of targets whose credentials changed.

        Raises:
            WatcherSetupError, CredentialReadError, CredentialValidationError:
                From the first target that fails. Targets before it have
                already been applied.
        """
        changed = 0
        with self._reload_lock:
            for target in self.targets:
                if self._apply(target):
                    changed += 1
        return changed

    def _apply(self, target: Reloadable) -> bool:
        material = read_credential_files(self.path, target.credential_files)
        return target.apply(material)

    def _on_change(self) -> None:
        with self._reload_lock:
            for target in self.targets:
                self._reload_target(target)

    def _reload_target(self, target: Reloadable) -> None:
        family = target.api_family
        try:
            if self._apply(target):
                logger.info("Reloaded %s credentials from %s", family.value, self.path)
            else:
                logger.debug("%s credentials in %s unchanged", family.value, self.path)
        except Exception as e:
            record_error(family)
            logger.warning(
                "Reloading %s credentials from %s failed, keeping previous credentials: %s",
                family.value,
                self.path,
                e,
            )
            self._report(e)

    def _report(self, error: Exception) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception:
            logger.exception("Credential error callback for %s failed", self.path)

    def start(self) -> None:
        self._watcher.start()
        with _registrations_lock:
            _registrations.append(self)

    def stop(self) -> None:
        """Stop watching and unregister. Safe to call twice."""
        with _registrations_lock:
            if self in _registrations:
                _registrations.remove(self)
            else:
                return
        self._watcher.stop()
        logger.debug("Stopped credentials watch on %s", self.path)

    def __enter__(self) -> "WatchRegistration":
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def __repr__(self) -> str:
        names = ", ".join(t.api_family.value for t in self.targets)
        return f"WatchRegistration(path={str(self.path)!r}, targets=[{names}])"


def watch(
    path: Union[str, Path],
    targets: Union[Reloadable, Sequence[Reloadable]],
    on_error: Optional[ErrorCallback] = None,
    debounce: float = DEFAULT_DEBOUNCE,
) -> WatchRegistration:
    """Load credentials from ``path`` into ``targets`` and keep them current.

    The first load happens before this function returns, so a caller can rely
    on the targets holding credentials afterwards. Subsequent changes are
    applied from a background thread; failures there go to ``on_error`` and
    the log and never stop the watch.

    Args:
        path: Credentials directory.
        targets: One reloadable client or a sequence of them.
        on_error: Optional sink for background reload failures.
        debounce: Quiet period that ends a burst of file events.

    Returns:
        The running WatchRegistration.

    Raises:
        WatcherSetupError: If ``path`` does not exist or cannot be watched.
        CredentialReadError, CredentialValidationError: If the initial load fails.
    """
    if isinstance(targets, Reloadable):
        targets = [targets]
    registration = WatchRegistration(path, targets, on_error=on_error, debounce=debounce)
    if not registration.path.is_dir():
        raise WatcherSetupError(f"credentials directory {registration.path} does not exist")

    # Start watching before the initial read so a write racing it is not missed
    registration.start()
    try:
        registration.reload_now()
    except Exception:
        registration.stop()
        raise
    logger.info("Watching %r", registration)
    return registration


def active_registrations() -> List[WatchRegistration]:
    with _registrations_lock:
        return list(_registrations)


def stop_all() -> None:
    """Stop every running watch (process shutdown)."""
    for registration in active_registrations():
        registration.stop()


__all__ = [
    "ErrorCallback",
    "WatchRegistration",
    "watch",
    "active_registrations",
    "stop_all",
]
