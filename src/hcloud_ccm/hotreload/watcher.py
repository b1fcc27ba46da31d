"""Debounced change notifications for a credentials directory.

A ``watchdog`` observer delivers raw filesystem events for one directory.
They are queued and a single worker thread turns each burst of events into
one callback: after the first event it keeps draining the queue until no
new event arrived for ``debounce`` seconds, then fires. Copying several
files, or Kubernetes swapping its ``..data`` symlink, therefore causes one
reload rather than one per file.
"""

from __future__ import annotations

import logging
import queue
import threading
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from hcloud_ccm.errors import WatcherSetupError

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 0.1  # seconds
JOIN_TIMEOUT = 5.0  # seconds

# Reading the credentials produces these; they must not trigger a reload
_IGNORED_EVENT_TYPES = {"opened", "closed_no_write"}

_STOP = object()


class _EventForwarder(FileSystemEventHandler):
    """Push relevant watchdog events onto the watcher's queue."""

    def __init__(self, events: queue.Queue):
        super().__init__()
        self._events = events

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in _IGNORED_EVENT_TYPES:
            return
        self._events.put(event)


class FileWatcher:
    """Watch a directory and call ``callback`` once per burst of changes.

    The callback always runs on the watcher's own worker thread, one call at
    a time, in the order the bursts were observed.
    """

    def __init__(
        self,
        directory: str | Path,
        callback: Callable[[], None],
        debounce: float = DEFAULT_DEBOUNCE,
    ):
        """Initialize the watcher.

        Args:
            directory: Directory to watch (not recursive).
            callback: Called without arguments after each quiet period.
            debounce: Quiet period in seconds that ends a burst.
        """
        if debounce < 0:
            raise ValueError("debounce must not be negative")
        self.directory = Path(directory)
        self.debounce = debounce
        self._callback = callback
        self._events: queue.Queue = queue.Queue()
        self._observer = None
        self._worker: threading.Thread | None = None
        self._lock = threading.Lock()
        self._stopped = False

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive() and not self._stopped

    def start(self) -> None:
        """Start watching. A stopped watcher can be started again.

        Raises:
            WatcherSetupError: If the directory is missing or cannot be watched.
        """
        with self._lock:
            if self.is_running:
                raise RuntimeError("watcher already started")
            if not self.directory.is_dir():
                raise WatcherSetupError(
                    f"cannot watch {self.directory}: directory does not exist"
                )

            events: queue.Queue = queue.Queue()
            observer = Observer()
            observer.daemon = True
            try:
                observer.schedule(_EventForwarder(events), str(self.directory), recursive=False)
                observer.start()
            except OSError as e:
                raise WatcherSetupError(f"cannot watch {self.directory}: {e}") from e
            self._observer = observer
            self._events = events
            self._stopped = False

            self._worker = threading.Thread(
                target=self._run,
                args=(events,),
                name=f"credentials-watch:{self.directory}",
                daemon=True,
            )
            self._worker.start()
        logger.debug("Watching %s (debounce %.2fs)", self.directory, self.debounce)

    def stop(self) -> None:
        """Stop delivery and release the OS watch handle. Safe to call twice."""
        with self._lock:
            if self._stopped or self._worker is None:
                return
            self._stopped = True
            observer, worker, events = self._observer, self._worker, self._events

        observer.stop()
        observer.join(timeout=JOIN_TIMEOUT)
        events.put(_STOP)
        if worker is not threading.current_thread():
            worker.join(timeout=JOIN_TIMEOUT)
        logger.debug("Stopped watching %s", self.directory)

    def _run(self, events: queue.Queue) -> None:
        while True:
            event = events.get()
            if event is _STOP:
                return

            burst = 1
            while True:
                try:
                    event = events.get(timeout=self.debounce)
                except queue.Empty:
                    break
                if event is _STOP:
                    return
                burst += 1

            logger.debug("%d filesystem event(s) in %s", burst, self.directory)
            try:
                self._callback()
            except Exception:
                logger.exception("Change handler for %s failed", self.directory)

    def __enter__(self) -> "FileWatcher":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()


__all__ = ["DEFAULT_DEBOUNCE", "FileWatcher"]
