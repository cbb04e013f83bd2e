"""
Export watcher for the Export Ingestion domain.

Turns watchdog notifications on the export directory into a pull-based
stream of FileEvent objects. Repeated notifications for the same path are
coalesced and a path is only released once it has been quiet for the settle
window, so one write yields one event.
"""

import os
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional, Tuple

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from app.models.schemas import ChangeKind, FileEvent
from app.utils.errors import WatchError
from app.utils.helpers import normalise_path
from domains.export_ingest.scanner import DEFAULT_EXPORT_PATTERN, matches_export_pattern


class ExportEventHandler(FileSystemEventHandler):
    """Collects qualifying export paths until they settle."""

    def __init__(
        self,
        directory: Path,
        pattern: str = DEFAULT_EXPORT_PATTERN,
        settle_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize event handler.

        Args:
            directory: Watched export directory (normalised)
            pattern: Glob pattern for export file names
            settle_seconds: Quiet period before a path is released
            clock: Monotonic clock, injectable for tests
        """
        super().__init__()
        self.directory = directory
        self.pattern = pattern
        self.settle_seconds = settle_seconds
        self.clock = clock
        self._pending: Dict[Path, Tuple[ChangeKind, float]] = {}
        self._condition = threading.Condition()
        self.error: Optional[str] = None

    def qualifies(self, raw_path) -> Optional[Path]:
        """
        Return the normalised path if it is an export directly in the directory.

        Args:
            raw_path: Path reported by watchdog (str or bytes)

        Returns:
            Path or None when the event is not a pipeline concern
        """
        if not raw_path:
            return None
        path = normalise_path(Path(os.fsdecode(raw_path)))
        if path.parent != self.directory:
            return None
        if not matches_export_pattern(path, self.pattern):
            return None
        return path

    def on_created(self, event: FileSystemEvent):
        """Handle file creation."""
        if not event.is_directory:
            self._record(event.src_path, ChangeKind.CREATED)

    def on_modified(self, event: FileSystemEvent):
        """Handle file modification."""
        if not event.is_directory:
            self._record(event.src_path, ChangeKind.MODIFIED)

    def on_moved(self, event: FileSystemEvent):
        """Handle rename into the export directory."""
        if not event.is_directory:
            self._record(getattr(event, "dest_path", None), ChangeKind.MOVED)

    def on_deleted(self, event: FileSystemEvent):
        """Fail the stream if the export directory itself disappears."""
        if normalise_path(Path(os.fsdecode(event.src_path))) == self.directory:
            self.fail(f"export directory {self.directory} was deleted")

    def fail(self, reason: str):
        """Record a fatal watch failure and wake the consumer."""
        with self._condition:
            self.error = reason
            self._condition.notify_all()

    def _record(self, raw_path, kind: ChangeKind):
        path = self.qualifies(raw_path)
        if path is None:
            return

        with self._condition:
            existing = self._pending.get(path)
            if existing is not None:
                # Keep first-seen kind and queue position; only extend the quiet window
                kind = existing[0]
            self._pending[path] = (kind, self.clock())
            self._condition.notify_all()

        logger.debug(f"Export notification: {kind.value} {path}")

    def pop_ready(self) -> Optional[FileEvent]:
        """Remove and return the oldest path that has settled, if any."""
        now = self.clock()
        with self._condition:
            for path, (kind, last_seen) in self._pending.items():
                if now - last_seen >= self.settle_seconds:
                    del self._pending[path]
                    return FileEvent(path=path, change_kind=kind)
        return None

    def pending_count(self) -> int:
        """Number of paths waiting to settle."""
        with self._condition:
            return len(self._pending)

    def wait(self, timeout: float):
        """Block until a notification arrives or ``timeout`` passes."""
        with self._condition:
            self._condition.wait(timeout)

    def wake(self):
        """Wake a consumer blocked in ``wait``."""
        with self._condition:
            self._condition.notify_all()


class ExportWatcher:
    """Cancellable stream of export file events for one directory."""

    def __init__(
        self,
        directory: Path,
        pattern: str = DEFAULT_EXPORT_PATTERN,
        settle_seconds: float = 1.0,
        poll_interval: float = 0.25,
    ):
        """
        Initialize export watcher.

        Args:
            directory: Export directory to watch (non-recursive)
            pattern: Glob pattern for export file names
            settle_seconds: Quiet period before a path is yielded
            poll_interval: Longest wait between health and cancellation checks
        """
        self.directory = normalise_path(Path(directory))
        self.handler = ExportEventHandler(self.directory, pattern, settle_seconds)
        self.poll_interval = min(poll_interval, settle_seconds) if settle_seconds > 0 else poll_interval
        self.observer: Optional[Observer] = None
        self._stopped = threading.Event()

    def start(self):
        """Subscribe to notifications; events are buffered until consumed."""
        if self.observer is not None:
            return

        if not self.directory.is_dir():
            raise WatchError(f"Export directory does not exist: {self.directory}")

        observer = Observer()
        observer.daemon = True
        try:
            observer.schedule(self.handler, str(self.directory), recursive=False)
            observer.start()
        except OSError as e:
            raise WatchError(f"Failed to watch {self.directory}: {e}") from e

        self.observer = observer
        logger.success(f"Started watching: {self.directory}")

    def stop(self):
        """Stop the subscription and end the event stream."""
        self._stopped.set()
        self.handler.wake()

        if self.observer is not None and self.observer.is_alive():
            self.observer.stop()
            self.observer.join()
            logger.info("Export watcher stopped")

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def _check_health(self):
        if self.handler.error:
            raise WatchError(self.handler.error)
        if self.observer is not None and not self.observer.is_alive() and not self.stopped:
            raise WatchError("File system observer thread died")
        if not self.directory.is_dir():
            raise WatchError(f"Export directory {self.directory} is no longer available")

    def events(self, stop_event: Optional[threading.Event] = None) -> Iterator[FileEvent]:
        """
        Yield settled export events until stopped.

        Args:
            stop_event: Optional external cancellation flag

        Yields:
            FileEvent for each qualifying export path

        Raises:
            WatchError: Notifications can no longer be delivered
        """
        self.start()

        while not self.stopped and not (stop_event is not None and stop_event.is_set()):
            self._check_health()

            event = self.handler.pop_ready()
            if event is not None:
                yield event
                continue

            self.handler.wait(self.poll_interval)

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
