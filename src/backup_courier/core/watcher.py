"""Recursive watch of the backup root for newly landed archives.

The whole tree is covered by a single recursive watch on the root, so the
number of backup directories is not bounded by per-watch OS limits. The
set of known directories is kept separately and grows as backup
directories are created. Creation of a backup archive is handed to a
dispatch callback, which must return quickly; the actual processing runs
elsewhere.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .candidate import has_backup_extension

logger = logging.getLogger(__name__)


@dataclass
class WatchedTree:
    """The watch root and every directory known under it."""

    root: Path
    directories: set[Path] = field(default_factory=set)

    def __contains__(self, path: Path) -> bool:
        return path in self.directories


class _BackupEventHandler(FileSystemEventHandler):
    """Translate watchdog events into watcher calls."""

    def __init__(self, watcher: "BackupWatcher") -> None:
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        self.watcher.handle_created(
            Path(os.fsdecode(event.src_path)), bool(event.is_directory)
        )

    def on_moved(self, event: FileSystemEvent) -> None:
        # A rename into place counts as the destination being created
        dest = getattr(event, "dest_path", None)
        if dest:
            if event.is_directory:
                self.watcher.forget(Path(os.fsdecode(event.src_path)))
            self.watcher.handle_created(Path(os.fsdecode(dest)), bool(event.is_directory))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            self.watcher.forget(Path(os.fsdecode(event.src_path)))


class BackupWatcher:
    """Watch ``root`` and dispatch each new backup archive exactly once.

    Args:
        root: Backup root directory
        extensions: Recognized backup suffixes, e.g. (".zip", ".daf")
        dispatch: Called with the path of every new archive
        observer: watchdog observer, a new ``Observer`` by default
    """

    def __init__(
        self,
        root: Path | str,
        extensions: tuple[str, ...],
        dispatch: Callable[[Path], None],
        observer=None,
    ) -> None:
        self.tree = WatchedTree(root=Path(root))
        self.extensions = tuple(e.lower() for e in extensions)
        self.dispatch = dispatch
        self.observer = observer if observer is not None else Observer()
        self._handler = _BackupEventHandler(self)
        self._watch = None
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    @property
    def root(self) -> Path:
        return self.tree.root

    def start(self) -> None:
        """Record the existing tree and start delivering events.

        Raises:
            FileNotFoundError: If the root does not exist
            OSError: If the OS refuses the watch (e.g. inotify limits)
        """
        if not self.root.is_dir():
            raise FileNotFoundError(f"Watch root does not exist: {self.root}")
        self._watch = self.observer.schedule(self._handler, str(self.root), recursive=True)
        self.register_tree(self.root)
        self.observer.start()
        logger.info(
            "Started watching directory %s (%d directories)",
            self.root,
            len(self.tree.directories),
        )

    def register_tree(self, start: Path) -> int:
        """Record ``start`` and every directory below it.

        Returns:
            Number of newly recorded directories
        """
        found = [start, *(p for p in start.rglob("*") if p.is_dir())]
        with self._lock:
            new = [d for d in found if d not in self.tree]
            self.tree.directories.update(new)
        for directory in new:
            logger.debug("Watching %s", directory)
        return len(new)

    def forget(self, directory: Path) -> None:
        """Drop a deleted directory (and anything below it) from the tree."""
        with self._lock:
            gone = [
                d for d in self.tree.directories
                if d == directory or directory in d.parents
            ]
            self.tree.directories.difference_update(gone)
        if gone:
            logger.debug("No longer watching %d directories under %s", len(gone), directory)

    def handle_created(self, path: Path, is_directory: bool) -> None:
        """React to a creation event."""
        logger.debug("Created: %s", path)
        if is_directory:
            if path.is_dir():
                self.register_tree(path)
            return

        if not has_backup_extension(path.name, self.extensions):
            return
        if not path.is_file():
            logger.debug("Ignoring %s: not a regular file", path)
            return

        logger.info("New backup detected: %s", path)
        try:
            self.dispatch(path)
        except RuntimeError as e:
            # Executor already shut down
            logger.error("Could not dispatch %s: %s", path, e)

    def wait(self, stop_event: Optional[threading.Event] = None, poll: float = 1.0) -> None:
        """Block until ``stop_event`` is set, ``stop()`` is called or the observer dies."""
        stop_event = stop_event or self._stopped
        while not stop_event.wait(poll):
            if self._stopped.is_set():
                return
            if not self.observer.is_alive():
                logger.error("Watch service stopped unexpectedly")
                return

    def stop(self, timeout: float = 10.0) -> None:
        self._stopped.set()
        self.observer.stop()
        if self.observer.is_alive():
            self.observer.join(timeout=timeout)
        logger.info("Stopped watching directory %s", self.root)
