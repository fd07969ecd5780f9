"""Exclusively owned working directories and their deferred deletion."""

import logging
import shutil
import threading
import time
import uuid
from pathlib import Path
from typing import Optional

from ..transaction import log_transaction

logger = logging.getLogger(__name__)


def remove_tree(path: Path | str) -> bool:
    """Recursively delete ``path``.

    Returns:
        True if something was deleted, False if it was already gone
    """
    path = Path(path)
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.error("Failed to delete %s: %s", path, e)
        log_transaction(action="cleanup", status="failed", source=str(path), error=str(e))
        return False
    logger.info("Deleted working directory %s", path)
    log_transaction(action="cleanup", status="completed", source=str(path))
    return True


class WorkspaceRegistry:
    """Create and track working directories under one root.

    Every directory handed out belongs to exactly one operation. The
    registry remembers those still in use so that shutdown can remove
    whatever in-flight work left behind.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self._active: set[Path] = set()
        self._lock = threading.Lock()

    def create(self, prefix: str = "") -> Path:
        """Create a fresh directory named ``<prefix><uuid4>``."""
        path = self.root / f"{prefix}{uuid.uuid4()}"
        path.mkdir(parents=True, mode=0o700)
        with self._lock:
            self._active.add(path)
        logger.debug("Created working directory %s", path)
        return path

    def release(self, path: Path, remove: bool = False) -> None:
        """Stop tracking ``path``, deleting it first if ``remove``."""
        if remove:
            remove_tree(path)
        with self._lock:
            self._active.discard(path)

    @property
    def active(self) -> list[Path]:
        with self._lock:
            return sorted(self._active)

    def cleanup_all(self) -> int:
        """Best-effort removal of every tracked directory."""
        with self._lock:
            paths = list(self._active)
            self._active.clear()
        removed = 0
        for path in paths:
            if remove_tree(path):
                removed += 1
        if paths:
            logger.info("Cleaned up %d of %d working directories", removed, len(paths))
        return removed


class DeferredCleanup:
    """Schedule one-shot deletion of directories after a delay.

    Each job runs on its own daemon ``threading.Timer``. Pending jobs can
    be flushed (run now) or cancelled, e.g. on shutdown.
    """

    def __init__(self, registry: Optional[WorkspaceRegistry] = None) -> None:
        self.registry = registry
        self._timers: dict[Path, threading.Timer] = {}
        self._deadlines: dict[Path, float] = {}
        self._lock = threading.Lock()

    def schedule(self, path: Path, delay: float) -> None:
        """Delete ``path`` recursively after ``delay`` seconds."""
        timer = threading.Timer(delay, self._run, args=(path,))
        timer.daemon = True
        timer.name = f"cleanup-{path.name}"
        with self._lock:
            previous = self._timers.pop(path, None)
            if previous is not None:
                previous.cancel()
            self._timers[path] = timer
            self._deadlines[path] = time.time() + delay
        timer.start()
        logger.debug("Scheduled deletion of %s in %.0f seconds", path, delay)

    def _run(self, path: Path) -> None:
        with self._lock:
            self._timers.pop(path, None)
            self._deadlines.pop(path, None)
        if self.registry is not None:
            self.registry.release(path, remove=True)
        else:
            remove_tree(path)

    @property
    def pending(self) -> dict[Path, float]:
        """Scheduled paths and their deletion deadlines (epoch seconds)."""
        with self._lock:
            return dict(self._deadlines)

    def flush(self) -> None:
        """Run all pending deletions now."""
        with self._lock:
            paths = list(self._timers)
            for timer in self._timers.values():
                timer.cancel()
        for path in paths:
            self._run(path)

    def cancel_all(self) -> None:
        """Drop pending deletions without running them."""
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
            self._deadlines.clear()
