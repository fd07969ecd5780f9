"""Detect when a file has finished being written.

There is no portable "writer closed the file" notification, so a file is
considered complete once two consecutive size samples are equal and
non-zero.
"""

import logging
import os
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 30.0
DEFAULT_MAX_ATTEMPTS = 20


class StabilityState(Enum):
    """Terminal state of a stability check."""

    STABLE = "stable"
    TIMED_OUT = "timed_out"
    FAILED = "failed"  # File could not be read
    CANCELLED = "cancelled"  # Shutdown requested while waiting


@dataclass
class StabilityResult:
    """Outcome of waiting on one file."""

    path: Path
    state: StabilityState
    size: int = 0
    samples: int = 0
    error: Optional[str] = None

    @property
    def stable(self) -> bool:
        return self.state is StabilityState.STABLE


class StabilityDetector:
    """Poll a file's size until it stops changing.

    The first sample is a baseline; after that the size is re-checked up
    to ``max_attempts`` times, ``interval`` seconds apart. This blocks the
    calling thread for the whole wait and must not run on the thread
    delivering filesystem events.

    Args:
        interval: Seconds between samples
        max_attempts: Maximum number of re-checks after the baseline
        stop_event: Set to abandon the wait early (shutdown)
        size_of: Size sampler, ``os.path.getsize`` by default
    """

    def __init__(
        self,
        interval: float = DEFAULT_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        stop_event: Optional[threading.Event] = None,
        size_of: Callable[[Path], int] = os.path.getsize,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.interval = interval
        self.max_attempts = max_attempts
        self.stop_event = stop_event or threading.Event()
        self.size_of = size_of

    def wait_until_stable(self, path: Path | str) -> StabilityResult:
        """Block until ``path`` is stable, times out, fails or is cancelled."""
        path = Path(path)
        previous_size = -1
        samples = 0

        while True:
            try:
                current_size = self.size_of(path)
            except OSError as e:
                logger.error("Error checking size of %s: %s", path, e)
                return StabilityResult(
                    path, StabilityState.FAILED, samples=samples, error=str(e)
                )
            samples += 1
            logger.debug("Sample %d: %s is %d bytes", samples, path.name, current_size)

            if current_size == previous_size and current_size > 0:
                logger.info(
                    "File size of %s stabilized at %d bytes after %d samples",
                    path.name,
                    current_size,
                    samples,
                )
                return StabilityResult(
                    path, StabilityState.STABLE, size=current_size, samples=samples
                )

            if samples > self.max_attempts:
                logger.error(
                    "File size of %s did not stabilize after %d attempts, giving up",
                    path,
                    self.max_attempts,
                )
                return StabilityResult(
                    path, StabilityState.TIMED_OUT, size=current_size, samples=samples
                )

            previous_size = current_size
            if self.stop_event.wait(self.interval):
                logger.warning("Stopped waiting for %s: shutting down", path)
                return StabilityResult(
                    path, StabilityState.CANCELLED, size=current_size, samples=samples
                )
