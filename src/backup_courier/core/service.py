"""Wiring of the watcher, worker pools and orchestrator into one service.

The shared HTTP session and both thread pools are created here once and
passed to the components that use them.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Optional

import requests

from ..config import Config
from ..ledger import LedgerClient
from .orchestrator import TransferOrchestrator, TransferOutcome
from .reassembly import ReassemblyService
from .stability import StabilityDetector
from .watcher import BackupWatcher
from .workspace import DeferredCleanup, WorkspaceRegistry

logger = logging.getLogger(__name__)


def create_session() -> requests.Session:
    """HTTP session shared by every ledger call."""
    session = requests.Session()
    session.headers.update({"User-Agent": "backup-courier"})
    return session


def build_ledger(config: Config, session: Optional[requests.Session] = None) -> LedgerClient:
    return LedgerClient.from_config(config.ledger, session or create_session())


def build_reassembly_service(
    config: Config, ledger, workspaces: Optional[WorkspaceRegistry] = None
) -> ReassemblyService:
    workspaces = workspaces or WorkspaceRegistry(config.global_config.temp_dir)
    return ReassemblyService(
        ledger=ledger,
        workspaces=workspaces,
        base_url=config.reassembly.base_url,
        ttl=config.reassembly.ttl,
        cleanup=DeferredCleanup(workspaces),
        post_comment=config.reassembly.post_comment,
    )


class TransferService:
    """Watch for backups and transfer each one on a bounded worker pool.

    One observer thread receives filesystem events; ``watch.workers``
    threads wait for stability and orchestrate; ``transfer.upload_workers``
    threads upload parts.

    Args:
        config: Loaded configuration
        ledger: Ledger client shared by all workers
        observer: Optional watchdog observer (tests)
    """

    def __init__(self, config: Config, ledger, observer=None) -> None:
        self.config = config
        self.ledger = ledger
        self.stop_event = threading.Event()
        self.workspaces = WorkspaceRegistry(config.global_config.temp_dir)
        self.processing_pool = ThreadPoolExecutor(
            max_workers=config.watch.workers, thread_name_prefix="process"
        )
        self.upload_pool = ThreadPoolExecutor(
            max_workers=config.transfer.upload_workers, thread_name_prefix="upload"
        )
        self.orchestrator = TransferOrchestrator(
            ledger=ledger,
            upload_pool=self.upload_pool,
            workspaces=self.workspaces,
            stability=StabilityDetector(
                interval=config.watch.poll_interval,
                max_attempts=config.watch.max_attempts,
                stop_event=self.stop_event,
            ),
            part_size=config.transfer.part_size,
            in_progress_status=config.ledger.in_progress_status,
            complete_status=config.ledger.complete_status,
        )
        self.watcher = BackupWatcher(
            root=config.watch.root,
            extensions=config.normalized_extensions(),
            dispatch=self.submit,
            observer=observer,
        )
        self._in_flight: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, path: Path) -> Future:
        """Queue one backup file for processing."""
        future = self.processing_pool.submit(self._process, path)
        with self._lock:
            self._in_flight.add(future)
        future.add_done_callback(self._discard)
        return future

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._in_flight.discard(future)

    def _process(self, path: Path) -> TransferOutcome:
        try:
            return self.orchestrator.process(path)
        except Exception:
            # Nobody reads these futures' results
            logger.exception("Unexpected error processing %s", path)
            raise

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def start(self) -> None:
        self.workspaces.root.mkdir(parents=True, exist_ok=True)
        self.watcher.start()

    def run(self) -> None:
        """Start and block until ``stop_event`` is set or the watcher dies."""
        try:
            self.start()
            self.watcher.wait(self.stop_event)
        finally:
            self.shutdown()

    def shutdown(self, grace: Optional[float] = None) -> bool:
        """Stop watching, drain the pools and clean up working directories.

        Queued work is cancelled. Running work gets ``grace`` seconds
        (``transfer.shutdown_grace`` by default); threads still busy after
        that are abandoned, and their HTTP calls end with the ledger
        timeout.

        Returns:
            True if all in-flight work finished within the grace period
        """
        grace = self.config.transfer.shutdown_grace if grace is None else grace
        logger.info("Shutting down (grace period %.0f seconds)", grace)
        self.stop_event.set()
        self.watcher.stop()

        self.processing_pool.shutdown(wait=False, cancel_futures=True)
        with self._lock:
            pending = list(self._in_flight)
        start = time.monotonic()
        _, not_done = wait(pending, timeout=grace)
        self.upload_pool.shutdown(wait=False, cancel_futures=True)

        if not_done:
            logger.warning(
                "%d backup(s) still in progress after %.0f seconds, abandoning them",
                len(not_done),
                time.monotonic() - start,
            )
        self.workspaces.cleanup_all()
        return not not_done
