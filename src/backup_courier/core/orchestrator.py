"""Transfer of detected backups to the remote ledger.

Per candidate the orchestrator walks through::

    DETECTED -> LEDGER_CREATED -> STABILITY_WAIT -> STABLE | TIMED_OUT
    STABLE -> SIZE_CHECK -> DIRECT_ATTACH | SPLIT_AND_ATTACH -> COMPLETE

The ledger entry is created before the file is known to be complete so
that it shows up as soon as a backup starts landing. Any failure stops
the walk for that candidate; nothing is retried.
"""

import logging
import os
from concurrent.futures import FIRST_EXCEPTION, Executor, Future, wait
from dataclasses import dataclass
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .. import __util__
from ..config.schema import DEFAULT_PART_SIZE
from ..ledger import LedgerError
from ..transaction import TransactionContext, log_transaction
from .candidate import BackupCandidate, CandidateError
from .chunking import ChunkingError, expected_part_count, split_file
from .stability import StabilityDetector, StabilityState
from .workspace import WorkspaceRegistry

logger = logging.getLogger(__name__)


class TransferState(Enum):
    """Where a candidate's transfer stopped."""

    DETECTED = "detected"
    LEDGER_CREATED = "ledger_created"
    STABILITY_WAIT = "stability_wait"
    STABLE = "stable"
    TIMED_OUT = "timed_out"
    SIZE_CHECK = "size_check"
    DIRECT_ATTACH = "direct_attach"
    SPLIT_AND_ATTACH = "split_and_attach"
    COMPLETE = "complete"
    INVALID = "invalid"
    CANCELLED = "cancelled"
    FAILED = "failed"


class TransferError(Exception):
    """A batch of part uploads failed or could not be scheduled."""

    pass


@dataclass
class TransferOutcome:
    """Result of processing one candidate."""

    path: Path
    state: TransferState = TransferState.DETECTED
    task_id: Optional[str] = None
    size: int = 0
    parts: int = 0
    error: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.state is TransferState.COMPLETE


class TransferOrchestrator:
    """Run detected backups through the ledger transfer steps.

    All collaborators are injected: the ledger client (``LedgerClient`` or
    anything with the same methods), the shared upload pool, the working
    directory registry and the stability detector.

    Args:
        ledger: Ledger client
        upload_pool: Executor running part uploads
        workspaces: Registry handing out split working directories
        stability: Detector used to wait for complete files
        part_size: Files strictly larger than this are split
        in_progress_status: Status of newly created entries
        complete_status: Status set after every part is attached
        today: Date source for entry names
    """

    def __init__(
        self,
        ledger,
        upload_pool: Executor,
        workspaces: WorkspaceRegistry,
        stability: StabilityDetector,
        part_size: int = DEFAULT_PART_SIZE,
        in_progress_status: str = "in progress",
        complete_status: str = "complete",
        today: Callable[[], date] = date.today,
    ) -> None:
        if part_size <= 0:
            raise ValueError("part_size must be positive")
        self.ledger = ledger
        self.upload_pool = upload_pool
        self.workspaces = workspaces
        self.stability = stability
        self.part_size = part_size
        self.in_progress_status = in_progress_status
        self.complete_status = complete_status
        self.today = today

    def entry_name(self, candidate: BackupCandidate) -> str:
        return f"Backup - {candidate.origin.domain} - {self.today().isoformat()}"

    def process(self, path: Path | str) -> TransferOutcome:
        """Process one detected backup file end to end.

        Never raises for ledger, I/O or batch failures; they are logged,
        journaled and reflected in the returned outcome.
        """
        path = Path(path)
        outcome = TransferOutcome(path=path)
        logger.info(__util__.log_heading(f"Handling {path}"))

        if not path.exists():
            return self._stop(outcome, TransferState.INVALID, "File does not exist")
        if not os.access(path, os.R_OK):
            return self._stop(outcome, TransferState.INVALID, "File is not readable")
        try:
            candidate = BackupCandidate.from_path(path)
        except CandidateError as e:
            return self._stop(outcome, TransferState.INVALID, str(e))

        # Created eagerly, before the file is known to be complete
        try:
            task_id = self.ledger.create_task(
                self.entry_name(candidate), status=self.in_progress_status
            )
            outcome.task_id = task_id
            self.ledger.link_task(candidate.origin.remote_id, task_id)
        except LedgerError as e:
            logger.error("Error creating ledger entry for %s: %s", path, e)
            return self._stop(outcome, TransferState.FAILED, str(e))
        outcome.state = TransferState.LEDGER_CREATED

        outcome.state = TransferState.STABILITY_WAIT
        result = self.stability.wait_until_stable(path)
        outcome.size = result.size
        if result.state is StabilityState.TIMED_OUT:
            self._flag_timeout(task_id, path, result.samples)
            return self._stop(
                outcome, TransferState.TIMED_OUT, "File size did not stabilize"
            )
        if result.state is StabilityState.CANCELLED:
            return self._stop(outcome, TransferState.CANCELLED, "Shutting down")
        if result.state is StabilityState.FAILED:
            return self._stop(outcome, TransferState.FAILED, result.error)
        outcome.state = TransferState.STABLE

        try:
            with TransactionContext(
                "transfer", source=str(path), task_id=task_id
            ) as tx:
                tx.set_size(outcome.size)
                self.transfer(task_id, outcome)
                tx.set_parts(outcome.parts)
        except (LedgerError, TransferError, ChunkingError, OSError) as e:
            logger.error(
                "Transfer of %s to ledger task %s failed: %s", path, outcome.task_id, e
            )
            outcome.state = TransferState.FAILED
            outcome.error = str(e)
            return outcome

        logger.info(
            "Backup %s transferred to ledger task %s (%s, %d part(s))",
            path.name,
            outcome.task_id,
            __util__.format_size(outcome.size),
            outcome.parts,
        )
        return outcome

    def transfer(self, task_id: str, outcome: TransferOutcome) -> None:
        """Attach a stable file to ``task_id``, splitting it first if it is too large.

        Raises:
            LedgerError, TransferError, ChunkingError, OSError
        """
        outcome.state = TransferState.SIZE_CHECK
        logger.debug(
            "File size: %d bytes, part size: %d bytes", outcome.size, self.part_size
        )

        if outcome.size > self.part_size:
            outcome.state = TransferState.SPLIT_AND_ATTACH
            logger.info("File size exceeds part size, splitting %s", outcome.path.name)
            outcome.parts = self.split_and_attach(task_id, outcome.path, outcome.size)
        else:
            outcome.state = TransferState.DIRECT_ATTACH
            logger.info("File size is within the limit, attaching %s directly", outcome.path.name)
            self.ledger.attach_file(task_id, outcome.path)
            outcome.parts = 1

        self.ledger.set_status(task_id, self.complete_status)
        outcome.state = TransferState.COMPLETE

    def split_and_attach(self, task_id: str, path: Path, size: int) -> int:
        """Split ``path`` into a fresh working directory and upload the parts.

        The working directory is removed only when every part made it. If
        an upload fails it is handed back to the operator: parts not yet
        attached stay on disk and shutdown cleanup leaves them alone.

        Returns:
            Number of parts uploaded
        """
        workdir = self.workspaces.create(prefix="split_")
        try:
            parts = split_file(path, workdir, self.part_size)
            expected = expected_part_count(size, self.part_size)
            if len(parts) != expected:
                # The file changed after it was judged stable
                raise ChunkingError(
                    f"Split of {path.name} produced {len(parts)} part(s), expected {expected}"
                )
        except (ChunkingError, OSError):
            self.workspaces.release(workdir, remove=True)
            raise

        try:
            self.upload_parts(task_id, parts)
        except TransferError:
            self.workspaces.release(workdir, remove=False)
            logger.warning("Remaining parts of %s kept in %s", path.name, workdir)
            raise
        self.workspaces.release(workdir, remove=True)
        return len(parts)

    def upload_parts(self, task_id: str, parts: list[Path]) -> None:
        """Upload all parts concurrently and wait for every one of them.

        Raises:
            TransferError: On the first failed upload; queued uploads are
                cancelled and their parts are left on disk
        """
        futures: dict[Future, Path] = {}
        try:
            for part in parts:
                futures[self.upload_pool.submit(self._upload_part, task_id, part)] = part
        except RuntimeError as e:
            # Upload pool already shut down
            for pending in futures:
                pending.cancel()
            raise TransferError(f"Cannot schedule uploads: {e}") from e

        done, not_done = wait(futures, return_when=FIRST_EXCEPTION)

        for future in done:
            if future.cancelled():
                error: Optional[BaseException] = TransferError("upload was cancelled")
            else:
                error = future.exception()
            if error is not None:
                for pending in not_done:
                    pending.cancel()
                part = futures[future]
                raise TransferError(f"Upload of {part.name} failed: {error}") from error

        logger.info("All %d part(s) attached to ledger task %s", len(parts), task_id)

    def _upload_part(self, task_id: str, part: Path) -> None:
        size = part.stat().st_size
        try:
            self.ledger.attach_file(task_id, part)
        except LedgerError as e:
            log_transaction(
                action="upload", status="failed", source=part.name, task_id=task_id, error=str(e)
            )
            raise
        part.unlink()
        log_transaction(
            action="upload", status="completed", source=part.name, task_id=task_id, size_bytes=size
        )

    def _flag_timeout(self, task_id: str, path: Path, samples: int) -> None:
        """Leave a comment on the in-progress entry of a file that never settled."""
        text = (
            f"Backup file {path.name} was still changing size after "
            f"{samples} checks and was not uploaded. Manual follow-up required."
        )
        try:
            self.ledger.post_comment(task_id, text)
        except LedgerError as e:
            logger.error("Failed to flag ledger task %s: %s", task_id, e)

    def _stop(
        self, outcome: TransferOutcome, state: TransferState, reason: Optional[str]
    ) -> TransferOutcome:
        outcome.state = state
        outcome.error = reason
        if state is TransferState.INVALID:
            logger.warning("Skipping %s: %s", outcome.path, reason)
        else:
            logger.error("Stopped processing %s (%s): %s", outcome.path, state.value, reason)
        log_transaction(
            action="transfer",
            status=state.value,
            source=str(outcome.path),
            task_id=outcome.task_id,
            size_bytes=outcome.size or None,
            error=reason,
        )
        return outcome
