"""On-demand reassembly of split backups into a temporary download.

A reassembly job downloads every attachment of a ledger task into its
own working directory, merges the parts and hands back a URL under which
the merged archive is served. The working directory is deleted a fixed
time after it was created, whether or not anyone downloaded the file.
"""

import logging
import time
import urllib.parse
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .. import __util__
from ..ledger import LedgerError
from ..transaction import TransactionContext
from .chunking import ChunkingError, get_base_name, is_part_name, merge_parts
from .workspace import DeferredCleanup, WorkspaceRegistry, remove_tree

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600


class ReassemblyError(Exception):
    """A task's attachments could not be turned into a download."""

    pass


@dataclass
class ReassemblyResult:
    """A reassembled archive ready for download."""

    task_id: str
    job_id: str
    directory: Path
    archive: Path
    url: str
    parts: int
    expires_at: float


class ReassemblyService:
    """Reassemble ledger attachments into time-limited downloads.

    Args:
        ledger: Ledger client (``LedgerClient`` or compatible)
        workspaces: Registry creating the per-job directories
        base_url: Public URL the workspace root is served under
        ttl: Seconds from job creation until its directory is deleted
        cleanup: Scheduler for the deferred deletion
        post_comment: Post the download link on the task
    """

    def __init__(
        self,
        ledger,
        workspaces: WorkspaceRegistry,
        base_url: str,
        ttl: float = DEFAULT_TTL,
        cleanup: Optional[DeferredCleanup] = None,
        post_comment: bool = True,
    ) -> None:
        self.ledger = ledger
        self.workspaces = workspaces
        self.base_url = base_url.rstrip("/")
        self.ttl = ttl
        self.cleanup = cleanup or DeferredCleanup(workspaces)
        self.post_comment = post_comment

    def download_url(self, job_id: str, file_name: str) -> str:
        return f"{self.base_url}/{job_id}/{urllib.parse.quote(file_name)}"

    def reassemble(self, task_id: str) -> ReassemblyResult:
        """Download, merge and publish the attachments of ``task_id``.

        Raises:
            ReassemblyError: If there is nothing to merge or the merge fails
        """
        job_dir = self.workspaces.create()
        job_id = job_dir.name
        # Deleted after the TTL no matter how the job ends
        self.cleanup.schedule(job_dir, self.ttl)
        expires_at = time.time() + self.ttl

        with TransactionContext("reassemble", task_id=task_id) as tx:
            logger.info("Downloading attachments for task %s into %s", task_id, job_dir)
            downloads = self._download_all(task_id, job_dir)

            archive = self._merge(downloads)
            url = self.download_url(job_id, archive.name)
            tx.set_artifact(url)
            tx.set_parts(len(downloads))
            tx.set_size(archive.stat().st_size)

        logger.info(
            "Reassembled %s (%s), available until %s: %s",
            archive.name,
            __util__.format_size(archive.stat().st_size),
            time.ctime(expires_at),
            url,
        )

        if self.post_comment:
            self._announce(task_id, url)

        return ReassemblyResult(
            task_id=task_id,
            job_id=job_id,
            directory=job_dir,
            archive=archive,
            url=url,
            parts=len(downloads),
            expires_at=expires_at,
        )

    def _download_all(self, task_id: str, job_dir: Path) -> list[Path]:
        try:
            attachments = self.ledger.list_attachments(task_id)
            if not attachments:
                raise ReassemblyError(f"No attachments found on task {task_id}")
            return [self.ledger.download(a, job_dir) for a in attachments]
        except LedgerError as e:
            raise ReassemblyError(f"Error fetching attachments of task {task_id}: {e}") from e

    def _merge(self, downloads: list[Path]) -> Path:
        """Merge the downloaded parts; the parts are deleted on success."""
        parts = [p for p in downloads if is_part_name(p.name)]

        if not parts:
            if len(downloads) == 1:
                # Small backups are attached whole
                logger.info("%s was never split, serving it as is", downloads[0].name)
                return downloads[0]
            names = ", ".join(p.name for p in downloads)
            raise ReassemblyError(f"Attachments are not parts of one archive: {names}")

        first = parts[0]
        try:
            archive = merge_parts(first)
        except (ChunkingError, OSError) as e:
            raise ReassemblyError(f"Error merging files: {e}") from e
        if not archive.exists():
            raise ReassemblyError("Error merging files")

        base = get_base_name(first.name)
        for part in downloads:
            if is_part_name(part.name) and get_base_name(part.name) == base:
                part.unlink(missing_ok=True)
        return archive

    def _announce(self, task_id: str, url: str) -> None:
        minutes = int(self.ttl // 60)
        validity = "1 hour" if minutes == 60 else f"{minutes} minutes"
        try:
            self.ledger.post_comment(
                task_id, f"Download link (valid for {validity}): {url}"
            )
        except LedgerError as e:
            logger.error("Failed to post download link to task %s: %s", task_id, e)

    def sweep_expired(self, now: Optional[float] = None) -> list[Path]:
        """Delete job directories older than the TTL.

        Catches directories left behind by a process that exited before
        its deferred deletions ran. Only directories named by a UUID are
        considered; split working directories are left alone.
        """
        now = time.time() if now is None else now
        root = self.workspaces.root
        if not root.is_dir():
            return []

        removed = []
        for entry in root.iterdir():
            if not entry.is_dir() or not _is_uuid(entry.name):
                continue
            if entry in self.cleanup.pending or entry in self.workspaces.active:
                continue
            age = now - entry.stat().st_mtime
            if age >= self.ttl and remove_tree(entry):
                removed.append(entry)
        if removed:
            logger.info("Swept %d expired reassembly directories", len(removed))
        return removed

    def shutdown(self, cleanup: bool = True) -> None:
        """Run (or drop) pending deletions."""
        if cleanup:
            self.cleanup.flush()
        else:
            self.cleanup.cancel_all()


def _is_uuid(name: str) -> bool:
    try:
        uuid.UUID(name)
    except ValueError:
        return False
    return True
