"""Transaction journal for transfer and reassembly operations.

Every unit of work (a detected backup, a part upload, a reassembly,
a cleanup) can be recorded as a JSON line so that abandoned work can be
followed up manually. Nothing in the transfer path retries, so the
journal is the operator's record of what needs attention.
"""

import json
import logging
import os
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from filelock import FileLock

logger = logging.getLogger(__name__)

_transaction_log_path: Optional[Path] = None
_write_lock = threading.Lock()


def set_transaction_log(path: Path | str | None) -> None:
    """Set (or with None, disable) the transaction log location."""
    global _transaction_log_path

    if path is None:
        _transaction_log_path = None
        return

    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    _transaction_log_path = path


def get_transaction_log() -> Optional[Path]:
    """Current transaction log location, if logging is enabled."""
    return _transaction_log_path


def log_transaction(
    action: str,
    status: str,
    source: Optional[str] = None,
    task_id: Optional[str] = None,
    artifact: Optional[str] = None,
    parts: Optional[int] = None,
    size_bytes: Optional[int] = None,
    duration_seconds: Optional[float] = None,
    error: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> None:
    """Append a transaction record to the log.

    Args:
        action: Kind of work (transfer, upload, reassemble, cleanup, ...)
        status: started, completed, failed, timed_out, ...
        source: Local file the work is about
        task_id: Ledger task the work is attached to
        artifact: Produced file or URL
        parts: Number of parts involved
        size_bytes: Bytes involved
        duration_seconds: Duration, rounded to milliseconds
        error: Error message for failed work
        details: Any extra JSON-serializable data
    """
    path = _transaction_log_path
    if path is None:
        return

    record: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "pid": os.getpid(),
        "action": action,
        "status": status,
    }
    optional = {
        "source": source,
        "task_id": task_id,
        "artifact": artifact,
        "parts": parts,
        "size_bytes": size_bytes,
        "duration_seconds": (
            round(duration_seconds, 3) if duration_seconds is not None else None
        ),
        "error": error,
        "details": details,
    }
    record.update({k: v for k, v in optional.items() if v is not None})

    line = json.dumps(record, default=str)
    try:
        with _write_lock, FileLock(f"{path}.lock"):
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
    except OSError as e:
        logger.warning("Could not write transaction log %s: %s", path, e)


class TransactionContext:
    """Context manager logging a started record and a completed/failed one.

    Exceptions are recorded and re-raised, never suppressed.
    """

    def __init__(
        self,
        action: str,
        source: Optional[str] = None,
        task_id: Optional[str] = None,
        artifact: Optional[str] = None,
    ) -> None:
        self.action = action
        self.source = source
        self.task_id = task_id
        self.artifact = artifact
        self.parts: Optional[int] = None
        self.size_bytes: Optional[int] = None
        self.error: Optional[str] = None
        self.details: dict[str, Any] = {}
        self._start = 0.0

    def set_task_id(self, task_id: str) -> None:
        self.task_id = task_id

    def set_artifact(self, artifact: str) -> None:
        self.artifact = artifact

    def set_size(self, size_bytes: int) -> None:
        self.size_bytes = size_bytes

    def set_parts(self, parts: int) -> None:
        self.parts = parts

    def add_detail(self, key: str, value: Any) -> None:
        self.details[key] = value

    def fail(self, message: str) -> None:
        """Record an error message; the status only changes on exception."""
        self.error = message

    def __enter__(self) -> "TransactionContext":
        self._start = time.monotonic()
        log_transaction(
            action=self.action,
            status="started",
            source=self.source,
            task_id=self.task_id,
            artifact=self.artifact,
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        duration = time.monotonic() - self._start
        if exc_type is not None:
            status = "failed"
            error = str(exc_val) or exc_type.__name__
        else:
            status = "completed"
            error = self.error
        log_transaction(
            action=self.action,
            status=status,
            source=self.source,
            task_id=self.task_id,
            artifact=self.artifact,
            parts=self.parts,
            size_bytes=self.size_bytes,
            duration_seconds=duration,
            error=error,
            details=self.details or None,
        )
        return False


def read_transaction_log(
    path: Path | str | None = None,
    limit: Optional[int] = None,
    action_filter: Optional[str] = None,
    status_filter: Optional[str] = None,
) -> list[dict[str, Any]]:
    """Read transaction records, most recent first.

    Invalid and empty lines are skipped.
    """
    log_path = Path(path) if path is not None else _transaction_log_path
    if log_path is None or not log_path.exists():
        return []

    records = []
    with open(log_path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                continue
            if action_filter and record.get("action") != action_filter:
                continue
            if status_filter and record.get("status") != status_filter:
                continue
            records.append(record)

    records.reverse()
    if limit is not None:
        records = records[:limit]
    return records


def get_transaction_stats(path: Path | str | None = None) -> dict[str, Any]:
    """Summarize the transaction log."""
    records = read_transaction_log(path)

    def counts(*actions: str) -> dict[str, int]:
        return {
            status: sum(
                1
                for r in records
                if r.get("action") in actions and r.get("status") == status
            )
            for status in ("completed", "failed")
        }

    stats = {
        "total_records": len(records),
        "transfers": counts("transfer"),
        "uploads": counts("upload"),
        "reassemblies": counts("reassemble"),
        "cleanups": counts("cleanup"),
        "timed_out": sum(1 for r in records if r.get("status") == "timed_out"),
        "total_bytes_transferred": sum(
            r.get("size_bytes", 0) or 0
            for r in records
            if r.get("action") == "transfer" and r.get("status") == "completed"
        ),
    }
    return stats
